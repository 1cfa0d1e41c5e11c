"""
Database package: page store, alias index, link graph and frontier
"""

from wikicrawl.db.alias_index import AliasIndex
from wikicrawl.db.frontier import Frontier, FrontierEntry
from wikicrawl.db.link_graph import Edge, EdgeIdentity, EdgeSequence, LinkGraph, PathStep
from wikicrawl.db.page_store import IdAllocator, Page, PageStore
from wikicrawl.db.store import CrawlStore, open_store

__all__ = [
    "AliasIndex",
    "CrawlStore",
    "Edge",
    "EdgeIdentity",
    "EdgeSequence",
    "Frontier",
    "FrontierEntry",
    "IdAllocator",
    "LinkGraph",
    "Page",
    "PageStore",
    "PathStep",
    "open_store",
]
