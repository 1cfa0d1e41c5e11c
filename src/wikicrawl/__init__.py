"""
wikicrawl - crawl frontier and link graph store for a Wikipedia link crawler
"""

__version__ = "0.4.0"
