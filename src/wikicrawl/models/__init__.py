"""
Models package initialization
"""

from wikicrawl.models.stats import CrawlStats
from wikicrawl.models.worker import WorkerStatus

__all__ = ["CrawlStats", "WorkerStatus"]
