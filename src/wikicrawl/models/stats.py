"""
Crawl Statistics Models

Pydantic models for store totals.
"""

from pydantic import BaseModel, Field


class CrawlStats(BaseModel):
    """Totals across the crawl store"""

    pages: int = Field(..., ge=0, description="Pages discovered so far")
    explored: int = Field(..., ge=0, description="Pages fetched with links recorded")
    bugged: int = Field(..., ge=0, description="Pages that could not be fetched or parsed")
    frontier: int = Field(..., ge=0, description="Pages waiting to be explored")
    claimed: int = Field(
        default=0, ge=0, description="Frontier pages currently held by a worker"
    )
    aliases: int = Field(default=0, ge=0, description="Alias -> page mappings")
    links: int = Field(default=0, ge=0, description="Stored edges")

    def summary(self) -> str:
        """One-line progress report for the crawl log."""
        return (
            f"explored {self.explored} pages (with {self.bugged} bugged), "
            f"found {self.pages} pages, listed {self.links} links, "
            f"{self.frontier} in frontier"
        )
