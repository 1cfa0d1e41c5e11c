"""
Worker Models

Pydantic model reporting the state of the crawl worker pool.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Literal


class WorkerStatus(BaseModel):
    """Crawl worker pool state"""

    status: Literal["running", "stopped"] = Field(
        ..., description="Whether the worker loop is running"
    )
    started_at: datetime | None = Field(
        default=None, description="When the loop was started, if running"
    )
    uptime_seconds: float | None = Field(
        default=None, ge=0, description="Seconds since start, if running"
    )
    concurrency: int | None = Field(
        default=None, ge=1, description="Pages explored at once, if running"
    )
