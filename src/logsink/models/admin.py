"""
Admin API data models.

Contains Pydantic models for worker status and forced flush operations.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class WorkerStatus(BaseModel):
    """Read-only snapshot of one application worker."""

    appname: str = Field(..., description="Application name")
    configured: bool = Field(..., description="Whether the last config check succeeded")
    log_dir: Optional[str] = Field(default=None, description="Resolved log directory")
    file_open: bool = Field(..., description="Whether a log file is currently open")
    current_file: Optional[str] = Field(default=None, description="Path of the open log file")
    needs_flush: bool = Field(..., description="Unflushed data since the last fsync")
    queue_depth: int = Field(..., description="Requests waiting in the worker queue")
    last_activity: Optional[datetime] = Field(default=None, description="Last message handled")


class AdminStatusResponse(BaseModel):
    """Response model for the admin status endpoint."""

    dispatcher_running: bool = Field(..., description="Whether the dispatcher loop is running")
    worker_count: int = Field(..., description="Number of live workers")
    workers: List[WorkerStatus] = Field(default_factory=list, description="Per-application status")


class FlushResponse(BaseModel):
    """Response model for a forced flush."""

    message: str = Field(..., description="Result message")
    flushed: Dict[str, bool] = Field(..., description="Per-application flag, true if data was fsynced")
