"""
Pydantic data models package.

Contains all data validation models for:
- API requests and responses
- Log item schemas
- Per-application logger configuration
- Worker request/response envelopes
"""

from .log_item import (
    ErrorResponse,
    IngestResponse,
    LoggerConfig,
    LogItem,
    LogItems,
    LogRequest,
    LogResult,
    StatusKind,
)
from .admin import AdminStatusResponse, FlushResponse, WorkerStatus

__all__ = [
    # Log item models
    "LogItem",
    "LogItems",
    "LoggerConfig",
    "LogRequest",
    "LogResult",
    "StatusKind",
    "IngestResponse",
    "ErrorResponse",

    # Admin models
    "AdminStatusResponse",
    "FlushResponse",
    "WorkerStatus",
]
