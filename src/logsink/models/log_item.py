"""
Log item data models and the worker request/response envelope.

- Request body: {"logs": [LogItem, ...]}, unknown fields rejected
- LogItem: loglevel client fields, all strings; servertime stamped on write
- LogRequest/LogResult: the in-process message exchanged with a worker
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.exceptions import AuthenticationError, InternalError, LogSinkException, NotFoundError


def format_servertime(now: datetime) -> str:
    """RFC3339 UTC timestamp with millisecond precision."""
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class LogItem(BaseModel):
    """
    One client log line as posted by loglevel.

    Immutable; the worker stores a copy carrying ``servertime``.
    """

    message: str = Field(description="Log message")
    level: str = Field(default="", description="Client log level")
    logger: str = Field(default="", description="Client logger name")
    timestamp: str = Field(default="", description="Client timestamp")
    stacktrace: str = Field(default="", description="Client stack trace")
    windowid: str = Field(default="", description="Client window/tab id")
    servertime: str = Field(default="", description="Server write time, overwritten on write")

    model_config = ConfigDict(extra="forbid", frozen=True, strict=True)

    @field_validator("*", mode="before")
    def null_as_empty(cls, v: Any) -> Any:
        """A JSON null leaves the field empty."""
        return "" if v is None else v

    def stamped(self, now: datetime) -> "LogItem":
        """Copy of this item with ``servertime`` set to ``now``."""
        return self.model_copy(update={"servertime": format_servertime(now)})

    def to_line(self) -> bytes:
        """Single newline-terminated JSON line."""
        return self.model_dump_json().encode("utf-8") + b"\n"


class LogItems(BaseModel):
    """Request body of POST /loglevel/{appname}."""

    logs: List[LogItem] = Field(default_factory=list, description="Log items in write order")

    model_config = ConfigDict(extra="forbid")

    @field_validator("logs", mode="before")
    def null_logs(cls, v: Any) -> Any:
        """``"logs": null`` is an empty batch."""
        return [] if v is None else v


class LoggerConfig(BaseModel):
    """Per-application configuration record (<appname>.json)."""

    app: str = Field(default="", description="Informational application name")
    dir: str = Field(default="", description="Log subdirectory, defaults to the appname")
    secret: str = Field(default="", description="Bearer token that must match")

    model_config = ConfigDict(extra="ignore", strict=True)

    @field_validator("*", mode="before")
    def null_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class StatusKind(str, Enum):
    """Outcome of a worker request."""

    OK = "ok"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INTERNAL_ERROR = "internal_error"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    StatusKind.OK: 200,
    StatusKind.NOT_FOUND: 404,
    StatusKind.UNAUTHORIZED: 401,
    StatusKind.INTERNAL_ERROR: 500,
}


@dataclass
class LogResult:
    """Result of one worker request."""
    message: str
    status: StatusKind = StatusKind.OK

    @classmethod
    def ok(cls) -> "LogResult":
        return cls("OK", StatusKind.OK)

    @classmethod
    def not_found(cls, message: str) -> "LogResult":
        return cls(message, StatusKind.NOT_FOUND)

    @classmethod
    def unauthorized(cls, message: str) -> "LogResult":
        return cls(message, StatusKind.UNAUTHORIZED)

    @classmethod
    def internal_error(cls, message: str) -> "LogResult":
        return cls(message, StatusKind.INTERNAL_ERROR)

    @property
    def is_ok(self) -> bool:
        return self.status is StatusKind.OK

    def raise_for_status(self) -> None:
        """Raise the HTTP exception matching a non-OK result."""
        if self.status is StatusKind.OK:
            return
        if self.status is StatusKind.NOT_FOUND:
            raise NotFoundError(self.message)
        if self.status is StatusKind.UNAUTHORIZED:
            raise AuthenticationError(self.message)
        if self.status is StatusKind.INTERNAL_ERROR:
            raise InternalError(self.message)
        raise LogSinkException(self.message)


@dataclass
class LogRequest:
    """
    A validated batch for one application.

    ``reply`` is a single-use response slot fulfilled exactly once through
    ``respond``. A caller that stopped waiting leaves a done (cancelled)
    future behind and the late result is dropped.
    """
    appname: str
    token: str
    items: List[LogItem]
    reply: "asyncio.Future[LogResult]" = field(repr=False)

    def respond(self, result: LogResult) -> bool:
        """Deliver ``result``; returns False if the slot was already used or abandoned."""
        if self.reply.done():
            return False
        self.reply.set_result(result)
        return True


class IngestResponse(BaseModel):
    """200 response for an accepted batch."""

    message: str = Field(description="Response message")
    app: str = Field(description="Application name")
    entries_accepted: int = Field(description="Number of log items written")


class ErrorResponse(BaseModel):
    """
    Standard error response model.
    """

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
