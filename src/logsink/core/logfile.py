"""
Append-only log file lifecycle for one application.

Each application writes JSON Lines into files named by their UTC creation
time. Any failed write, flush or rotation boundary abandons the handle;
the next write opens a fresh file instead of retrying the broken one.
"""

import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import structlog
from aiofiles import open as aio_open

from ..models.log_item import LogItem
from .exceptions import LogFileError
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

LOGFILE_TIME_FORMAT = "%Y%m%dT%H%M%SZ"
LOGFILE_SUFFIX = ".log"


def logfile_name(now: datetime) -> str:
    """File name for a log file created at ``now`` (UTC, second precision)."""
    return now.strftime(LOGFILE_TIME_FORMAT) + LOGFILE_SUFFIX


class LogFileManager:
    """
    Owns at most one open log file for one application.

    Not safe for concurrent use; the owning worker serializes all calls.
    """

    def __init__(self, appname: str, metrics: Optional[MetricsCollector] = None) -> None:
        self.appname = appname
        self.metrics = metrics
        self._file: Optional[Any] = None
        self.path: Optional[Path] = None
        self.created_at: Optional[datetime] = None
        self.last_write_at: Optional[datetime] = None
        self.needs_flush = False

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @staticmethod
    def ensure_directory(path: Path) -> None:
        """Create ``path`` (and parents) unless it already is a directory."""
        if path.exists() and not path.is_dir():
            raise LogFileError("Log path exists and is not a directory", details={"path": str(path)})
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LogFileError(
                "Error creating log directory",
                details={"path": str(path), "error": str(e)},
            )

    async def open(self, directory: Path, now: datetime) -> Path:
        """Open a new log file in ``directory`` for appending."""
        if self._file is not None:
            await self.close()

        path = directory / logfile_name(now)
        try:
            self._file = await aio_open(path, "ab")
        except OSError as e:
            self._record_error("open")
            logger.error("Error opening logfile", appname=self.appname, path=str(path), error=str(e))
            raise LogFileError("Could not create logfile", details={"path": str(path), "error": str(e)})

        self.path = path
        self.created_at = now
        self.last_write_at = None
        self.needs_flush = False

        if self.metrics:
            self.metrics.record_logfile_opened(self.appname)
        logger.info("Opened logfile", appname=self.appname, path=str(path))
        return path

    async def write_item(self, item: LogItem) -> None:
        """Append one JSON line; a failure abandons the handle."""
        if self._file is None:
            raise LogFileError("No logfile open", details={"appname": self.appname})

        try:
            await self._file.write(item.to_line())
            await self._file.flush()
        except (OSError, ValueError) as e:
            self._record_error("write")
            logger.error("Error writing logfile", appname=self.appname, path=str(self.path), error=str(e))
            await self._abandon()
            raise LogFileError("Could not write logfile", details={"error": str(e)})

    def mark_written(self, now: datetime) -> None:
        """Mark the file dirty, keeping the time of the first unflushed write."""
        if not self.needs_flush:
            self.last_write_at = now
        self.needs_flush = True

    async def flush(self) -> bool:
        """
        fsync unflushed data to stable storage.

        Returns True if data was flushed. On failure the handle is abandoned
        so the next write reopens.
        """
        if self._file is None or not self.needs_flush:
            return False

        try:
            await self._sync()
        except (OSError, ValueError) as e:
            self._record_error("flush")
            logger.error("Error flushing logfile", appname=self.appname, path=str(self.path), error=str(e))
            await self._abandon()
            return False

        self.needs_flush = False
        self.last_write_at = None
        logger.debug("Flushed logfile", appname=self.appname, path=str(self.path))
        return True

    async def flush_if_due(self, now: datetime, interval: float) -> bool:
        """Flush if dirty and ``interval`` seconds passed since the first unflushed write."""
        if not self.needs_flush or self.last_write_at is None:
            return False
        if (now - self.last_write_at).total_seconds() < interval:
            return False
        return await self.flush()

    async def rotate_if_due(self, now: datetime, interval: float) -> bool:
        """Close the file once it is older than ``interval`` seconds."""
        if self._file is None or self.created_at is None:
            return False
        if (now - self.created_at).total_seconds() < interval:
            return False

        logger.info(
            "Rotating logfile",
            appname=self.appname,
            path=str(self.path),
            age_seconds=(now - self.created_at).total_seconds(),
        )
        await self.close()
        return True

    async def close(self) -> None:
        """Flush and release the handle. Idempotent; errors are only logged."""
        if self._file is None:
            return

        if self.needs_flush:
            try:
                await self._sync()
            except (OSError, ValueError) as e:
                self._record_error("flush")
                logger.error("Error flushing logfile on close", appname=self.appname, path=str(self.path), error=str(e))

        try:
            await self._file.close()
        except (OSError, ValueError) as e:
            self._record_error("close")
            logger.error("Error closing logfile", appname=self.appname, path=str(self.path), error=str(e))

        logger.info("Closed logfile", appname=self.appname, path=str(self.path))
        self._reset()

    async def _sync(self) -> None:
        await self._file.flush()
        await asyncio.to_thread(os.fsync, self._file.fileno())

    async def _abandon(self) -> None:
        """Discard the handle without flushing; data not yet synced is not retried."""
        try:
            await self._file.close()
        except (OSError, ValueError) as e:
            logger.warning("Error closing abandoned logfile", appname=self.appname, error=str(e))
        self._reset()

    def _reset(self) -> None:
        self._file = None
        self.path = None
        self.created_at = None
        self.last_write_at = None
        self.needs_flush = False

    def _record_error(self, operation: str) -> None:
        if self.metrics:
            self.metrics.record_logfile_error(self.appname, operation)
