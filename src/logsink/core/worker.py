"""
Per-application worker.

One worker per appname, running as its own asyncio task. It is the only
code touching its config cache and its log file, and it handles queued
messages strictly one at a time in arrival order.
"""

import asyncio
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

import structlog

from ..config import WorkerSettings
from ..models.admin import WorkerStatus
from ..models.log_item import LoggerConfig, LogRequest, LogResult
from .auth import mask_token
from .config_store import ConfigStore
from .exceptions import ConfigNotFoundError, ConfigParseError, LogFileError
from .logfile import LogFileManager
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FlushCommand:
    """Force an fsync of unflushed data; replies True if anything was flushed."""
    reply: "asyncio.Future[bool]" = field(repr=False)


class _Stop:
    """Queue sentinel: close the log file and end the loop."""


WorkerMessage = Union[LogRequest, FlushCommand, _Stop]


class ApplicationWorker:
    """
    Serializing actor for one application.

    Per request: refresh config (cached for ``config_cache_seconds``),
    reject if unconfigured, check the bearer token against the secret,
    rotate/flush the current file if due, then append every item with a
    fresh ``servertime``. While idle it wakes every
    ``flush_interval_seconds`` to run the same rotation and flush checks.
    """

    def __init__(
        self,
        appname: str,
        config_store: ConfigStore,
        log_root: Path,
        settings: WorkerSettings,
        clock: Clock = utc_now,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.appname = appname
        self.config_store = config_store
        self.log_root = Path(log_root)
        self.settings = settings
        self.clock = clock
        self.metrics = metrics

        self.config: Optional[LoggerConfig] = None
        self.configured = False
        self.last_config_check: Optional[datetime] = None
        self.log_dir: Optional[Path] = None
        self.logfile = LogFileManager(appname, metrics)
        self.last_activity = clock()

        self._queue: "asyncio.Queue[WorkerMessage]" = asyncio.Queue(maxsize=settings.queue_size)
        self._task: Optional["asyncio.Task[None]"] = None
        self._busy = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def metrics_label(self) -> str:
        """Appname for metric labels; apps never configured share 'unknown'."""
        return self.appname if self.config is not None else "unknown"

    def is_idle(self) -> bool:
        return not self._busy and self._queue.empty()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"worker:{self.appname}")
        logger.info("Worker started", appname=self.appname)

    async def enqueue(self, message: WorkerMessage) -> None:
        """Queue a message; suspends while the queue is full."""
        await self._queue.put(message)

    async def stop(self) -> None:
        """Drain queued messages, close the log file and end the loop."""
        if self.running:
            await self._queue.put(_Stop())
            await self._task
        else:
            await self.logfile.close()
            self._fail_queued()
        logger.info("Worker stopped", appname=self.appname)

    def _fail_queued(self) -> None:
        """Answer requests stranded in the queue of a worker whose loop has ended."""
        while not self._queue.empty():
            message = self._queue.get_nowait()
            if isinstance(message, LogRequest):
                message.respond(LogResult.internal_error("Internal Server Error"))
            elif isinstance(message, FlushCommand) and not message.reply.done():
                message.reply.set_result(False)

    async def _run(self) -> None:
        tick = self.settings.flush_interval_seconds or None
        while True:
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=tick)
            except asyncio.TimeoutError:
                try:
                    await self._housekeeping()
                except Exception as e:
                    logger.error(
                        "Housekeeping failed",
                        appname=self.appname,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                continue

            if isinstance(message, _Stop):
                await self.logfile.close()
                return

            self._busy = True
            try:
                await self._dispatch(message)
            finally:
                self._busy = False
                self.last_activity = self.clock()

    async def _dispatch(self, message: Any) -> None:
        if isinstance(message, LogRequest):
            try:
                result = await self.handle(message)
            except Exception as e:
                logger.error(
                    "Unexpected error handling batch",
                    appname=self.appname,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                result = LogResult.internal_error("Internal Server Error")
            if not message.respond(result):
                logger.debug("Caller went away before reply", appname=self.appname)
        elif isinstance(message, FlushCommand):
            flushed = await self.logfile.flush()
            if not message.reply.done():
                message.reply.set_result(flushed)
        else:
            logger.warning("Ignoring unknown worker message", appname=self.appname, message_type=type(message).__name__)

    async def _housekeeping(self) -> None:
        now = self.clock()
        await self.logfile.rotate_if_due(now, self.settings.rotation_interval_seconds)
        await self.logfile.flush_if_due(now, self.settings.flush_interval_seconds)

    async def handle(self, request: LogRequest) -> LogResult:
        """Process one batch to completion."""
        result, written = await self._process(request)
        if self.metrics:
            self.metrics.record_batch(self.metrics_label, result.status.value, len(request.items), written)
        return result

    async def _process(self, request: LogRequest) -> Tuple[LogResult, int]:
        now = self.clock()
        await self._refresh_config(now)

        if not self.configured:
            return LogResult.not_found("Logger not configured"), 0

        if not self._authenticate(request.token):
            logger.warning("Invalid token", appname=self.appname, token=mask_token(request.token))
            return LogResult.unauthorized("Invalid token"), 0

        await self.logfile.rotate_if_due(now, self.settings.rotation_interval_seconds)
        await self.logfile.flush_if_due(now, self.settings.flush_interval_seconds)

        if not request.items:
            return LogResult.ok(), 0

        if not self.logfile.is_open:
            try:
                await asyncio.to_thread(LogFileManager.ensure_directory, self.log_dir)
                await self.logfile.open(self.log_dir, now)
            except LogFileError as e:
                logger.error("Could not create logfile", appname=self.appname, error=str(e), details=e.details)
                return LogResult.internal_error("Could not create logfile"), 0

        written = 0
        for item in request.items:
            try:
                await self.logfile.write_item(item.stamped(self.clock()))
            except LogFileError as e:
                logger.error(
                    "Batch aborted",
                    appname=self.appname,
                    written=written,
                    remaining=len(request.items) - written,
                    error=str(e),
                )
                return LogResult.internal_error("Could not write logfile"), written
            written += 1

        self.logfile.mark_written(self.clock())
        logger.debug("Batch written", appname=self.appname, items=written, path=str(self.logfile.path))
        return LogResult.ok(), written

    async def _refresh_config(self, now: datetime) -> None:
        """Re-read config at most once per cache interval."""
        if self.last_config_check is not None:
            age = (now - self.last_config_check).total_seconds()
            if age < self.settings.config_cache_seconds:
                return
        self.last_config_check = now

        try:
            config = await self.config_store.load(self.appname)
        except (ConfigNotFoundError, ConfigParseError) as e:
            logger.warning("Logger not configured", appname=self.appname, reason=str(e), details=e.details)
            self.configured = False
            if self.metrics:
                self.metrics.record_config_reload(self.metrics_label, e.error_code)
            return

        self.config = config
        if self.metrics:
            self.metrics.record_config_reload(self.metrics_label, "ok")

        log_dir = self.log_root / (config.dir or self.appname)
        if log_dir != self.log_dir:
            await self.logfile.close()
            self.log_dir = None
            try:
                await asyncio.to_thread(LogFileManager.ensure_directory, log_dir)
            except LogFileError as e:
                logger.error("Error creating log directory", appname=self.appname, error=str(e), details=e.details)
                self.configured = False
                return
            self.log_dir = log_dir
            logger.info("Log directory resolved", appname=self.appname, log_dir=str(log_dir))

        self.configured = True

    def _authenticate(self, token: str) -> bool:
        secret = self.config.secret if self.config else ""
        if not secret:
            return False
        return secrets.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))

    def status(self) -> WorkerStatus:
        """Read-only snapshot for the admin API."""
        return WorkerStatus(
            appname=self.appname,
            configured=self.configured,
            log_dir=str(self.log_dir) if self.log_dir else None,
            file_open=self.logfile.is_open,
            current_file=str(self.logfile.path) if self.logfile.path else None,
            needs_flush=self.logfile.needs_flush,
            queue_depth=self.queue_depth,
            last_activity=self.last_activity,
        )
