"""
Routes validated batches to their application's worker.

A single dispatch task owns the appname -> worker mapping. Callers go
through ``submit``, which queues the request and waits on its reply
future; the dispatch task only ever blocks on a full worker queue.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import structlog

from ..config import WorkerSettings
from ..models.admin import WorkerStatus
from ..models.log_item import LogItem, LogRequest, LogResult
from .config_store import ConfigStore
from .metrics import MetricsCollector
from .worker import ApplicationWorker, Clock, FlushCommand, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class _FlushAll:
    """Fan a FlushCommand out to every worker; replies with the per-app futures."""
    reply: "asyncio.Future[Dict[str, asyncio.Future[bool]]]" = field(repr=False)


class _Stop:
    """Inbound sentinel: everything queued before it is still delivered."""


InboundMessage = Union[LogRequest, _FlushAll, _Stop]


class Dispatcher:
    """
    Owns one ApplicationWorker per appname.

    Workers are created on first sight of an appname. With the default
    settings they live as long as the dispatcher; ``idle_timeout_seconds``
    and ``max_workers`` enable eviction, which always drains the worker
    (flush + close) before a replacement can be created.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        log_root: Path,
        settings: WorkerSettings,
        clock: Clock = utc_now,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config_store = config_store
        self.log_root = Path(log_root)
        self.settings = settings
        self.clock = clock
        self.metrics = metrics

        self._inbound: "asyncio.Queue[InboundMessage]" = asyncio.Queue()
        # Least recently used first
        self._workers: "OrderedDict[str, ApplicationWorker]" = OrderedDict()
        self._task: Optional["asyncio.Task[None]"] = None
        self._stopping = False
        self._last_sweep: Optional[datetime] = None

        logger.info(
            "Dispatcher initialized",
            log_root=str(self.log_root),
            queue_size=settings.queue_size,
            idle_timeout_seconds=settings.idle_timeout_seconds,
            max_workers=settings.max_workers,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    def is_healthy(self) -> bool:
        return self.running and not self._stopping

    async def start(self) -> None:
        """Start the dispatch task."""
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="dispatcher")
        logger.info("Dispatcher started")

    async def stop(self) -> None:
        """
        Stop accepting work, deliver what is already queued, then drain
        and stop every worker.
        """
        if not self.running:
            return

        self._stopping = True
        self._inbound.put_nowait(_Stop())
        await self._task

        workers = list(self._workers.values())
        self._workers.clear()
        for worker in workers:
            await worker.stop()
        self._update_worker_gauge()

        logger.info("Dispatcher stopped", workers_stopped=len(workers))

    async def submit(self, appname: str, token: str, items: Iterable[LogItem]) -> LogResult:
        """Hand a validated batch to its worker and wait for the result."""
        if self._stopping or not self.running:
            return LogResult.internal_error("Service shutting down")

        reply: "asyncio.Future[LogResult]" = asyncio.get_running_loop().create_future()
        request = LogRequest(appname=appname, token=token, items=list(items), reply=reply)
        self._inbound.put_nowait(request)
        return await reply

    async def flush_all(self) -> Dict[str, bool]:
        """fsync unflushed data of every worker. Returns appname -> flushed."""
        if self._stopping or not self.running:
            return {}

        reply: "asyncio.Future[Dict[str, asyncio.Future[bool]]]" = asyncio.get_running_loop().create_future()
        self._inbound.put_nowait(_FlushAll(reply))
        pending = await reply

        results = await asyncio.gather(*pending.values())
        return dict(zip(pending.keys(), results))

    def snapshot(self) -> List[WorkerStatus]:
        """Read-only status of every live worker."""
        return [worker.status() for worker in self._workers.values()]

    @property
    def _sweep_interval(self) -> Optional[float]:
        if self.settings.idle_timeout_seconds <= 0:
            return None
        return max(self.settings.idle_timeout_seconds / 2, 0.01)

    async def _run(self) -> None:
        while True:
            try:
                message = await asyncio.wait_for(self._inbound.get(), timeout=self._sweep_interval)
            except asyncio.TimeoutError:
                await self._evict_idle()
                continue

            if isinstance(message, _Stop):
                return

            try:
                if isinstance(message, LogRequest):
                    await self._route(message)
                elif isinstance(message, _FlushAll):
                    await self._fan_out_flush(message)
            except Exception as e:
                logger.error(
                    "Dispatch failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                if isinstance(message, LogRequest):
                    message.respond(LogResult.internal_error("Internal Server Error"))
                elif not message.reply.done():
                    message.reply.set_exception(e)

            if self._sweep_due():
                await self._evict_idle()

    async def _route(self, request: LogRequest) -> None:
        worker = self._workers.get(request.appname)
        if worker is not None and not worker.running:
            logger.error("Worker loop ended unexpectedly, replacing it", appname=request.appname)
            self._workers.pop(request.appname)
            await worker.stop()
            worker = None
        if worker is None:
            worker = await self._create_worker(request.appname)
        else:
            self._workers.move_to_end(request.appname)
        await worker.enqueue(request)

    async def _create_worker(self, appname: str) -> ApplicationWorker:
        max_workers = self.settings.max_workers
        if max_workers > 0 and len(self._workers) >= max_workers:
            await self._evict_lru(len(self._workers) - max_workers + 1)

        logger.info("Create worker", appname=appname)
        worker = ApplicationWorker(
            appname=appname,
            config_store=self.config_store,
            log_root=self.log_root,
            settings=self.settings,
            clock=self.clock,
            metrics=self.metrics,
        )
        worker.start()
        self._workers[appname] = worker
        self._update_worker_gauge()
        return worker

    async def _fan_out_flush(self, message: _FlushAll) -> None:
        loop = asyncio.get_running_loop()
        pending: Dict[str, "asyncio.Future[bool]"] = {}
        for appname, worker in self._workers.items():
            pending[appname] = loop.create_future()
            await worker.enqueue(FlushCommand(reply=pending[appname]))
        if not message.reply.done():
            message.reply.set_result(pending)

    def _sweep_due(self) -> bool:
        interval = self._sweep_interval
        if interval is None:
            return False
        now = self.clock()
        if self._last_sweep is None or (now - self._last_sweep).total_seconds() >= interval:
            return True
        return False

    async def _evict_idle(self) -> None:
        timeout = self.settings.idle_timeout_seconds
        now = self.clock()
        self._last_sweep = now
        if timeout <= 0:
            return

        expired = [
            appname
            for appname, worker in self._workers.items()
            if worker.is_idle() and (now - worker.last_activity).total_seconds() >= timeout
        ]
        for appname in expired:
            await self._evict(appname, "idle")

    async def _evict_lru(self, count: int) -> None:
        candidates = [appname for appname, worker in self._workers.items() if worker.is_idle()]
        if len(candidates) < count:
            logger.warning(
                "Worker limit exceeded, not enough idle workers to evict",
                max_workers=self.settings.max_workers,
                workers=len(self._workers),
            )
        for appname in candidates[:count]:
            await self._evict(appname, "lru")

    async def _evict(self, appname: str, reason: str) -> None:
        worker = self._workers.pop(appname)
        await worker.stop()
        self._update_worker_gauge()
        if self.metrics:
            self.metrics.record_worker_evicted(reason)
        logger.info("Evicted worker", appname=appname, reason=reason)

    def _update_worker_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_workers_active(len(self._workers))
