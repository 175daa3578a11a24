"""
Health checker implementation for monitoring system dependencies.

Performs health checks for:
- Config directory readability
- Log root writability and disk space
- Dispatcher status
"""

import asyncio
import os
import shutil
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from ..config import Settings
from .dispatcher import Dispatcher

logger = structlog.get_logger(__name__)


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy", "unhealthy"
    message: str
    details: Dict[str, Any]
    last_check: float


@dataclass
class HealthStatus:
    """Overall health status."""
    is_healthy: bool
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    timestamp: float


class HealthChecker:
    """
    Readiness checks for LogSink.

    Monitors:
    - Config directory (exists, is a directory, readable)
    - Log root (writable, enough free disk)
    - Dispatcher (running and accepting work)
    """

    def __init__(self, settings: Settings, dispatcher: Optional[Dispatcher] = None):
        self.settings = settings
        self.dispatcher = dispatcher

    async def check_all(self) -> HealthStatus:
        """Perform all health checks and return overall status."""
        checks = {}
        failed_checks = []

        check_results = await asyncio.gather(
            asyncio.to_thread(self._check_config_dir),
            asyncio.to_thread(self._check_log_root),
            asyncio.to_thread(self._check_disk_space),
            return_exceptions=True
        )
        check_results.append(self._check_dispatcher())

        check_names = ["config_dir", "log_root", "disk", "dispatcher"]
        for name, result in zip(check_names, check_results):
            if isinstance(result, Exception):
                checks[name] = HealthCheck(
                    name=name,
                    status="unhealthy",
                    message=f"Check failed: {str(result)}",
                    details={"error": str(result), "error_type": type(result).__name__},
                    last_check=time.time()
                )
                failed_checks.append(name)
            else:
                checks[name] = result
                if result.status != "healthy":
                    failed_checks.append(name)

        if failed_checks:
            logger.warning("Health checks failed", failed_checks=failed_checks)

        return HealthStatus(
            is_healthy=len(failed_checks) == 0,
            checks=checks,
            failed_checks=failed_checks,
            timestamp=time.time()
        )

    def _check_config_dir(self) -> HealthCheck:
        config_dir = self.settings.storage.config_dir
        if not config_dir.is_dir():
            return HealthCheck(
                name="config_dir",
                status="unhealthy",
                message="Config directory does not exist or is not a directory",
                details={"path": str(config_dir)},
                last_check=time.time()
            )
        if not os.access(config_dir, os.R_OK | os.X_OK):
            return HealthCheck(
                name="config_dir",
                status="unhealthy",
                message="Config directory not readable",
                details={"path": str(config_dir)},
                last_check=time.time()
            )
        return HealthCheck(
            name="config_dir",
            status="healthy",
            message="Config directory OK",
            details={
                "path": str(config_dir),
                "records": len(list(config_dir.glob("*.json"))),
            },
            last_check=time.time()
        )

    def _check_log_root(self) -> HealthCheck:
        log_root = self.settings.storage.log_root
        if not log_root.is_dir():
            return HealthCheck(
                name="log_root",
                status="unhealthy",
                message="Log root does not exist or is not a directory",
                details={"path": str(log_root)},
                last_check=time.time()
            )

        # Test write access
        test_file = log_root / ".health_check"
        try:
            test_file.write_text("test")
            test_file.unlink()
        except OSError as e:
            return HealthCheck(
                name="log_root",
                status="unhealthy",
                message=f"Log root not writable: {str(e)}",
                details={"path": str(log_root), "error": str(e)},
                last_check=time.time()
            )

        return HealthCheck(
            name="log_root",
            status="healthy",
            message="Log root writable",
            details={"path": str(log_root), "writable": True},
            last_check=time.time()
        )

    def _check_disk_space(self) -> HealthCheck:
        """Check if the log root's disk has enough free space."""
        log_root = self.settings.storage.log_root

        total, used, free = shutil.disk_usage(log_root)
        free_ratio = free / total
        free_percentage = free_ratio * 100

        min_free_ratio = self.settings.storage.disk_free_min_ratio
        min_free_percentage = min_free_ratio * 100

        if free_ratio >= min_free_ratio:
            status = "healthy"
            message = f"Disk space OK: {free_percentage:.1f}% free"
        else:
            status = "unhealthy"
            message = f"Low disk space: {free_percentage:.1f}% free (min: {min_free_percentage:.1f}%)"

        return HealthCheck(
            name="disk",
            status=status,
            message=message,
            details={
                "path": str(log_root),
                "total_bytes": total,
                "used_bytes": used,
                "free_bytes": free,
                "free_percentage": round(free_percentage, 1),
                "min_required_percentage": round(min_free_percentage, 1)
            },
            last_check=time.time()
        )

    def _check_dispatcher(self) -> HealthCheck:
        if self.dispatcher is None:
            return HealthCheck(
                name="dispatcher",
                status="unhealthy",
                message="Dispatcher not available",
                details={},
                last_check=time.time()
            )

        healthy = self.dispatcher.is_healthy()
        return HealthCheck(
            name="dispatcher",
            status="healthy" if healthy else "unhealthy",
            message="Dispatcher is running" if healthy else "Dispatcher is not running",
            details={
                "running": self.dispatcher.running,
                "workers": self.dispatcher.worker_count,
            },
            last_check=time.time()
        )
