"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /loglevel/{appname} - Log ingestion endpoint
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
- /v1/admin/status, /v1/admin/flush - Worker status and manual flush
"""
from .admin import router as admin_router
from .healthz import router as healthz_router
from .loglevel import router as loglevel_router
from .metrics import router as metrics_router

__all__ = ["admin_router", "healthz_router", "loglevel_router", "metrics_router"]
