"""
Admin API endpoints for LogSink.

Provides worker status snapshots and manual flush operations.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..core.auth import authenticate_admin_token, mask_token
from ..core.dispatcher import Dispatcher
from ..models.admin import AdminStatusResponse, FlushResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


def _running_dispatcher(request: Request) -> Dispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None or not dispatcher.is_healthy():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dispatcher not available"
        )
    return dispatcher


@router.get("/v1/admin/status", response_model=AdminStatusResponse)
async def get_admin_status(
    request: Request,
    admin_token: str = Depends(authenticate_admin_token)
) -> AdminStatusResponse:
    """
    Get admin status information.

    Returns one read-only entry per live application worker.
    """
    logger.debug("Admin status requested", admin_token=mask_token(admin_token))

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        return AdminStatusResponse(dispatcher_running=False, worker_count=0, workers=[])

    workers = dispatcher.snapshot()
    return AdminStatusResponse(
        dispatcher_running=dispatcher.running,
        worker_count=len(workers),
        workers=workers,
    )


@router.post("/v1/admin/flush", response_model=FlushResponse)
async def flush_log_files(
    request: Request,
    admin_token: str = Depends(authenticate_admin_token)
) -> FlushResponse:
    """
    Force an fsync of every application's unflushed log data.

    Each flush runs inside the owning worker, in order with its batches.
    """
    logger.info("Manual flush requested", admin_token=mask_token(admin_token))

    dispatcher = _running_dispatcher(request)
    flushed = await dispatcher.flush_all()

    logger.info(
        "Manual flush completed",
        workers=len(flushed),
        flushed=sum(1 for value in flushed.values() if value),
    )

    return FlushResponse(
        message="Flush completed",
        flushed=flushed,
    )
