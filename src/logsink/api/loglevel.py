"""
Log ingestion API endpoints.

Main endpoint: POST /loglevel/{appname}
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError as PydanticValidationError

from ..config import get_settings
from ..core.auth import extract_bearer_token, mask_token, security
from ..core.dispatcher import Dispatcher
from ..core.exceptions import (
    InternalError,
    MethodNotAllowedError,
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from ..models.log_item import ErrorResponse, IngestResponse, LogItems

logger = structlog.get_logger(__name__)

router = APIRouter()


async def get_dispatcher(request: Request) -> Dispatcher:
    """Dependency to get the dispatcher from app state."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise InternalError("Dispatcher not available")
    return dispatcher


def validate_appname(appname: str) -> str:
    """App names become file and directory names: no separators, no dot entries."""
    if not appname or "/" in appname or "\\" in appname or appname in (".", ".."):
        raise NotFoundError("Invalid/missing app name")
    return appname


async def read_body(request: Request, max_bytes: int) -> bytes:
    """Read the request body, failing as soon as it grows past ``max_bytes``."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_bytes:
        raise PayloadTooLargeError(max_bytes=max_bytes)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise PayloadTooLargeError(max_bytes=max_bytes)
    return bytes(body)


def _error_details(errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "errors": [
            {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in errors
        ]
    }


def parse_log_items(body: bytes) -> LogItems:
    """
    Strictly decode a loglevel batch.

    Exactly one JSON object, no unknown fields, string values only.
    """
    if not body.strip():
        raise ValidationError("Empty request")

    try:
        return LogItems.model_validate_json(body)
    except PydanticValidationError as e:
        errors = e.errors()
        error_types = {err["type"] for err in errors}

        if "json_invalid" in error_types:
            if any("trailing characters" in err.get("msg", "") for err in errors):
                raise ValidationError("Extra data after body")
            raise ValidationError("badly formed JSON")
        if "extra_forbidden" in error_types:
            raise ValidationError("JSON with unknown fields", details=_error_details(errors))
        raise ValidationError("JSON type error", details=_error_details(errors))


@router.post(
    "/loglevel/{appname:path}",
    response_model=IngestResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request body"},
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        404: {"model": ErrorResponse, "description": "Unknown or unconfigured application"},
        413: {"model": ErrorResponse, "description": "Request too large"},
        415: {"model": ErrorResponse, "description": "Not JSON"},
        500: {"model": ErrorResponse, "description": "Log file could not be written"},
    },
    summary="Append loglevel entries",
    description="""
    Append a batch of loglevel entries to the application's log file.

    **Processing:**
    1. Content type, bearer token and app name checks
    2. Strict JSON decoding of {"logs": [...]}
    3. Hand-off to the application's worker (one per app, in order)
    4. Worker checks config and secret, then appends one JSON line per entry

    **Request Requirements:**
    - Content-Type: application/json
    - Authorization: Bearer <application secret>
    - Body up to 10MB, unknown fields rejected
    """,
)
async def ingest_loglevel(
    appname: str,
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> IngestResponse:
    """
    Ingest a loglevel batch for one application.
    """
    media_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if media_type != "application/json":
        raise UnsupportedMediaTypeError()

    token = extract_bearer_token(credentials)
    validate_appname(appname)

    settings = get_settings()
    body = await read_body(request, settings.validation.max_body_bytes)
    batch = parse_log_items(body)

    logger.debug(
        "Log batch received",
        appname=appname,
        token=mask_token(token),
        entries_count=len(batch.logs),
    )

    result = await dispatcher.submit(appname, token, batch.logs)
    result.raise_for_status()

    return IngestResponse(
        message=result.message,
        app=appname,
        entries_accepted=len(batch.logs),
    )


@router.api_route(
    "/loglevel/{appname:path}",
    methods=["GET", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def loglevel_method_not_allowed(appname: str) -> None:
    raise MethodNotAllowedError()
