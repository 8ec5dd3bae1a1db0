import logging
from typing import NoReturn, Optional

from fastapi import HTTPException

from app.services.errors import (
    SchedulingConflictError,
    SchedulingError,
    SchedulingInternalError,
    SchedulingNotFoundError,
    SchedulingPermissionError,
)

logger = logging.getLogger(__name__)


def raise_scheduling_http_error(exc: SchedulingError) -> NoReturn:
    if isinstance(exc, SchedulingInternalError):
        logger.error("Scheduling internal error: %s", exc, exc_info=exc.__cause__ or exc)
        raise HTTPException(
            status_code=500,
            detail={"error": exc.code, "message": "Scheduling is temporarily unavailable"},
        ) from exc
    if isinstance(exc, SchedulingNotFoundError):
        raise HTTPException(status_code=404, detail=exc.to_detail()) from exc
    if isinstance(exc, SchedulingPermissionError):
        raise HTTPException(status_code=403, detail=exc.to_detail()) from exc
    if isinstance(exc, SchedulingConflictError):
        raise HTTPException(status_code=409, detail=exc.to_detail()) from exc
    raise HTTPException(status_code=400, detail=exc.to_detail()) from exc


def parse_service_ids(service_id: Optional[str], service_ids: Optional[str]) -> list[str]:
    """Accept ``service_id`` and/or a comma separated ``service_ids`` query value."""
    ids: list[str] = []
    for raw in [service_id or "", *(service_ids or "").split(",")]:
        value = raw.strip()
        if value and value not in ids:
            ids.append(value)
    return ids
