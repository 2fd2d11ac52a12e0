import logging
from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.schemas.meeting_sync import (
    MeetingSyncErrorResponse,
    MeetingSyncReport,
    MeetingSyncRequest,
)
from app.services.meeting_sync_errors import MeetingSyncError
from app.services.meeting_sync_service import MeetingSyncService

router = APIRouter(tags=["meeting-sync"])
logger = logging.getLogger(__name__)

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_404_NOT_FOUND: {"model": MeetingSyncErrorResponse},
    status.HTTP_409_CONFLICT: {"model": MeetingSyncErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": MeetingSyncErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": MeetingSyncErrorResponse},
}

_WEBHOOK_MEETING_ID_PATHS = ("meeting_id", "meetingId", "meeting.id", "id")


@router.post(
    "/sync",
    response_model=MeetingSyncReport,
    responses=_ERROR_RESPONSES,
)
def sync_meeting(payload: MeetingSyncRequest) -> MeetingSyncReport | JSONResponse:
    return _run_sync(
        account_id=payload.account_id,
        external_id=payload.external_id,
        trigger="manual",
    )


@router.post(
    "/webhooks/meetgeek/{account_id}",
    response_model=MeetingSyncReport,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERROR_RESPONSES,
)
def receive_meetgeek_webhook(
    account_id: str,
    payload: dict[str, Any],
) -> MeetingSyncReport | JSONResponse:
    external_id = _extract_first_string(payload, _WEBHOOK_MEETING_ID_PATHS)
    if not external_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Webhook payload missing meeting_id.",
        )
    return _run_sync(account_id=account_id, external_id=external_id, trigger="webhook")


def _run_sync(
    *,
    account_id: str,
    external_id: str,
    trigger: str,
) -> MeetingSyncReport | JSONResponse:
    service = MeetingSyncService(get_settings())
    try:
        return service.sync_meeting(account_id=account_id, external_id=external_id)
    except MeetingSyncError as exc:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    except Exception:
        logger.exception(
            "Meeting sync crashed trigger=%s account_id=%s external_id=%s",
            trigger,
            account_id,
            external_id,
        )
        raise


def _extract_first_string(payload: Mapping[str, Any], paths: tuple[str, ...]) -> str | None:
    for path in paths:
        value: Any = payload
        for segment in path.split("."):
            if not isinstance(value, Mapping) or segment not in value:
                value = None
                break
            value = value[segment]
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
    return None
