"""User preference routes: the timezone that drives usage reset boundaries."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from planify.api.schemas.users import TimezoneRequest, TimezoneResponse
from planify.db.deps import get_db
from planify.observability.tracing import trace
from planify.services import user_service
from planify.services.user_service import InvalidTimezoneError, TimezoneUpdate, UserStoreError

router = APIRouter(prefix="/users")


@router.patch("/{user_id}/timezone", response_model=TimezoneResponse, tags=["users"])
def update_timezone(
    user_id: UUID,
    payload: TimezoneRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TimezoneResponse:
    """Set the timezone used for the user's midnight and month-start resets."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace("users.timezone", metadata={"source": "user"}, user_id=str(user_id), request_id=request_id):
        update = _apply(lambda: user_service.set_timezone(db, user_id, payload.timezone))
    return _response(update, request_id)


@router.post("/{user_id}/timezone/auto", response_model=TimezoneResponse, tags=["users"])
def auto_detect_timezone(
    user_id: UUID,
    payload: TimezoneRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TimezoneResponse:
    """Adopt the client's detected timezone only while the user is still on the default."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace("users.timezone", metadata={"source": "auto_detect"}, user_id=str(user_id), request_id=request_id):
        update = _apply(lambda: user_service.auto_detect_timezone(db, user_id, payload.timezone))
    return _response(update, request_id)


def _apply(action) -> TimezoneUpdate:
    try:
        return action()
    except InvalidTimezoneError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except UserStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Timezone could not be saved. Please try again.",
        ) from exc


def _response(update: TimezoneUpdate, request_id: str | None) -> TimezoneResponse:
    return TimezoneResponse(
        success=update.updated,
        user_id=update.user_id,
        timezone=update.timezone,
        request_id=request_id or "",
    )
