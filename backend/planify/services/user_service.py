"""Helpers for working with users."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from planify.db.models.audit_log import AuditLog
from planify.db.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONES = frozenset({"UTC"})


class UserNotFoundError(LookupError):
    """Raised when an operation requires an existing user."""


class InvalidTimezoneError(ValueError):
    """Raised for a name that is not an IANA timezone."""


class UserStoreError(RuntimeError):
    """The user row could not be written."""


@dataclass(frozen=True)
class TimezoneUpdate:
    """``updated`` is False only when a detected zone was not applied."""

    user_id: UUID
    timezone: str | None
    updated: bool


def get_or_create_user(db: Session, user_id: UUID) -> User:
    """Fetch an existing user or create a free-tier row safely."""
    user = db.get(User, user_id)
    if user:
        return user

    user = User(id=user_id, tier="free", daily_ai_calls=0, monthly_ai_calls=0, frozen_pro_credits=0, bonus_ai_credits=0)
    db.add(user)
    try:
        db.flush()
        return user
    except IntegrityError:
        db.rollback()
        existing = db.get(User, user_id)
        if existing:
            return existing
        raise


def get_user(db: Session, user_id: UUID, *, for_update: bool = False) -> User:
    """Return the user or raise UserNotFoundError. ``for_update`` takes a row lock."""
    query = db.query(User).filter(User.id == user_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    user = query.one_or_none()
    if user is None:
        raise UserNotFoundError(str(user_id))
    return user


def validate_timezone(name: str | None) -> str:
    """Return the canonical IANA name or raise InvalidTimezoneError."""
    candidate = (name or "").strip()
    if not candidate:
        raise InvalidTimezoneError("timezone is required")
    try:
        return str(ZoneInfo(candidate))
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(f"unknown timezone {candidate!r}") from exc


def set_timezone(db: Session, user_id: UUID, name: str, *, source: str = "user") -> TimezoneUpdate:
    """Store the user's timezone for future daily and monthly boundaries.

    The period already running keeps its boundary; the new zone applies from
    the next reset onwards.
    """
    zone = validate_timezone(name)
    return _write_timezone(db, user_id, zone, source=source, only_if_default=False)


def auto_detect_timezone(db: Session, user_id: UUID, detected: str) -> TimezoneUpdate:
    """Adopt a browser-detected zone unless the user already picked one."""
    zone = validate_timezone(detected)
    return _write_timezone(db, user_id, zone, source="auto_detect", only_if_default=True)


def _write_timezone(db: Session, user_id: UUID, zone: str, *, source: str, only_if_default: bool) -> TimezoneUpdate:
    try:
        get_or_create_user(db, user_id)
        user = get_user(db, user_id, for_update=True)
        previous = user.timezone
        if only_if_default and previous and previous not in DEFAULT_TIMEZONES:
            db.commit()
            logger.info("Kept timezone %s for user %s (detected %s)", previous, user_id, zone)
            return TimezoneUpdate(user_id=user_id, timezone=previous, updated=False)
        if previous == zone:
            db.commit()
            return TimezoneUpdate(user_id=user_id, timezone=zone, updated=True)

        user.timezone = zone
        db.add(
            AuditLog(
                user_id=user.id,
                action_type="timezone_changed",
                action_payload={"source": source, "previous": previous, "timezone": zone},
                reason="Timezone updated",
                actor="user" if source == "user" else "system",
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Timezone update failed for user %s", user_id)
        raise UserStoreError("timezone could not be saved") from exc

    logger.info("Timezone for user %s set to %s via %s", user_id, zone, source)
    return TimezoneUpdate(user_id=user_id, timezone=zone, updated=True)
