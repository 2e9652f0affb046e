"""Per-contact mutual exclusion on the ``bot_sessions`` row.

Webhook retries routinely deliver the same message twice within a second. The
``locked`` flag, flipped with a conditional UPDATE, makes sure only one delivery
drives the conversation. A lock older than ``lock_stale_seconds`` is considered
abandoned (the holder crashed) and may be reclaimed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from botengine.config import settings
from botengine.logging_config import get_logger, mask_phone
from botengine.models import BotSession
from botengine.services.global_commands import STATE_START

logger = get_logger("session_lock")


@dataclass
class LockAcquisition:
    acquired: bool
    created: bool = False
    reclaimed: bool = False


def _coerce_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_filter(contact_id: str, tenant_id: UUID):
    return (BotSession.contact_id == contact_id, BotSession.tenant_id == tenant_id)


def acquire_lock(
    db: Session,
    contact_id: str,
    tenant_id: UUID,
    *,
    now: datetime | None = None,
    stale_seconds: int | None = None,
) -> LockAcquisition:
    now = now or datetime.now(timezone.utc)
    stale_seconds = settings.lock_stale_seconds if stale_seconds is None else stale_seconds
    stale_before = now - timedelta(seconds=stale_seconds)
    log_context = {"contact": mask_phone(contact_id), "tenant_id": str(tenant_id)}

    existing = (
        db.query(BotSession.id, BotSession.locked, BotSession.updated_at)
        .filter(*_session_filter(contact_id, tenant_id))
        .first()
    )

    if existing is None:
        db.add(
            BotSession(
                contact_id=contact_id,
                tenant_id=tenant_id,
                state=STATE_START,
                previous_state=STATE_START,
                stack=[],
                context={"interaction_count": 0},
                locked=True,
                created_at=now,
                updated_at=now,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            # A concurrent delivery created the row first and holds its lock.
            db.rollback()
            logger.info("Session creation race lost", extra={"context": log_context})
            return LockAcquisition(acquired=False)
        return LockAcquisition(acquired=True, created=True)

    locked_at = _coerce_utc(existing.updated_at)
    is_stale = bool(existing.locked) and locked_at is not None and locked_at < stale_before
    if existing.locked and not is_stale:
        logger.info("Session locked by another delivery", extra={"context": log_context})
        return LockAcquisition(acquired=False)

    result = db.execute(
        update(BotSession)
        .where(
            *_session_filter(contact_id, tenant_id),
            or_(BotSession.locked.is_(False), BotSession.updated_at < stale_before),
        )
        .values(locked=True, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 0:
        logger.info("Session lock race lost", extra={"context": log_context})
        return LockAcquisition(acquired=False)

    if is_stale:
        logger.warning(
            "Reclaimed stale session lock",
            extra={"context": {**log_context, "locked_at": locked_at.isoformat()}},
        )
    return LockAcquisition(acquired=True, reclaimed=is_stale)


def release_lock(db: Session, contact_id: str, tenant_id: UUID, *, now: datetime | None = None) -> None:
    now = now or datetime.now(timezone.utc)
    db.execute(
        update(BotSession)
        .where(*_session_filter(contact_id, tenant_id))
        .values(locked=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
