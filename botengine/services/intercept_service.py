"""End-to-end handling of one inbound message for one contact.

dedup check -> session lock -> parse -> navigation -> persist -> release.
The lock is released on every path, including unexpected exceptions.
"""

import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from botengine.config import settings
from botengine.logging_config import get_logger, mask_phone
from botengine.models import BotEngineConfig
from botengine.services.command_dispatcher import dispatch_command
from botengine.services.dedup_cache import DedupCache, DedupStatus, check_delivery
from botengine.services.input_parser import parse_input
from botengine.services.message_service import DIRECTION_INBOUND, DIRECTION_OUTBOUND, log_message
from botengine.services.session_lock import LockAcquisition, acquire_lock, release_lock
from botengine.services.session_service import (
    SessionContext,
    get_session,
    reset_interrupted_action,
    save_session,
)
from botengine.services.state_machine import NavigationStateMachine, Transition

logger = get_logger("intercept_service")

# Process-wide, best-effort. The session lock is the cross-instance guarantee.
dedup_cache = DedupCache(
    window_seconds=settings.dedup_window_seconds,
    max_entries=settings.dedup_max_entries,
)


@dataclass
class InterceptResult:
    intercepted: bool
    should_continue: bool
    response: str | None = None
    new_state: str | None = None
    deduplicated: bool = False
    reason: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_contact(phone: str | None) -> str:
    return re.sub(r"\D", "", (phone or "").split("@")[0])


def get_bot_config(db: Session, tenant_id: UUID) -> BotEngineConfig | None:
    return db.query(BotEngineConfig).filter(BotEngineConfig.tenant_id == tenant_id).first()


async def intercept_message(
    db: Session,
    *,
    tenant_id: UUID,
    sender_phone: str,
    message_text: str,
    instance_name: str | None = None,
    message_id: str | None = None,
    now: datetime | None = None,
    cache: DedupCache | None = None,
) -> InterceptResult:
    contact = normalize_contact(sender_phone)
    log_context = {"tenant_id": str(tenant_id), "contact": mask_phone(contact)}
    if not contact:
        return InterceptResult(intercepted=False, should_continue=True, reason="missing_contact")

    # The bot is opt-in per tenant.
    config = get_bot_config(db, tenant_id)
    if config is None:
        return InterceptResult(intercepted=False, should_continue=True, reason="bot_not_configured")
    if not config.is_enabled:
        return InterceptResult(intercepted=False, should_continue=True, reason="bot_disabled")

    status = await check_delivery(
        cache if cache is not None else dedup_cache,
        contact,
        str(tenant_id),
        message_text or "",
        now=now.timestamp() if now else None,
        message_id=message_id,
    )
    if status == DedupStatus.DUPLICATE:
        logger.info("Duplicate delivery short-circuited", extra={"context": log_context})
        return InterceptResult(intercepted=False, should_continue=False, deduplicated=True, reason="duplicate")

    try:
        lock = acquire_lock(db, contact, tenant_id, now=now)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Session lock acquire failed: {e}", extra={"context": log_context})
        return InterceptResult(intercepted=False, should_continue=True, reason="error")
    if not lock.acquired:
        return InterceptResult(intercepted=False, should_continue=False, reason="locked")

    try:
        result = await _process_locked(
            db,
            tenant_id=tenant_id,
            contact=contact,
            message_text=message_text or "",
            instance_name=instance_name,
            config=config,
            lock=lock,
            now=now,
        )
    except Exception:
        db.rollback()
        logger.exception("Intercept processing failed", extra={"context": log_context})
        result = InterceptResult(intercepted=False, should_continue=True, reason="error")
    finally:
        try:
            release_lock(db, contact, tenant_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Session lock release failed, it will expire as stale: {e}",
                extra={"context": log_context},
            )
    return result


async def _process_locked(
    db: Session,
    *,
    tenant_id: UUID,
    contact: str,
    message_text: str,
    instance_name: str | None,
    config: BotEngineConfig | None,
    lock: LockAcquisition,
    now: datetime | None,
) -> InterceptResult:
    now = now or datetime.now(timezone.utc)
    session = get_session(db, contact, tenant_id)
    if session is None:
        raise RuntimeError("Session row vanished while locked")

    if lock.reclaimed:
        context = SessionContext.from_dict(session.context)
        interrupted = reset_interrupted_action(context)
        if interrupted:
            # The previous holder died mid-action; do not replay its side effect.
            logger.warning(
                f"Dropped interrupted action {interrupted} on stale lock reclaim",
                extra={"context": {"tenant_id": str(tenant_id), "contact": mask_phone(contact)}},
            )
            session.context = context.to_dict()

    log_message(db, tenant_id=tenant_id, contact_id=contact, direction=DIRECTION_INBOUND, text=message_text, now=now)

    machine = NavigationStateMachine(db, session, config=config, now=now)
    transition = await machine.process(parse_input(message_text))

    if transition.command:
        await _delegate_command(transition, tenant_id, contact, instance_name)

    if transition.persist:
        save_session(
            db,
            session,
            state=transition.state,
            previous_state=transition.previous_state,
            stack=transition.stack,
            context=transition.context,
            now=now,
        )
    else:
        db.commit()

    if transition.response:
        log_message(
            db,
            tenant_id=tenant_id,
            contact_id=contact,
            direction=DIRECTION_OUTBOUND,
            text=transition.response,
            now=now,
        )
        db.commit()

    logger.info(
        "Message processed",
        extra={
            "context": {
                "tenant_id": str(tenant_id),
                "contact": mask_phone(contact),
                "intercepted": transition.intercepted,
                "state": transition.state,
                "reason": transition.reason,
            }
        },
    )
    return InterceptResult(
        intercepted=transition.intercepted,
        should_continue=transition.should_continue,
        response=transition.response,
        new_state=transition.state,
        reason=transition.reason,
    )


async def _delegate_command(transition: Transition, tenant_id: UUID, contact: str, instance_name: str | None) -> None:
    reply = await dispatch_command(tenant_id, contact, transition.command, instance_name)
    if reply:
        transition.intercepted = True
        transition.should_continue = False
        transition.response = reply
