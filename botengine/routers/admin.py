"""Operator endpoints for inspecting and resetting bot sessions."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from botengine.config import settings
from botengine.database import get_db
from botengine.logging_config import get_logger, mask_phone
from botengine.schemas.admin import SessionResponse
from botengine.services.global_commands import STATE_START
from botengine.services.intercept_service import normalize_contact
from botengine.services.session_service import get_session

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    if not settings.admin_token:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _load_session_or_404(db: Session, tenant_id: UUID, contact: str):
    session = get_session(db, normalize_contact(contact), tenant_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _to_response(session) -> SessionResponse:
    return SessionResponse(
        contact_id=session.contact_id,
        tenant_id=str(session.tenant_id),
        state=session.state,
        previous_state=session.previous_state,
        stack=list(session.stack or []),
        context=dict(session.context or {}),
        locked=bool(session.locked),
        last_interaction=session.last_interaction,
    )


@router.get("/sessions/{tenant_id}/{contact}", response_model=SessionResponse)
async def get_bot_session(
    tenant_id: UUID,
    contact: str,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return _to_response(_load_session_or_404(db, tenant_id, contact))


@router.post("/sessions/{tenant_id}/{contact}/reset", response_model=SessionResponse)
async def reset_bot_session(
    tenant_id: UUID,
    contact: str,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Hand the contact back to the bot, e.g. after a human finished the handoff."""
    _require_admin_token(x_admin_token)
    session = _load_session_or_404(db, tenant_id, contact)
    previous = session.state

    session.state = STATE_START
    session.previous_state = STATE_START
    session.stack = []
    session.context = {"interaction_count": 0}
    session.locked = False
    session.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(session)

    logger.info(
        f"Session reset by operator: {previous} -> {STATE_START}",
        extra={"context": {"tenant_id": str(tenant_id), "contact": mask_phone(session.contact_id)}},
    )
    return _to_response(session)
