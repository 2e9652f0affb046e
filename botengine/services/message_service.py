from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from botengine.models import BotMessageLog

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"


def log_message(
    db: Session,
    *,
    tenant_id: UUID,
    contact_id: str,
    direction: str,
    text: str,
    now: datetime | None = None,
) -> BotMessageLog:
    """Append a message log entry. Flushed only; committed with the session update."""
    entry = BotMessageLog(
        tenant_id=tenant_id,
        contact_id=contact_id,
        direction=direction,
        text=text or "",
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(entry)
    db.flush()
    return entry
