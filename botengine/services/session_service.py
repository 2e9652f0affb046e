from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from botengine.models import BotSession


@dataclass
class SessionContext:
    """Typed view of ``BotSession.context``; unknown keys survive in ``extra``."""

    interaction_count: int = 0
    current_menu_key: str | None = None
    awaiting_input: bool = False
    input_variable: str | None = None
    flow_id: str | None = None
    flow_node_id: str | None = None
    variables: dict = field(default_factory=dict)
    # Set while an external side effect is in flight; see reset_interrupted_action.
    pending_action: str | None = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict | None) -> "SessionContext":
        data = dict(data or {})
        known = {item.name for item in fields(cls)} - {"extra"}
        values = {name: data.pop(name) for name in list(data) if name in known}
        try:
            values["interaction_count"] = int(values.get("interaction_count") or 0)
        except (TypeError, ValueError):
            values["interaction_count"] = 0
        if not isinstance(values.get("variables"), dict):
            values["variables"] = {}
        return cls(**values, extra=data)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        for item in fields(self):
            if item.name != "extra":
                data[item.name] = getattr(self, item.name)
        return data

    def clear_flow(self) -> None:
        self.flow_id = None
        self.flow_node_id = None
        self.awaiting_input = False
        self.input_variable = None

    @property
    def in_flow(self) -> bool:
        return bool(self.flow_id and self.flow_node_id)


def get_session(db: Session, contact_id: str, tenant_id: UUID) -> BotSession | None:
    return (
        db.query(BotSession)
        .filter(BotSession.contact_id == contact_id, BotSession.tenant_id == tenant_id)
        .first()
    )


def save_session(
    db: Session,
    session: BotSession,
    *,
    state: str,
    previous_state: str | None,
    stack: list[str],
    context: SessionContext,
    now: datetime | None = None,
) -> None:
    """Write the new navigation snapshot. JSON columns are reassigned, never mutated in place."""
    now = now or datetime.now(timezone.utc)
    session.state = state
    session.previous_state = previous_state
    session.stack = list(stack)
    session.context = context.to_dict()
    session.last_interaction = now
    session.updated_at = now
    db.commit()


def mark_pending_action(db: Session, session: BotSession, context: SessionContext, action: str) -> None:
    """Persist a resumption marker before starting an external side effect."""
    context.pending_action = action
    session.context = context.to_dict()
    db.commit()


def clear_pending_action(db: Session, session: BotSession) -> None:
    """Drop a committed marker after its action failed; the rest of the stored context is kept."""
    stored = SessionContext.from_dict(session.context)
    stored.pending_action = None
    session.context = stored.to_dict()
    db.commit()


def reset_interrupted_action(context: SessionContext) -> str | None:
    """Drop the marker left by a processor that died mid-action; returns the action name."""
    interrupted = context.pending_action
    context.pending_action = None
    if interrupted:
        context.awaiting_input = False
        context.input_variable = None
    return interrupted
