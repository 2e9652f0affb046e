import uuid

from sqlalchemy import Boolean, Column, DateTime, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from botengine.database import Base, JSONType


class BotSession(Base):
    __tablename__ = "bot_sessions"
    __table_args__ = (UniqueConstraint("contact_id", "tenant_id", name="uq_bot_sessions_contact_tenant"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Text, nullable=False)  # normalized phone digits
    tenant_id = Column(Uuid, nullable=False)
    state = Column(Text, nullable=False, default="START")
    previous_state = Column(Text, default="START")
    stack = Column(JSONType, nullable=False, default=list)
    context = Column(JSONType, nullable=False, default=dict)
    locked = Column(Boolean, nullable=False, default=False)
    last_interaction = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
