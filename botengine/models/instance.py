import uuid

from sqlalchemy import Boolean, Column, DateTime, Text, Uuid

from botengine.database import Base


class WhatsAppInstance(Base):
    __tablename__ = "whatsapp_instances"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    instance_name = Column(Text, nullable=False, unique=True)
    original_instance_name = Column(Text)
    connected_phone = Column(Text)
    is_connected = Column(Boolean, nullable=False, default=False)
    session_valid = Column(Boolean, nullable=False, default=True)
    last_heartbeat_at = Column(DateTime(timezone=True))

    @property
    def own_phone(self) -> str | None:
        digits = "".join(ch for ch in (self.connected_phone or "") if ch.isdigit())
        return digits or None
