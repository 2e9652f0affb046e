import uuid

from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.sql import func

from botengine.database import Base


class BotMessageLog(Base):
    __tablename__ = "bot_message_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    contact_id = Column(Text, nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
