import uuid

from sqlalchemy import Boolean, Column, Integer, Text, Uuid

from botengine.database import Base


class BotEngineConfig(Base):
    __tablename__ = "bot_engine_configs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False, unique=True)
    is_enabled = Column(Boolean, nullable=False, default=True)
    welcome_message = Column(Text, default="Olá! 👋 Seja bem-vindo(a)!")
    fallback_message = Column(Text, default="Desculpe, não entendi.")
    human_takeover_message = Column(Text)
    goodbye_message = Column(Text)
    welcome_cooldown_hours = Column(Integer, default=24)
