import uuid

from sqlalchemy import Boolean, Column, Text, UniqueConstraint, Uuid

from botengine.database import Base, JSONType


class LegacyMenu(Base):
    __tablename__ = "bot_menus"
    __table_args__ = (UniqueConstraint("tenant_id", "menu_key", name="uq_bot_menus_tenant_key"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    menu_key = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    header_message = Column(Text)
    footer_message = Column(Text)
    # [{"label": ..., "key": ..., "target_menu": ..., "target_state": ..., "action": ...}]
    options = Column(JSONType, nullable=False, default=list)
    parent_menu_key = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
