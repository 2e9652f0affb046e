import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text, Uuid

from botengine.database import Base


class DynamicMenu(Base):
    """v2 menu tree node. A row is a menu and also an option of its parent."""

    __tablename__ = "bot_dynamic_menus"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    parent_menu_id = Column(Uuid, ForeignKey("bot_dynamic_menus.id"))
    menu_key = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text)
    emoji = Column(Text)
    section_title = Column(Text)
    menu_type = Column(Text, nullable=False, default="submenu")  # submenu, flow, command, link, message
    target_menu_key = Column(Text)
    target_flow_id = Column(Uuid)
    target_command = Column(Text)
    target_url = Column(Text)
    target_message = Column(Text)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    is_root = Column(Boolean, nullable=False, default=False)
    show_back_button = Column(Boolean, nullable=False, default=True)
    back_button_text = Column(Text)
    header_message = Column(Text)
    footer_message = Column(Text)
