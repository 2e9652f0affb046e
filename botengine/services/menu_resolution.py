"""Resolve a state/menu key to displayable menu text.

Three authored representations coexist per tenant. They are consulted through
an ordered list of resolvers and the first hit wins:

1. v2 dynamic menu tree (``bot_dynamic_menus``)
2. legacy flat menus (``bot_menus``)
3. flow-graph nodes tagged with a ``state_name``

A final resolver serves the built-in state table so reserved states always
have text.
"""

from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from botengine.logging_config import get_logger
from botengine.models import BotEngineConfig, BotFlow, BotFlowNode, DynamicMenu, LegacyMenu
from botengine.services.global_commands import STATE_AWAITING_HUMAN, STATE_CLOSED
from botengine.services.input_parser import ParsedInput
from botengine.services.state_table import get_state_definition

logger = get_logger("menu_resolution")

DEFAULT_SECTION_TITLE = "Opções"
DEFAULT_BACK_TEXT = "⬅️ Voltar"
HOME_LINE = "*#* - Menu Principal"
SEPARATOR_LINE = "────────────"
INVALID_SELECTION_MESSAGE = "❌ Opção inválida. Digite o *número* da opção desejada."

SOURCE_DYNAMIC = "dynamic"
SOURCE_LEGACY = "legacy"
SOURCE_FLOW = "flow"
SOURCE_STATE_TABLE = "state_table"


@dataclass
class MenuOption:
    key: str
    title: str
    option_type: str
    target: str | None = None
    description: str | None = None
    emoji: str | None = None
    section: str | None = None


@dataclass
class RenderedMenu:
    key: str
    text: str
    source: str
    options: list[MenuOption] = field(default_factory=list)


class MenuResolver(Protocol):
    name: str

    def resolve(self, db: Session, tenant_id: UUID, key: str) -> RenderedMenu | None: ...


def _ordered_children(db: Session, tenant_id: UUID, parent_id: UUID) -> list[DynamicMenu]:
    return (
        db.query(DynamicMenu)
        .filter(
            DynamicMenu.tenant_id == tenant_id,
            DynamicMenu.parent_menu_id == parent_id,
            DynamicMenu.is_active.is_(True),
        )
        .order_by(DynamicMenu.display_order, DynamicMenu.title)
        .all()
    )


def get_root_menu(db: Session, tenant_id: UUID) -> DynamicMenu | None:
    return (
        db.query(DynamicMenu)
        .filter(
            DynamicMenu.tenant_id == tenant_id,
            DynamicMenu.is_root.is_(True),
            DynamicMenu.is_active.is_(True),
        )
        .order_by(DynamicMenu.display_order)
        .first()
    )


def _dynamic_option(row: DynamicMenu) -> MenuOption:
    targets = {
        "submenu": row.target_menu_key or row.menu_key,
        "flow": str(row.target_flow_id) if row.target_flow_id else None,
        "command": row.target_command,
        "link": row.target_url,
        "message": row.target_message,
    }
    return MenuOption(
        key=row.menu_key,
        title=row.title,
        option_type=row.menu_type,
        target=targets.get(row.menu_type),
        description=row.description,
        emoji=row.emoji,
        section=row.section_title,
    )


def render_dynamic_menu(menu: DynamicMenu, options: list[MenuOption]) -> str:
    lines: list[str] = []
    if menu.header_message:
        lines.append(menu.header_message)
        lines.append("")

    sections: dict[str, list[MenuOption]] = {}
    for option in options:
        sections.setdefault(option.section or DEFAULT_SECTION_TITLE, []).append(option)

    index = 1
    for section_title, section_options in sections.items():
        if len(sections) > 1:
            lines.append(f"📌 *{section_title}*")
        for option in section_options:
            emoji = f"{option.emoji} " if option.emoji else ""
            lines.append(f"*{index}* - {emoji}{option.title}")
            if option.description:
                lines.append(f"   └ {option.description}")
            index += 1
        lines.append("")

    lines.append(SEPARATOR_LINE)
    if menu.show_back_button:
        lines.append(f"*0* - {menu.back_button_text or DEFAULT_BACK_TEXT}")
    lines.append(HOME_LINE)

    if menu.footer_message:
        lines.append("")
        lines.append(menu.footer_message)
    return "\n".join(lines)


class DynamicMenuResolver:
    name = SOURCE_DYNAMIC

    def resolve(self, db: Session, tenant_id: UUID, key: str) -> RenderedMenu | None:
        menu = (
            db.query(DynamicMenu)
            .filter(
                DynamicMenu.tenant_id == tenant_id,
                DynamicMenu.menu_key == key,
                DynamicMenu.is_active.is_(True),
            )
            .first()
        )
        if not menu:
            return None
        if menu.parent_menu_id and not self._parent_resolves(db, tenant_id, menu.parent_menu_id):
            logger.info(
                "Orphaned menu treated as not found",
                extra={"context": {"tenant_id": str(tenant_id), "menu_key": key}},
            )
            return None
        return self.render(db, menu)

    @staticmethod
    def _parent_resolves(db: Session, tenant_id: UUID, parent_id: UUID) -> bool:
        parent = (
            db.query(DynamicMenu)
            .filter(
                DynamicMenu.id == parent_id,
                DynamicMenu.tenant_id == tenant_id,
                DynamicMenu.is_active.is_(True),
            )
            .first()
        )
        return parent is not None

    @staticmethod
    def render(db: Session, menu: DynamicMenu) -> RenderedMenu:
        options = [_dynamic_option(row) for row in _ordered_children(db, menu.tenant_id, menu.id)]
        return RenderedMenu(
            key=menu.menu_key,
            text=render_dynamic_menu(menu, options),
            source=SOURCE_DYNAMIC,
            options=options,
        )


def _legacy_option(raw: dict, position: int) -> MenuOption:
    if raw.get("target_menu"):
        option_type, target = "submenu", raw["target_menu"]
    elif raw.get("target_state"):
        option_type, target = "state", raw["target_state"]
    else:
        option_type, target = "action", raw.get("action")
    label = str(raw.get("label") or f"Opção {position}")
    return MenuOption(
        key=str(raw.get("key") or target or position),
        title=label,
        option_type=option_type,
        target=target,
    )


def render_legacy_menu(menu: LegacyMenu, options: list[MenuOption]) -> str:
    lines: list[str] = []
    if menu.header_message:
        lines.extend([menu.header_message, ""])
    for index, option in enumerate(options, start=1):
        lines.append(f"*{index}* - {option.title}")
    lines.extend(["", "*0* - Voltar", HOME_LINE])
    if menu.footer_message:
        lines.extend(["", menu.footer_message])
    return "\n".join(lines)


class LegacyMenuResolver:
    name = SOURCE_LEGACY

    def resolve(self, db: Session, tenant_id: UUID, key: str) -> RenderedMenu | None:
        menu = (
            db.query(LegacyMenu)
            .filter(
                LegacyMenu.tenant_id == tenant_id,
                LegacyMenu.menu_key == key,
                LegacyMenu.is_active.is_(True),
            )
            .first()
        )
        if not menu:
            return None
        raw_options = menu.options if isinstance(menu.options, list) else []
        options = [
            _legacy_option(raw, position)
            for position, raw in enumerate(raw_options, start=1)
            if isinstance(raw, dict)
        ]
        return RenderedMenu(
            key=menu.menu_key,
            text=render_legacy_menu(menu, options),
            source=SOURCE_LEGACY,
            options=options,
        )


class FlowNodeResolver:
    name = SOURCE_FLOW

    def resolve(self, db: Session, tenant_id: UUID, key: str) -> RenderedMenu | None:
        nodes = (
            db.query(BotFlowNode)
            .join(BotFlow, BotFlow.id == BotFlowNode.flow_id)
            .filter(BotFlow.tenant_id == tenant_id, BotFlow.is_active.is_(True))
            .order_by(BotFlowNode.position)
            .all()
        )
        for node in nodes:
            config = node.config or {}
            if config.get("state_name") == key and config.get("message_text"):
                return RenderedMenu(key=key, text=config["message_text"], source=SOURCE_FLOW)
        return None


class StateTableResolver:
    name = SOURCE_STATE_TABLE

    def resolve(self, db: Session, tenant_id: UUID, key: str) -> RenderedMenu | None:
        definition = get_state_definition(key)
        if not definition:
            return None
        text = definition.message
        override = self._config_override(db, tenant_id, key)
        if override:
            text = override
        return RenderedMenu(key=key, text=text, source=SOURCE_STATE_TABLE)

    @staticmethod
    def _config_override(db: Session, tenant_id: UUID, key: str) -> str | None:
        if key not in (STATE_AWAITING_HUMAN, STATE_CLOSED):
            return None
        config = db.query(BotEngineConfig).filter(BotEngineConfig.tenant_id == tenant_id).first()
        if not config:
            return None
        if key == STATE_AWAITING_HUMAN:
            return config.human_takeover_message
        return config.goodbye_message


DEFAULT_RESOLVERS: tuple[MenuResolver, ...] = (
    DynamicMenuResolver(),
    LegacyMenuResolver(),
    FlowNodeResolver(),
    StateTableResolver(),
)


def resolve_menu(
    db: Session,
    tenant_id: UUID,
    key: str | None,
    resolvers: tuple[MenuResolver, ...] = DEFAULT_RESOLVERS,
) -> RenderedMenu | None:
    """Return the first resolver hit for ``key``, or None when nothing is authored for it."""
    if not key:
        return None
    for resolver in resolvers:
        rendered = resolver.resolve(db, tenant_id, key)
        if rendered:
            logger.debug(f"Resolved {key} via {resolver.name}")
            return rendered
    return None


def select_option(options: list[MenuOption], parsed: ParsedInput) -> MenuOption | None:
    """Numeric index, then exact option key, then title substring either way."""
    text = parsed.normalized
    if not text or not options:
        return None

    if parsed.is_number and parsed.number is not None and 1 <= parsed.number <= len(options):
        return options[parsed.number - 1]

    for option in options:
        if option.key and option.key.lower() == text:
            return option

    for option in options:
        title = option.title.lower()
        if title and (text in title or title in text):
            return option
    return None


def invalid_selection_reply(menu: RenderedMenu) -> str:
    return f"{INVALID_SELECTION_MESSAGE}\n\n{menu.text}"
