"""Per-contact navigation state machine.

One instance handles one inbound message for one session. It never touches the
lock and never commits the final snapshot; it returns a ``Transition`` that the
intercept orchestrator persists.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from botengine.logging_config import get_logger, mask_phone
from botengine.models import BotEngineConfig, BotSession, DynamicMenu
from botengine.services import action_executor
from botengine.services.flow_engine import FlowTurn, continue_flow, start_flow
from botengine.services.global_commands import (
    STATE_AWAITING_HUMAN,
    STATE_MENU,
    STATE_START,
    TERMINAL_STATES,
    GlobalAction,
    Navigation,
    apply_global_command,
    match_global_command,
    navigate_forward,
)
from botengine.services.input_parser import ParsedInput
from botengine.services.menu_resolution import (
    DEFAULT_RESOLVERS,
    DynamicMenuResolver,
    LegacyMenuResolver,
    MenuOption,
    MenuResolver,
    RenderedMenu,
    get_root_menu,
    invalid_selection_reply,
    resolve_menu,
    select_option,
)
from botengine.services.session_service import SessionContext, clear_pending_action, mark_pending_action
from botengine.services.state_table import (
    ACTION_GENERATE_TRIAL,
    ACTION_TRANSFER_TO_HUMAN,
    INVALID_OPTION_MESSAGE,
    StateDefinition,
    get_state_definition,
    match_state_option,
)

logger = get_logger("state_machine")

DEFAULT_WELCOME_MESSAGE = "Olá! 👋 Seja bem-vindo(a)!"
DEFAULT_FALLBACK_MESSAGE = "Desculpe, não entendi."
DEFAULT_COOLDOWN_HOURS = 24
MENU_UNAVAILABLE_MESSAGE = "❌ Esta opção está indisponível no momento."
PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

REASON_TERMINAL_STATE = "terminal_state"
REASON_SYSTEM_COMMAND = "system_command"
REASON_NO_CONTENT = "no_content"
REASON_DELEGATED = "delegated_command"


@dataclass
class Transition:
    """Outcome of one message: what to reply and the snapshot to persist."""

    intercepted: bool
    response: str | None = None
    state: str | None = None
    previous_state: str | None = None
    stack: list[str] = field(default_factory=list)
    context: SessionContext | None = None
    should_continue: bool = False
    persist: bool = True
    command: str | None = None
    reason: str | None = None


def fill_placeholders(text: str, values: dict) -> str:
    """Replace ``{name}`` for known names only; unknown braces are left untouched."""
    return PLACEHOLDER_PATTERN.sub(
        lambda match: str(values[match.group(1)]) if match.group(1) in values else match.group(0),
        text,
    )


def _coerce_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class NavigationStateMachine:
    def __init__(
        self,
        db: Session,
        session: BotSession,
        *,
        config: BotEngineConfig | None = None,
        now: datetime | None = None,
        resolvers: tuple[MenuResolver, ...] = DEFAULT_RESOLVERS,
    ):
        self.db = db
        self.session = session
        self.config = config
        self.now = now or datetime.now(timezone.utc)
        self.resolvers = resolvers

        self.tenant_id: UUID = session.tenant_id
        self.contact: str = session.contact_id
        self.state: str = session.state or STATE_START
        self.previous_state: str | None = session.previous_state
        self.stack: list[str] = list(session.stack or [])
        self.context = SessionContext.from_dict(session.context)
        self.last_interaction = _coerce_utc(session.last_interaction)

    # ------------------------------------------------------------------ helpers

    @property
    def fallback_message(self) -> str:
        return (self.config.fallback_message if self.config else None) or DEFAULT_FALLBACK_MESSAGE

    @property
    def welcome_message(self) -> str:
        return (self.config.welcome_message if self.config else None) or DEFAULT_WELCOME_MESSAGE

    def _cooldown_elapsed(self) -> bool:
        if self.last_interaction is None:
            return False
        hours = self.config.welcome_cooldown_hours if self.config else None
        hours = DEFAULT_COOLDOWN_HOURS if hours is None else hours
        if hours <= 0:
            return False
        return self.now - self.last_interaction >= timedelta(hours=hours)

    def _placeholders(self, text: str) -> dict:
        values = {key: value for key, value in self.context.variables.items() if isinstance(value, (str, int, float))}
        if "{plans_list}" in text:
            values["plans_list"] = action_executor.fetch_plan_list(self.db, self.tenant_id)
        if "{ticket_id}" in text:
            values["ticket_id"] = uuid.uuid4().hex[:8].upper()
        return values

    def _render(self, text: str, extra: dict | None = None) -> str:
        return fill_placeholders(text, {**self._placeholders(text), **(extra or {})})

    def _reply(self, response: str) -> Transition:
        return Transition(
            intercepted=True,
            response=response,
            state=self.state,
            previous_state=self.previous_state,
            stack=list(self.stack),
            context=self.context,
        )

    def _move(self, navigation: Navigation) -> None:
        self.state = navigation.state
        self.previous_state = navigation.previous_state
        self.stack = navigation.stack

    def _pass_through(self, reason: str, *, persist: bool = False) -> Transition:
        return Transition(
            intercepted=False,
            state=self.state,
            previous_state=self.previous_state,
            stack=list(self.stack),
            context=self.context,
            should_continue=True,
            persist=persist,
            reason=reason,
        )

    def _resolve(self, key: str) -> RenderedMenu | None:
        return resolve_menu(self.db, self.tenant_id, key, self.resolvers)

    def _reset_context(self) -> None:
        self.context = SessionContext(
            interaction_count=self.context.interaction_count,
            extra=self.context.extra,
        )

    # -------------------------------------------------------------- entrypoint

    async def process(self, parsed: ParsedInput) -> Transition:
        if self.state in TERMINAL_STATES:
            return self._pass_through(REASON_TERMINAL_STATE)
        if parsed.is_command:
            return self._pass_through(REASON_SYSTEM_COMMAND)

        restart = self.context.interaction_count == 0 or self._cooldown_elapsed()
        self.context.interaction_count += 1
        root = get_root_menu(self.db, self.tenant_id)

        command = match_global_command(parsed)
        if command:
            logger.info(
                f"Global command {command.action.value} from state {self.state}",
                extra={"context": {"contact": mask_phone(self.contact), "tenant_id": str(self.tenant_id)}},
            )
            return await self._handle_global(command.action, root)

        if root:
            return await self._handle_menu_mode(parsed, root, restart)
        return await self._handle_legacy_mode(parsed, restart)

    # ---------------------------------------------------------- global commands

    async def _handle_global(self, action: GlobalAction, root: DynamicMenu | None) -> Transition:
        self.context.clear_flow()
        navigation = apply_global_command(action, self.state, self.previous_state, self.stack)
        target = navigation.state

        if root and target in (STATE_START, STATE_MENU):
            navigation = Navigation(state=root.menu_key, previous_state=STATE_START, stack=[])
            target = root.menu_key
        elif not root and target == STATE_MENU and not self._resolve(STATE_MENU):
            target = STATE_START
            navigation = Navigation(state=STATE_START, previous_state=STATE_START, stack=[])

        self._move(navigation)
        if root:
            self.context.current_menu_key = target if target not in TERMINAL_STATES else self.context.current_menu_key

        if action == GlobalAction.HUMAN:
            action_executor.request_human_handoff(self.tenant_id, self.contact, "global_command")

        rendered = self._resolve(target)
        if not rendered:
            logger.info(f"No content for state {target}, passing through")
            return self._pass_through(REASON_NO_CONTENT, persist=True)
        return self._reply(self._render(rendered.text))

    # ---------------------------------------------------------------- menu mode

    def _show_root(self, root: DynamicMenu) -> Transition:
        self._reset_context()
        self.context.current_menu_key = root.menu_key
        self._move(Navigation(state=root.menu_key, previous_state=STATE_START, stack=[]))
        return self._reply(DynamicMenuResolver.render(self.db, root).text)

    async def _handle_menu_mode(self, parsed: ParsedInput, root: DynamicMenu, restart: bool) -> Transition:
        if restart or not self.context.current_menu_key:
            return self._show_root(root)
        if self.context.in_flow:
            return await self._continue_flow(parsed)

        current = DynamicMenuResolver().resolve(self.db, self.tenant_id, self.context.current_menu_key)
        if not current:
            logger.warning(f"Current menu {self.context.current_menu_key} not found, falling back to root")
            return self._show_root(root)

        option = select_option(current.options, parsed)
        if not option:
            return self._reply(invalid_selection_reply(current))
        return await self._apply_menu_option(option, current)

    async def _apply_menu_option(self, option: MenuOption, current: RenderedMenu) -> Transition:
        if option.option_type == "submenu":
            target = DynamicMenuResolver().resolve(self.db, self.tenant_id, option.target)
            if not target:
                return self._reply(f"{MENU_UNAVAILABLE_MESSAGE}\n\n{current.text}")
            self._move(navigate_forward(current.key, target.key, self.stack))
            self.context.current_menu_key = target.key
            return self._reply(target.text)

        if option.option_type == "message":
            return self._reply(self._render(option.target or self.fallback_message))

        if option.option_type == "link":
            if not option.target:
                return self._reply(f"{MENU_UNAVAILABLE_MESSAGE}\n\n{current.text}")
            return self._reply(f"🔗 Acesse: {option.target}")

        if option.option_type == "command":
            transition = self._pass_through(REASON_DELEGATED, persist=True)
            transition.command = option.target or option.key
            return transition

        if option.option_type == "flow":
            return self._start_flow(option.target, current)

        logger.warning(f"Unknown menu option type {option.option_type} on {option.key}")
        return self._reply(invalid_selection_reply(current))

    # -------------------------------------------------------------------- flows

    def _start_flow(self, flow_id: str | None, current: RenderedMenu | None) -> Transition:
        turn = None
        try:
            turn = start_flow(self.db, self.tenant_id, UUID(str(flow_id)), self.context.variables)
        except ValueError:
            logger.warning(f"Invalid flow id on menu option: {flow_id}")
        if not turn:
            unavailable = MENU_UNAVAILABLE_MESSAGE
            return self._reply(f"{unavailable}\n\n{current.text}" if current else unavailable)
        return self._apply_flow_turn(turn)

    def _apply_flow_turn(self, turn: FlowTurn) -> Transition:
        self.context.variables = turn.variables
        if turn.finished:
            self.context.clear_flow()
        else:
            self.context.flow_id = str(turn.flow_id)
            self.context.flow_node_id = str(turn.resume_node_id)
            self.context.awaiting_input = turn.awaiting_input
            self.context.input_variable = turn.input_variable
        return self._reply(turn.text or self.fallback_message)

    async def _continue_flow(self, parsed: ParsedInput) -> Transition:
        turn = None
        try:
            turn = continue_flow(
                self.db,
                self.tenant_id,
                UUID(self.context.flow_id),
                UUID(self.context.flow_node_id),
                parsed.original.strip(),
                self.context.variables,
            )
        except ValueError:
            logger.warning(f"Corrupt flow position in context: {self.context.flow_id}/{self.context.flow_node_id}")
        if turn:
            return self._apply_flow_turn(turn)

        self.context.clear_flow()
        rendered = self._resolve(self.context.current_menu_key or self.state)
        text = f"{self.fallback_message}\n\n{rendered.text}" if rendered else self.fallback_message
        return self._reply(text)

    # -------------------------------------------------------------- legacy mode

    async def _handle_legacy_mode(self, parsed: ParsedInput, restart: bool) -> Transition:
        if restart:
            self._reset_context()
            self._move(Navigation(state=STATE_START, previous_state=STATE_START, stack=[]))
            start = self._resolve(STATE_START)
            text = f"{self.welcome_message}\n\n{self._render(start.text)}" if start else self.welcome_message
            return self._reply(text)
        if self.context.in_flow:
            return await self._continue_flow(parsed)

        legacy = LegacyMenuResolver().resolve(self.db, self.tenant_id, self.state)
        if legacy:
            option = select_option(legacy.options, parsed)
            if not option:
                return self._reply(invalid_selection_reply(legacy))
            if option.option_type in ("submenu", "state"):
                return await self._enter_state(option.target)
            return await self._run_named_action(option.target, legacy)

        definition = get_state_definition(self.state)
        if definition is None:
            rendered = self._resolve(self.state)
            if not rendered:
                return self._pass_through(REASON_NO_CONTENT, persist=True)
            return self._reply(f"{self.fallback_message}\n\n{self._render(rendered.text)}")

        if definition.collect_variable:
            self.context.variables = {**self.context.variables, definition.collect_variable: parsed.original.strip()}
            self.context.awaiting_input = False
            self.context.input_variable = None
            return await self._enter_state(definition.collect_next_state)

        option = match_state_option(definition, parsed.normalized)
        if option:
            return await self._enter_state(option.next_state)
        return self._reply(f"{INVALID_OPTION_MESSAGE}\n\n{self._render(definition.message)}")

    async def _run_named_action(self, action: str | None, current: RenderedMenu) -> Transition:
        if action in (ACTION_TRANSFER_TO_HUMAN, "human"):
            return await self._enter_state("ATENDENTE")
        if action in (ACTION_GENERATE_TRIAL, "trial"):
            return await self._enter_state("TESTE")
        if action:
            transition = self._pass_through(REASON_DELEGATED, persist=True)
            transition.command = action
            return transition
        return self._reply(invalid_selection_reply(current))

    async def _enter_state(self, target: str | None) -> Transition:
        if not target:
            return self._reply(self.fallback_message)
        definition = get_state_definition(target)

        if definition and definition.action == ACTION_GENERATE_TRIAL:
            return await self._generate_trial(definition)

        if definition and definition.action == ACTION_TRANSFER_TO_HUMAN:
            text = self._render(definition.message)
            self._move(navigate_forward(self.state, STATE_AWAITING_HUMAN, self.stack))
            action_executor.request_human_handoff(
                self.tenant_id,
                self.contact,
                self.context.variables.get("support_message") if target != "ATENDENTE" else None,
            )
            return self._reply(text)

        self._move(navigate_forward(self.state, target, self.stack))
        if definition and definition.collect_variable:
            self.context.awaiting_input = True
            self.context.input_variable = definition.collect_variable

        rendered = self._resolve(target)
        if not rendered:
            logger.info(f"No content for state {target}, passing through")
            return self._pass_through(REASON_NO_CONTENT, persist=True)
        return self._reply(self._render(rendered.text))

    async def _generate_trial(self, definition: StateDefinition) -> Transition:
        params = definition.action_params
        device_info = params.get("device_info") or self.context.variables.get(params.get("device_info_variable", ""))
        mark_pending_action(self.db, self.session, self.context, ACTION_GENERATE_TRIAL)

        try:
            result = await action_executor.generate_trial(
                self.db,
                self.tenant_id,
                self.contact,
                params.get("device_type", "tv"),
                device_info,
                now=self.now,
            )
        except Exception:
            self.db.rollback()
            clear_pending_action(self.db, self.session)
            raise
        finally:
            self.context.pending_action = None

        if not result.ok:
            logger.warning(
                "Trial generation failed",
                extra={"context": {"contact": mask_phone(self.contact), "error_code": result.error_code}},
            )
            next_state = "TESTE_ERRO"
            credential_values = {}
        else:
            credentials = result.value
            credential_values = {
                "username": credentials.username,
                "password": credentials.password,
                "expiration": credentials.format_expiration(),
                "dns_line": f"🌐 DNS: {credentials.dns}\n" if credentials.dns else "",
            }
            next_state = "TESTE_SUCESSO"

        self._move(navigate_forward(self.state, next_state, self.stack))
        rendered = self._resolve(next_state)
        text = rendered.text if rendered else get_state_definition(next_state).message
        return self._reply(self._render(text, credential_values))
