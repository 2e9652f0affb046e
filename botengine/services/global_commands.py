"""Navigation commands recognized from any non-terminal state."""

from dataclasses import dataclass
from enum import Enum

from botengine.services.input_parser import ParsedInput

STATE_START = "START"
STATE_MENU = "MENU"
STATE_CLOSED = "ENCLOSED_TERMINAL"
STATE_AWAITING_HUMAN = "AWAITING_HUMAN"

TERMINAL_STATES = frozenset({STATE_CLOSED, STATE_AWAITING_HUMAN})


class GlobalAction(str, Enum):
    BACK_TO_PREVIOUS = "back_to_previous"
    BACK_TO_START = "back_to_start"
    MENU = "menu"
    EXIT = "exit"
    HUMAN = "human"


@dataclass(frozen=True)
class GlobalCommand:
    keywords: frozenset[str]
    action: GlobalAction
    priority: int


GLOBAL_COMMANDS = sorted(
    [
        GlobalCommand(frozenset({"0"}), GlobalAction.BACK_TO_PREVIOUS, 100),
        GlobalCommand(frozenset({"#"}), GlobalAction.BACK_TO_START, 100),
        GlobalCommand(frozenset({"voltar", "anterior", "retornar", "*"}), GlobalAction.BACK_TO_PREVIOUS, 90),
        GlobalCommand(
            frozenset({"inicio", "início", "começo", "reiniciar", "start", "00", "##"}),
            GlobalAction.BACK_TO_START,
            90,
        ),
        GlobalCommand(frozenset({"menu", "cardapio", "opcoes", "opções"}), GlobalAction.MENU, 80),
        GlobalCommand(frozenset({"sair", "exit", "encerrar", "tchau", "bye", "fim"}), GlobalAction.EXIT, 70),
        GlobalCommand(
            frozenset({"humano", "atendente", "pessoa", "suporte", "falar com alguem"}),
            GlobalAction.HUMAN,
            60,
        ),
    ],
    key=lambda command: command.priority,
    reverse=True,
)


@dataclass
class Navigation:
    """Result of moving through the state graph."""

    state: str
    previous_state: str
    stack: list[str]


def match_global_command(parsed: ParsedInput) -> GlobalCommand | None:
    """Exact match on the normalized text; highest priority wins."""
    if not parsed.normalized:
        return None
    for command in GLOBAL_COMMANDS:
        if parsed.normalized in command.keywords:
            return command
    return None


def navigate_forward(current: str, target: str, stack: list[str]) -> Navigation:
    """Move into ``target``, remembering ``current`` for the back command.

    ``START`` is never pushed, and entering a terminal state does not push.
    """
    new_stack = list(stack)
    if target == current:
        return Navigation(state=current, previous_state=new_stack[-1] if new_stack else STATE_START, stack=new_stack)
    if target not in TERMINAL_STATES and current != STATE_START:
        new_stack.append(current)
    return Navigation(state=target, previous_state=current, stack=new_stack)


def navigate_back(previous_state: str | None, stack: list[str]) -> Navigation:
    new_stack = list(stack)
    if new_stack:
        target = new_stack.pop()
    else:
        target = previous_state or STATE_START
    return Navigation(
        state=target,
        previous_state=new_stack[-1] if new_stack else STATE_START,
        stack=new_stack,
    )


def apply_global_command(action: GlobalAction, state: str, previous_state: str | None, stack: list[str]) -> Navigation:
    if action == GlobalAction.BACK_TO_PREVIOUS:
        return navigate_back(previous_state, stack)
    if action == GlobalAction.BACK_TO_START:
        return Navigation(state=STATE_START, previous_state=STATE_START, stack=[])
    if action == GlobalAction.MENU:
        return Navigation(state=STATE_MENU, previous_state=state, stack=[])
    if action == GlobalAction.EXIT:
        return Navigation(state=STATE_CLOSED, previous_state=state, stack=[])
    return Navigation(state=STATE_AWAITING_HUMAN, previous_state=state, stack=list(stack))
