import pytest

from botengine.services.global_commands import (
    STATE_AWAITING_HUMAN,
    STATE_CLOSED,
    STATE_MENU,
    STATE_START,
    GlobalAction,
    apply_global_command,
    match_global_command,
    navigate_back,
    navigate_forward,
)
from botengine.services.input_parser import parse_input


class TestParseInput:
    def test_number(self):
        parsed = parse_input("  2 ")
        assert parsed.is_number is True
        assert parsed.number == 2
        assert parsed.normalized == "2"

    def test_command(self):
        parsed = parse_input("/Status agora")
        assert parsed.is_command is True
        assert parsed.command == "status"
        assert parsed.args == ["agora"]

    def test_keywords_drop_short_words_and_punctuation(self):
        parsed = parse_input("Quero ver os planos!")
        assert parsed.keywords == ["quero", "ver", "planos"]

    def test_empty_and_none(self):
        assert parse_input("").normalized == ""
        assert parse_input(None).original == ""
        assert parse_input(None).is_number is False


class TestMatchGlobalCommand:
    @pytest.mark.parametrize(
        "text,action",
        [
            ("0", GlobalAction.BACK_TO_PREVIOUS),
            ("Voltar", GlobalAction.BACK_TO_PREVIOUS),
            ("#", GlobalAction.BACK_TO_START),
            ("inicio", GlobalAction.BACK_TO_START),
            ("menu", GlobalAction.MENU),
            ("sair", GlobalAction.EXIT),
            ("atendente", GlobalAction.HUMAN),
            ("falar com alguem", GlobalAction.HUMAN),
        ],
    )
    def test_known_keywords(self, text, action):
        command = match_global_command(parse_input(text))
        assert command is not None
        assert command.action == action

    def test_substring_does_not_match(self):
        assert match_global_command(parse_input("quero sair do plano")) is None
        assert match_global_command(parse_input("10")) is None
        assert match_global_command(parse_input("")) is None


class TestNavigation:
    def test_start_is_never_pushed(self):
        nav = navigate_forward(STATE_START, "TESTE", [])
        assert nav.state == "TESTE"
        assert nav.previous_state == STATE_START
        assert nav.stack == []

    def test_forward_pushes_current(self):
        nav = navigate_forward("TESTE", "TESTE_TV", [])
        assert nav.stack == ["TESTE"]
        assert nav.previous_state == "TESTE"

    def test_terminal_target_does_not_push(self):
        nav = navigate_forward("SUPORTE", STATE_AWAITING_HUMAN, ["TESTE"])
        assert nav.stack == ["TESTE"]

    def test_push_then_back_is_symmetric(self):
        before = ["MAIN", "PLANOS"]
        pushed = navigate_forward("DETALHES", "ITEM", before)
        back = navigate_back(pushed.previous_state, pushed.stack)
        assert back.state == "DETALHES"
        assert back.stack == before
        assert back.previous_state == "PLANOS"

    def test_back_with_empty_stack_goes_to_previous_or_start(self):
        assert navigate_back("TESTE", []).state == "TESTE"
        assert navigate_back(None, []).state == STATE_START

    def test_input_stack_is_not_mutated(self):
        stack = ["A"]
        navigate_forward("B", "C", stack)
        navigate_back("A", stack)
        assert stack == ["A"]


class TestApplyGlobalCommand:
    def test_menu_and_exit_clear_stack(self):
        menu = apply_global_command(GlobalAction.MENU, "TESTE_TV", "TESTE", ["TESTE"])
        assert menu.state == STATE_MENU
        assert menu.stack == []

        closed = apply_global_command(GlobalAction.EXIT, "TESTE_TV", "TESTE", ["TESTE"])
        assert closed.state == STATE_CLOSED
        assert closed.previous_state == "TESTE_TV"
        assert closed.stack == []

    def test_human_keeps_stack(self):
        nav = apply_global_command(GlobalAction.HUMAN, "TESTE_TV", "TESTE", ["TESTE"])
        assert nav.state == STATE_AWAITING_HUMAN
        assert nav.stack == ["TESTE"]

    def test_back_to_start(self):
        nav = apply_global_command(GlobalAction.BACK_TO_START, "TESTE_TV", "TESTE", ["TESTE"])
        assert nav.state == STATE_START
        assert nav.stack == []
