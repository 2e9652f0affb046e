import uuid
from types import SimpleNamespace

import pytest

from botengine.models import BotFlow, BotFlowEdge, BotFlowNode
from botengine.services.flow_engine import (
    MAX_STEPS_PER_TURN,
    continue_flow,
    edge_matches,
    interpolate,
    select_next_node_id,
    start_flow,
)


def _edge(condition_type="always", condition_value=None, priority=0, target=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        condition_type=condition_type,
        condition_value=condition_value,
        priority=priority,
        target_node_id=target or uuid.uuid4(),
    )


def _node(db, flow, tenant_id, node_type, position, **config):
    node = BotFlowNode(
        flow_id=flow.id,
        tenant_id=tenant_id,
        node_type=node_type,
        config=config,
        position=position,
        is_entry_point=position == 0,
    )
    db.add(node)
    db.flush()
    return node


def _link(db, flow, source, target, **kwargs):
    db.add(BotFlowEdge(flow_id=flow.id, source_node_id=source.id, target_node_id=target.id, **kwargs))


@pytest.fixture
def cadastro_flow(db, tenant_id):
    """start -> ask name -> condition on plan answer -> thanks/end."""
    flow = BotFlow(tenant_id=tenant_id, name="Cadastro")
    db.add(flow)
    db.flush()

    start = _node(db, flow, tenant_id, "start", 0, message_text="Vamos fazer seu cadastro.")
    ask_name = _node(db, flow, tenant_id, "input", 1, prompt_message="Qual é o seu nome?", variable_name="nome")
    ask_plan = _node(
        db, flow, tenant_id, "input", 2, prompt_message="{{nome}}, quer o plano 1 ou 2?", variable_name="plano"
    )
    premium = _node(db, flow, tenant_id, "action", 3, action_type="set_variable", variable_name="tipo", value="premium")
    done = _node(db, flow, tenant_id, "end", 4, end_message="Obrigado, {{nome}}! Plano {{tipo}} registrado.")
    basic = _node(db, flow, tenant_id, "action", 5, action_type="set_variable", variable_name="tipo", value="básico")

    _link(db, flow, start, ask_name)
    _link(db, flow, ask_name, ask_plan)
    _link(db, flow, ask_plan, premium, condition_type="numeric_equals", condition_value="2", priority=10)
    _link(db, flow, ask_plan, basic, condition_type="always", priority=0)
    _link(db, flow, premium, done)
    _link(db, flow, basic, done)
    db.commit()
    return SimpleNamespace(flow=flow, ask_name=ask_name, ask_plan=ask_plan)


class TestEdges:
    def test_conditions(self):
        assert edge_matches(_edge("always"), "x")
        assert edge_matches(_edge("equals", "Sim"), " sim ")
        assert edge_matches(_edge("numeric_equals", "2"), "2.0")
        assert not edge_matches(_edge("numeric_equals", "2"), "dois")
        assert edge_matches(_edge("contains", "tv"), "Minha TV Samsung")
        assert edge_matches(_edge("regex", r"^\d{3}$"), "123")
        assert not edge_matches(_edge("regex", "("), "abc")
        assert not edge_matches(_edge("unknown", "x"), "x")

    def test_variable_condition(self):
        variables = {"plano": "Premium"}
        assert edge_matches(_edge("variable", "plano:premium"), "qualquer", variables)
        assert not edge_matches(_edge("variable", "plano:basico"), "premium", variables)
        assert edge_matches(_edge("variable", "plano"), "", variables)
        assert not edge_matches(_edge("variable", "nome"), "", variables)
        assert not edge_matches(_edge("variable", "nome:none"), "", variables)
        assert not edge_matches(_edge("variable"), "", variables)

    def test_priority_order(self):
        low = _edge("always", priority=0)
        high = _edge("equals", "1", priority=5)
        assert select_next_node_id([low, high], "1") == high.target_node_id
        assert select_next_node_id([low, high], "2") == low.target_node_id
        assert select_next_node_id([], "2") is None

    def test_interpolate(self):
        assert interpolate("Olá {{ nome }}, {{x}}", {"nome": "Ana"}) == "Olá Ana, "
        assert interpolate(None, {}) == ""


class TestFlowExecution:
    def test_start_pauses_on_first_input(self, db, tenant_id, cadastro_flow):
        turn = start_flow(db, tenant_id, cadastro_flow.flow.id)

        assert turn.messages == ["Vamos fazer seu cadastro.", "Qual é o seu nome?"]
        assert turn.resume_node_id == cadastro_flow.ask_name.id
        assert turn.awaiting_input is True
        assert turn.input_variable == "nome"
        assert not turn.finished

    def test_walk_to_end(self, db, tenant_id, cadastro_flow):
        turn = continue_flow(db, tenant_id, cadastro_flow.flow.id, cadastro_flow.ask_name.id, "Ana", {})
        assert turn.text == "Ana, quer o plano 1 ou 2?"
        assert turn.resume_node_id == cadastro_flow.ask_plan.id

        turn = continue_flow(db, tenant_id, cadastro_flow.flow.id, cadastro_flow.ask_plan.id, "2", turn.variables)
        assert turn.finished
        assert turn.text == "Obrigado, Ana! Plano premium registrado."
        assert turn.variables == {"nome": "Ana", "plano": "2", "tipo": "premium"}

    def test_default_branch(self, db, tenant_id, cadastro_flow):
        turn = continue_flow(db, tenant_id, cadastro_flow.flow.id, cadastro_flow.ask_plan.id, "1", {"nome": "Bia"})
        assert turn.variables["tipo"] == "básico"

    def test_other_tenant_cannot_run_flow(self, db, cadastro_flow):
        assert start_flow(db, uuid.uuid4(), cadastro_flow.flow.id) is None

    def test_inactive_or_missing_flow(self, db, tenant_id, cadastro_flow):
        cadastro_flow.flow.is_active = False
        db.commit()
        assert start_flow(db, tenant_id, cadastro_flow.flow.id) is None
        assert continue_flow(db, tenant_id, uuid.uuid4(), uuid.uuid4(), "x") is None

    def test_step_limit_pauses_loops(self, db, tenant_id):
        flow = BotFlow(tenant_id=tenant_id, name="Loop")
        db.add(flow)
        db.flush()
        first = _node(db, flow, tenant_id, "message", 0, message_text="ping")
        second = _node(db, flow, tenant_id, "message", 1, message_text="pong")
        _link(db, flow, first, second)
        _link(db, flow, second, first)
        db.commit()

        turn = start_flow(db, tenant_id, flow.id)
        assert len(turn.messages) == MAX_STEPS_PER_TURN
        assert turn.resume_node_id is not None
        assert turn.awaiting_input is False
