"""Execute operator-authored flow graphs one inbound message at a time."""

import re
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from botengine.logging_config import get_logger
from botengine.models import BotFlow, BotFlowEdge, BotFlowNode

logger = get_logger("flow_engine")

MAX_STEPS_PER_TURN = 10
VARIABLE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass
class FlowTurn:
    """What one message produced inside a flow.

    ``resume_node_id`` is where the next message continues; ``awaiting_input``
    tells whether that node is an input node waiting for free text.
    """

    flow_id: UUID
    messages: list[str] = field(default_factory=list)
    variables: dict = field(default_factory=dict)
    resume_node_id: UUID | None = None
    awaiting_input: bool = False
    input_variable: str | None = None

    @property
    def finished(self) -> bool:
        return self.resume_node_id is None

    @property
    def text(self) -> str:
        return "\n\n".join(message for message in self.messages if message)


@dataclass
class FlowGraph:
    flow: BotFlow
    nodes: dict[UUID, BotFlowNode]
    edges: dict[UUID, list[BotFlowEdge]]
    ordered_nodes: list[BotFlowNode]


def interpolate(text: str | None, variables: dict) -> str:
    if not text:
        return ""
    return VARIABLE_PATTERN.sub(lambda match: str(variables.get(match.group(1), "")), text)


def _as_number(value: str | None) -> float | None:
    try:
        return float(str(value).strip().replace(",", "."))
    except (TypeError, ValueError):
        return None


def edge_matches(edge: BotFlowEdge, subject: str, variables: dict | None = None) -> bool:
    condition = (edge.condition_type or "always").lower()
    expected = edge.condition_value or ""
    actual = (subject or "").strip()

    if condition == "always":
        return True
    if condition == "equals":
        return actual.lower() == expected.strip().lower()
    if condition == "numeric_equals":
        left, right = _as_number(actual), _as_number(expected)
        return left is not None and right is not None and left == right
    if condition == "contains":
        return bool(expected) and expected.lower() in actual.lower()
    if condition == "variable":
        # "name" tests that the variable is set, "name:value" compares it case-insensitively.
        if not expected:
            return False
        name, separator, wanted = expected.partition(":")
        value = (variables or {}).get(name)
        if not separator:
            return value is not None
        return value is not None and str(value).lower() == wanted.lower()
    if condition == "regex":
        try:
            return re.search(expected, actual, re.IGNORECASE) is not None
        except re.error:
            logger.warning(f"Invalid regex on flow edge {edge.id}: {expected}")
            return False
    logger.warning(f"Unknown edge condition type: {condition}")
    return False


def select_next_node_id(edges: list[BotFlowEdge], subject: str, variables: dict | None = None) -> UUID | None:
    """Edges are tried by descending priority; the first match wins."""
    for edge in sorted(edges, key=lambda item: item.priority or 0, reverse=True):
        if edge_matches(edge, subject, variables):
            return edge.target_node_id
    return None


def find_entry_node(nodes: list[BotFlowNode]) -> BotFlowNode | None:
    for node in nodes:
        if node.is_entry_point:
            return node
    for node in nodes:
        if node.node_type == "start":
            return node
    return nodes[0] if nodes else None


def load_flow_graph(db: Session, tenant_id: UUID, flow_id: UUID) -> FlowGraph | None:
    flow = (
        db.query(BotFlow)
        .filter(BotFlow.id == flow_id, BotFlow.tenant_id == tenant_id, BotFlow.is_active.is_(True))
        .first()
    )
    if not flow:
        return None
    ordered = db.query(BotFlowNode).filter(BotFlowNode.flow_id == flow.id).order_by(BotFlowNode.position).all()
    edges: dict[UUID, list[BotFlowEdge]] = {}
    for edge in db.query(BotFlowEdge).filter(BotFlowEdge.flow_id == flow.id).all():
        edges.setdefault(edge.source_node_id, []).append(edge)
    return FlowGraph(flow=flow, nodes={node.id: node for node in ordered}, edges=edges, ordered_nodes=ordered)


def _run(graph: FlowGraph, node_id: UUID | None, user_text: str, variables: dict) -> FlowTurn:
    turn = FlowTurn(flow_id=graph.flow.id, variables=dict(variables))
    steps = 0
    while node_id is not None:
        if steps >= MAX_STEPS_PER_TURN:
            logger.info(
                "Flow step limit reached, pausing",
                extra={"context": {"flow_id": str(graph.flow.id), "node_id": str(node_id)}},
            )
            turn.resume_node_id = node_id
            return turn
        steps += 1

        node = graph.nodes.get(node_id)
        if node is None:
            logger.warning(f"Flow {graph.flow.id} references missing node {node_id}")
            break
        config = node.config or {}
        node_type = node.node_type
        subject = user_text

        if node_type in ("start", "message"):
            turn.messages.append(interpolate(config.get("message_text"), turn.variables))
        elif node_type == "input":
            turn.messages.append(interpolate(config.get("prompt_message") or config.get("message_text"), turn.variables))
            turn.resume_node_id = node.id
            turn.awaiting_input = True
            turn.input_variable = config.get("variable_name")
            return turn
        elif node_type == "condition":
            variable_name = config.get("variable_name")
            if variable_name:
                subject = str(turn.variables.get(variable_name, ""))
        elif node_type == "action":
            if config.get("action_type") == "set_variable" and config.get("variable_name"):
                turn.variables[config["variable_name"]] = interpolate(config.get("value"), turn.variables)
        elif node_type == "end":
            turn.messages.append(interpolate(config.get("end_message") or config.get("message_text"), turn.variables))
            break

        node_id = select_next_node_id(graph.edges.get(node.id, []), subject, turn.variables)
    turn.resume_node_id = None
    return turn


def start_flow(db: Session, tenant_id: UUID, flow_id: UUID, variables: dict | None = None) -> FlowTurn | None:
    graph = load_flow_graph(db, tenant_id, flow_id)
    if not graph:
        return None
    entry = find_entry_node(graph.ordered_nodes)
    if not entry:
        return None
    return _run(graph, entry.id, "", variables or {})


def continue_flow(
    db: Session,
    tenant_id: UUID,
    flow_id: UUID,
    node_id: UUID,
    user_text: str,
    variables: dict | None = None,
) -> FlowTurn | None:
    """Feed one user message to a paused flow. Returns None if the flow is gone."""
    graph = load_flow_graph(db, tenant_id, flow_id)
    if not graph or node_id not in graph.nodes:
        return None
    node = graph.nodes[node_id]
    current = dict(variables or {})
    if node.node_type != "input":
        return _run(graph, node.id, user_text, current)

    variable_name = (node.config or {}).get("variable_name")
    if variable_name:
        current[variable_name] = user_text
    next_id = select_next_node_id(graph.edges.get(node.id, []), user_text, current)
    return _run(graph, next_id, user_text, current)
