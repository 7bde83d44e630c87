from core.models import Edge
from core.validation import (
    CONNECTION_LIMIT_EXCEEDED,
    CYCLE_DETECTED,
    DANGLING_EDGE,
    DIRECTION_MISMATCH,
    SELF_LOOP,
    validate_graph,
)


def _inject_edge(graph, edge):
    """Place an edge directly into storage, bypassing connect() checks."""
    graph._edges[edge.id] = edge
    graph._out_edges.setdefault(edge.from_node_id, {})[edge.id] = None
    graph._in_edges.setdefault(edge.to_node_id, {})[edge.id] = None


def test_valid_graph_has_no_issues(graph):
    a = graph.create_node("NumberInput")
    b = graph.create_node("Sum")
    graph.connect(a, "value", b, "a")
    assert graph.validate() == []


def test_self_loop(graph):
    probe = graph.create_node("Probe")
    edge_id = graph.connect(probe, "out", probe, "in")

    codes = {(issue.code, issue.edge_id) for issue in graph.validate()}
    assert (SELF_LOOP, edge_id) in codes
    assert any(code == CYCLE_DETECTED for code, _ in codes)


def test_cycle_detected(graph):
    a = graph.create_node("Probe")
    b = graph.create_node("Probe")
    graph.connect(a, "out", b, "in")
    graph.connect(b, "out", a, "in")

    issues = validate_graph(graph)
    assert [issue.code for issue in issues] == [CYCLE_DETECTED]
    assert set(issues[0].details["cycle_nodes"]) == {a, b}


def test_dangling_edge_and_direction_mismatch(graph):
    a = graph.create_node("Const", node_id="a")
    b = graph.create_node("Probe", node_id="b")
    _inject_edge(graph, Edge("ghost-edge", "a", "value", "ghost", "in"))
    _inject_edge(graph, Edge("backwards", "b", "in", "a", "value"))
    _inject_edge(graph, Edge("no-socket", "a", "nope", "b", "in"))

    issues = graph.validate()
    found = {(issue.code, issue.edge_id) for issue in issues}

    assert (DANGLING_EDGE, "ghost-edge") in found
    assert (DANGLING_EDGE, "no-socket") in found
    assert (DIRECTION_MISMATCH, "backwards") in found
    assert a and b


def test_connection_limit_exceeded(graph):
    a = graph.create_node("Const", node_id="a")
    b = graph.create_node("Const", node_id="b")
    graph.create_node("Limited", node_id="lim")
    graph.connect(a, "value", "lim", "in")
    _inject_edge(graph, Edge("extra", b, "value", "lim", "in"))

    issues = graph.validate()
    assert [issue.code for issue in issues] == [CONNECTION_LIMIT_EXCEEDED]
    assert issues[0].details == {"socket": "in", "count": 2, "limit": 1}


def test_all_problems_reported_together(graph):
    probe = graph.create_node("Probe")
    graph.connect(probe, "out", probe, "in")
    _inject_edge(graph, Edge("ghost-edge", probe, "out", "ghost", "in"))

    codes = {issue.code for issue in graph.validate()}
    assert {SELF_LOOP, DANGLING_EDGE, CYCLE_DETECTED} <= codes
