import pytest

from core.events import EdgeAdded, EdgeRemoved, GraphCleared, NodeAdded, NodeMoved, NodeRemoved
from core.models import EdgeSnapshot
from core.types_registry import (
    ConnectionLimitError,
    DirectionMismatchError,
    DuplicateEdgeError,
    DuplicateNodeError,
    EdgeNotFoundError,
    NodeNotFoundError,
    SocketDirection,
    SocketNotFoundError,
    TypeMismatchError,
    UnknownNodeTypeError,
)


def test_create_node_builds_sockets_and_logic(graph):
    node_id = graph.create_node("Sum", 10, 20)
    node = graph.nodes[node_id]

    assert node.type_id == "Sum"
    assert (node.x, node.y) == (10.0, 20.0)
    assert [s.name for s in node.inputs] == ["a", "b"]
    assert [s.name for s in node.outputs] == ["sum"]
    assert node.get_socket("a").value_type == "float"
    assert node.logic is not None and node.logic.id == node_id
    assert graph.is_node_ready(node_id)


def test_create_node_merges_default_params(graph):
    node_id = graph.create_node("NumberInput", params={"label": "x"})
    assert graph.nodes[node_id].params == {"value": 0.0, "label": "x"}


def test_create_node_with_explicit_id_and_duplicate(graph):
    assert graph.create_node("Sum", node_id="n1") == "n1"
    with pytest.raises(DuplicateNodeError):
        graph.create_node("Sum", node_id="n1")


def test_create_node_unknown_type(graph):
    with pytest.raises(UnknownNodeTypeError):
        graph.create_node("Nope")
    assert len(graph) == 0


def test_nodes_keep_insertion_order(graph):
    ids = [graph.create_node("Probe") for _ in range(5)]
    assert list(graph.nodes) == ids


def test_connect_creates_edge(graph):
    a = graph.create_node("NumberInput")
    b = graph.create_node("Sum")
    edge_id = graph.connect(a, "value", b, "a")

    edge = graph.edges[edge_id]
    assert edge.endpoints == (a, "value", b, "a")
    assert graph.incoming_edges(b) == [edge]
    assert graph.outgoing_edges(a) == [edge]
    assert graph.connection_count(b, "a") == 1


def test_connect_rejects_duplicate_link(graph):
    a = graph.create_node("NumberInput")
    b = graph.create_node("Sum")
    graph.connect(a, "value", b, "a")
    with pytest.raises(DuplicateEdgeError):
        graph.connect(a, "value", b, "a")
    assert len(graph.edges) == 1


def test_connect_rejects_wrong_direction(graph):
    a = graph.create_node("NumberInput")
    b = graph.create_node("Sum")
    with pytest.raises(DirectionMismatchError):
        graph.connect(b, "a", a, "value")


def test_connect_rejects_missing_socket_and_node(graph):
    a = graph.create_node("NumberInput")
    b = graph.create_node("Sum")
    with pytest.raises(SocketNotFoundError) as exc:
        graph.connect(a, "value", b, "c")
    assert exc.value.direction == SocketDirection.INPUT
    with pytest.raises(NodeNotFoundError):
        graph.connect(a, "value", "ghost", "a")


def test_connect_enforces_connection_limit(graph):
    a = graph.create_node("Const")
    b = graph.create_node("Const")
    target = graph.create_node("Limited")
    graph.connect(a, "value", target, "in")
    with pytest.raises(ConnectionLimitError) as exc:
        graph.connect(b, "value", target, "in")
    assert exc.value.limit == 1


def test_type_check_only_when_requested(graph):
    text = graph.create_node("TextInput")
    total = graph.create_node("Sum")
    with pytest.raises(TypeMismatchError) as exc:
        graph.connect(text, "text", total, "a", check_types=True)
    assert (exc.value.source_type, exc.value.target_type) == ("str", "float")
    assert len(graph.edges) == 0

    # Unchecked by default, and an "any" input accepts everything
    graph.connect(text, "text", total, "a")
    probe = graph.create_node("Probe")
    graph.connect(text, "text", probe, "in", check_types=True)


def test_type_check_uses_registered_rules(graph):
    typed = graph.create_node("Typed")
    target = graph.create_node("Typed")
    # int -> float is a built-in rule, int -> str is not
    graph.connect(typed, "int_out", target, "number", check_types=True)
    with pytest.raises(TypeMismatchError):
        graph.connect(typed, "int_out", target, "text", check_types=True)


def test_remove_node_cascades_edges(graph):
    a = graph.create_node("Const")
    b = graph.create_node("Probe")
    c = graph.create_node("Probe")
    graph.connect(a, "value", b, "in")
    keep = graph.connect(a, "value", c, "in")
    graph.connect(b, "out", c, "in")

    graph.remove_node(b)

    assert b not in graph
    assert list(graph.edges) == [keep]
    assert graph.incoming_edges(c) == [graph.edges[keep]]


def test_remove_missing_node_and_edge(graph):
    with pytest.raises(NodeNotFoundError):
        graph.remove_node("ghost")
    with pytest.raises(EdgeNotFoundError):
        graph.remove_edge("ghost")


def test_remove_edge(graph):
    a = graph.create_node("Const")
    b = graph.create_node("Probe")
    edge_id = graph.connect(a, "value", b, "in")
    graph.remove_edge(edge_id)
    assert graph.edges == {}
    assert graph.incoming_edges(b) == []


def test_events_follow_mutations(graph, events):
    a = graph.create_node("Const", 1, 2)
    b = graph.create_node("Probe")
    edge_id = graph.connect(a, "value", b, "in")
    graph.move_node(a, 5, 6)
    graph.remove_node(b)

    structural = [e for e in events if not type(e).__name__.startswith("UndoRedo")]
    assert structural == [
        NodeAdded(a, "Const", 1.0, 2.0),
        NodeAdded(b, "Probe", 0.0, 0.0),
        EdgeAdded(edge_id, a, "value", b, "in"),
        NodeMoved(a, 5.0, 6.0),
        EdgeRemoved(edge_id),
        NodeRemoved(b),
    ]


def test_event_filtering_and_unsubscribe(graph):
    added = []
    unsubscribe = graph.subscribe(added.append, NodeAdded)
    a = graph.create_node("Const")
    graph.remove_node(a)
    unsubscribe()
    graph.create_node("Const")

    assert [e.node_id for e in added] == [a]


def test_failing_observer_does_not_block_others_or_mutation(graph, caplog):
    seen = []

    def broken(event):
        raise RuntimeError("observer failed")

    graph.subscribe(broken)
    graph.subscribe(seen.append, NodeAdded)

    node_id = graph.create_node("Const")

    assert node_id in graph
    assert [e.node_id for e in seen] == [node_id]
    assert "observer failed" in caplog.text


def test_observer_sees_state_after_mutation(graph):
    sizes = []
    graph.subscribe(lambda event: sizes.append(len(graph)), NodeAdded, NodeRemoved)
    node_id = graph.create_node("Const")
    graph.remove_node(node_id)
    assert sizes == [1, 0]


def test_clear(graph, events):
    a = graph.create_node("Const")
    b = graph.create_node("Probe")
    graph.connect(a, "value", b, "in")
    graph.clear()

    assert len(graph) == 0 and len(graph.edges) == 0
    assert isinstance(events[-1], GraphCleared)


def test_unresolved_sockets(graph):
    a = graph.create_node("Const")
    b = graph.create_node("Probe")
    ok = EdgeSnapshot("e1", a, "value", b, "in")
    bad = EdgeSnapshot("e2", a, "value", "ghost", "in")
    wrong_direction = EdgeSnapshot("e3", b, "in", a, "value")

    assert graph.unresolved_sockets(ok) == []
    assert graph.unresolved_sockets(bad) == ["ghost.in"]
    assert graph.unresolved_sockets(wrong_direction) == [f"{b}.in", f"{a}.value"]


def test_register_node_type_accepts_descriptor(graph):
    from conftest import Probe

    graph.register_node_type("Echo", Probe.descriptor("Echo"))
    node_id = graph.create_node("Echo")
    assert graph.nodes[node_id].type_id == "Echo"
    assert isinstance(graph.nodes[node_id].logic, Probe)

    with pytest.raises(ValueError):
        graph.register_node_type("Echo", Probe)
