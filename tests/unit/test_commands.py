import pytest

from core.commands import RestoreResult
from core.events import UndoRedoStackChanged
from core.types_registry import CommandError


def _edge_set(graph):
    return {(e.id, *e.endpoints) for e in graph.edges.values()}


def _chain(graph):
    a = graph.create_node("Const", 0, 0, params={"value": 1}, node_id="a")
    b = graph.create_node("Probe", 100, 0, node_id="b")
    c = graph.create_node("Probe", 200, 0, node_id="c")
    graph.connect(a, "value", b, "in", edge_id="e1")
    graph.connect(b, "out", c, "in", edge_id="e2")
    graph.connect(a, "value", c, "in", edge_id="e3")
    return a, b, c


def test_mutations_are_recorded(graph):
    _chain(graph)
    assert graph.commands.undo_count == 6
    assert graph.commands.redo_count == 0


def test_undo_remove_node_restores_node_and_edges(graph):
    a, b, c = _chain(graph)
    graph.nodes[b].params["note"] = "kept"
    before = _edge_set(graph)

    graph.remove_node(b)
    assert b not in graph
    assert _edge_set(graph) == {("e3", a, "value", c, "in")}

    restored = graph.undo()

    assert isinstance(restored, RestoreResult)
    assert restored.complete
    assert sorted(restored.restored_edge_ids) == ["e1", "e2"]
    assert _edge_set(graph) == before
    node = graph.nodes[b]
    assert (node.type_id, node.x, node.y) == ("Probe", 100.0, 0.0)
    assert node.params["note"] == "kept"


def test_undo_remove_node_reports_unresolvable_edges(graph):
    a, b, c = _chain(graph)
    graph.remove_node(b)
    # c disappears outside the history, so e2 cannot come back
    graph.remove_node(c, record=False)

    restored = graph.undo()

    assert restored.restored_edge_ids == ["e1"]
    assert [failed.edge.id for failed in restored.failed_edges] == ["e2"]
    assert "c.in" in restored.failed_edges[0].reason
    assert b in graph


def test_redo_reapplies_removal(graph):
    a, b, c = _chain(graph)
    graph.remove_node(b)
    graph.undo()
    graph.redo()

    assert b not in graph
    assert set(graph.edges) == {"e3"}


def test_undo_redo_add_edge(graph):
    a, b, c = _chain(graph)
    graph.remove_edge("e3")
    assert "e3" not in graph.edges

    graph.undo()
    assert graph.edges["e3"].endpoints == (a, "value", c, "in")

    graph.undo()  # the connect of e3 itself
    assert "e3" not in graph.edges
    graph.redo()
    assert "e3" in graph.edges


def test_undo_add_node_then_redo_keeps_later_edits(graph):
    node_id = graph.create_node("Const", params={"value": 1})
    graph.move_node(node_id, 30, 40)
    graph.nodes[node_id].params["value"] = 9

    graph.undo()
    assert node_id not in graph

    graph.redo()
    node = graph.nodes[node_id]
    assert (node.x, node.y) == (30.0, 40.0)
    assert node.params["value"] == 9


def test_new_record_clears_redo(graph):
    graph.create_node("Const")
    graph.undo()
    assert graph.commands.can_redo

    graph.create_node("Const")
    assert not graph.commands.can_redo
    assert graph.redo() is None


def test_undo_and_redo_on_empty_history(graph):
    assert graph.undo() is None
    assert graph.redo() is None


def test_read_only_graph_ignores_history(graph):
    node_id = graph.create_node("Const")
    graph.set_read_only(True)

    assert not graph.commands.can_undo
    assert graph.undo() is None
    assert node_id in graph

    # mutations still apply but are not recorded
    other = graph.create_node("Const")
    assert other in graph
    assert graph.commands.undo_count == 1

    graph.set_read_only(False)
    graph.undo()
    assert node_id not in graph


def test_read_only_mutation_drops_redo(graph):
    graph.create_node("Const", node_id="a")
    graph.undo()
    assert graph.commands.redo_count == 1

    graph.set_read_only(True)
    graph.create_node("Const", node_id="a")
    graph.set_read_only(False)

    assert graph.commands.redo_count == 0
    assert graph.redo() is None
    assert "a" in graph


def test_failed_undo_stays_on_stack(graph):
    node_id = graph.create_node("Const")
    graph.remove_node(node_id, record=False)

    with pytest.raises(CommandError):
        graph.undo()
    assert graph.commands.undo_count == 1
    assert graph.commands.redo_count == 0


def test_undo_limit_drops_oldest():
    from conftest import make_graph

    from config.settings import EngineSettings

    graph = make_graph(EngineSettings(undo_limit=2))
    first = graph.create_node("Const")
    graph.create_node("Const")
    graph.create_node("Const")

    assert graph.commands.undo_count == 2
    graph.undo()
    graph.undo()
    assert graph.undo() is None
    assert first in graph


def test_stack_changed_events(graph):
    changes = []
    graph.subscribe(changes.append, UndoRedoStackChanged)

    graph.create_node("Const")
    graph.undo()
    graph.redo()
    graph.commands.clear()

    assert [(e.undo_count, e.redo_count) for e in changes] == [(1, 0), (0, 1), (1, 0), (0, 0)]


def test_replace_with_is_a_single_undoable_step(graph):
    original = graph.create_node("Const", params={"value": 1}, node_id="orig")
    other = {
        "version": 1,
        "Nodes": [{"typeId": "Probe", "id": "p1", "x": 0, "y": 0, "data": {}}],
        "Edges": [],
    }

    warnings = graph.replace_with(other)
    assert warnings == []
    assert list(graph.nodes) == ["p1"]

    graph.undo()
    assert list(graph.nodes) == [original]
    assert graph.nodes[original].params == {"value": 1}

    graph.redo()
    assert list(graph.nodes) == ["p1"]
