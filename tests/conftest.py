import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest


def _ensure_project_root_on_path() -> None:
    this_file = Path(__file__).resolve()
    project_root = this_file.parent.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


_ensure_project_root_on_path()

from config.settings import EngineSettings  # noqa: E402
from core.graph import Graph  # noqa: E402
from nodes.base.base_node import Base  # noqa: E402
from nodes.core import register_core_nodes  # noqa: E402

# Every mock node appends its id here when invoked
INVOCATIONS: list[str] = []


class Const(Base):
    """Writes params["value"] to its output."""

    outputs = {"value": "any"}
    default_params = {"value": None}

    async def _execute_impl(self, context):
        INVOCATIONS.append(self.id)
        return {"value": self.params.get("value")}


class Probe(Base):
    """Passes its input through and records that it ran."""

    inputs = {"in": "any"}
    outputs = {"out": "any"}

    async def _execute_impl(self, context):
        INVOCATIONS.append(self.id)
        return {"out": context.get_input("in")}


class Merge(Base):
    inputs = {"a": "any", "b": "any"}
    outputs = {"out": "any"}

    async def _execute_impl(self, context):
        INVOCATIONS.append(self.id)
        return {"out": [context.get_input("a"), context.get_input("b")]}


class Boom(Base):
    """Always fails."""

    inputs = {"in": "any"}
    outputs = {"out": "any"}

    async def _execute_impl(self, context):
        INVOCATIONS.append(self.id)
        context.set_output("out", "partial")
        raise RuntimeError("boom")


class Sleeper(Base):
    """Waits until the run is cancelled (or params["delay"] elapses), then stops."""

    inputs = {"in": "any"}
    outputs = {"out": "any"}
    default_params = {"delay": 5.0}

    async def _execute_impl(self, context):
        INVOCATIONS.append(self.id)
        try:
            await asyncio.wait_for(context.cancel_signal.wait(), timeout=self.params["delay"])
        except asyncio.TimeoutError:
            return {"out": "slept"}
        return None


class Canceller(Base):
    """Requests cancellation of the run it is part of."""

    outputs = {"out": "any"}

    async def _execute_impl(self, context):
        INVOCATIONS.append(self.id)
        context.cancel_signal.cancel("test")
        return {"out": "cancelled"}


class Limited(Base):
    inputs = {"in": "any"}
    outputs = {"out": "any"}
    max_connections = {"in": 1}

    async def _execute_impl(self, context):
        return {"out": context.get_input("in")}


class Typed(Base):
    inputs = {"number": "float", "text": "str", "flag": "bool"}
    outputs = {"int_out": "int", "str_out": "str"}

    async def _execute_impl(self, context):
        INVOCATIONS.append(self.id)
        return {
            "int_out": 1,
            "str_out": f"{context.get_input('number')}|{context.get_input('text')}|{context.get_input('flag')}",
        }


MOCK_NODES: dict[str, type[Base]] = {
    "Const": Const,
    "Probe": Probe,
    "Merge": Merge,
    "Boom": Boom,
    "Sleeper": Sleeper,
    "Canceller": Canceller,
    "Limited": Limited,
    "Typed": Typed,
}


def make_graph(settings: EngineSettings | None = None) -> Graph:
    graph = Graph(settings=settings)
    register_core_nodes(graph)
    for type_id, node_class in MOCK_NODES.items():
        graph.register_node_type(type_id, node_class)
    return graph


@pytest.fixture(autouse=True)
def reset_invocations():
    INVOCATIONS.clear()
    yield
    INVOCATIONS.clear()


@pytest.fixture
def invocations() -> list[str]:
    return INVOCATIONS


@pytest.fixture
def graph() -> Graph:
    return make_graph()


@pytest.fixture
def events(graph) -> list[Any]:
    """Every event the graph publishes, in delivery order."""
    received: list[Any] = []
    graph.subscribe(received.append)
    return received


@pytest.fixture(autouse=True)
def test_env_isolation(monkeypatch, tmp_path):
    """Keep FLOWGRAPH_* variables and any developer .env file out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("FLOWGRAPH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
