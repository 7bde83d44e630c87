"""Observer events published by the graph and the executor.

Delivery contract: events are delivered synchronously on the caller's thread,
after the state change they describe has been applied, to subscribers in the
order they subscribed. A subscriber that raises is logged and skipped; the
mutation is not rolled back and later subscribers still receive the event.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphEvent:
    pass


@dataclass(frozen=True)
class NodeAdded(GraphEvent):
    node_id: str
    type_id: str
    x: float
    y: float


@dataclass(frozen=True)
class NodeRemoved(GraphEvent):
    node_id: str


@dataclass(frozen=True)
class NodeMoved(GraphEvent):
    node_id: str
    x: float
    y: float


@dataclass(frozen=True)
class EdgeAdded(GraphEvent):
    edge_id: str
    from_node_id: str
    from_socket: str
    to_node_id: str
    to_socket: str


@dataclass(frozen=True)
class EdgeRemoved(GraphEvent):
    edge_id: str


@dataclass(frozen=True)
class GraphCleared(GraphEvent):
    pass


@dataclass(frozen=True)
class UndoRedoStackChanged(GraphEvent):
    undo_count: int
    redo_count: int


@dataclass(frozen=True)
class RunStarted(GraphEvent):
    total_nodes: int


@dataclass(frozen=True)
class NodeStarted(GraphEvent):
    node_id: str


@dataclass(frozen=True)
class NodeCompleted(GraphEvent):
    node_id: str


@dataclass(frozen=True)
class NodeSkipped(GraphEvent):
    node_id: str
    reason: str


@dataclass(frozen=True)
class NodeFaulted(GraphEvent):
    node_id: str
    error: BaseException


@dataclass(frozen=True)
class RunCompleted(GraphEvent):
    executed_count: int
    total_count: int
    faulted_node_ids: tuple[str, ...] = ()
    cancelled: bool = False


E = TypeVar("E", bound=GraphEvent)
Subscriber = Callable[[Any], None]


@dataclass(eq=False)
class _Subscription:
    callback: Subscriber
    event_types: tuple[type[GraphEvent], ...] = field(default_factory=tuple)

    def accepts(self, event: GraphEvent) -> bool:
        return not self.event_types or isinstance(event, self.event_types)


class EventDispatcher:
    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def subscribe(
        self, callback: Subscriber, *event_types: type[GraphEvent]
    ) -> Callable[[], None]:
        """Register ``callback`` for the given event types (all events if none given).

        Returns a function that removes the subscription.
        """
        subscription = _Subscription(callback, tuple(event_types))
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def publish(self, event: GraphEvent) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.accepts(event):
                continue
            try:
                subscription.callback(event)
            except Exception as e:
                logger.error(
                    f"Subscriber {subscription.callback!r} failed on {type(event).__name__}: {e}",
                    exc_info=True,
                )

    def __len__(self) -> int:
        return len(self._subscriptions)
