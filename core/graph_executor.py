import asyncio
import logging
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from core.events import (
    NodeCompleted,
    NodeFaulted,
    NodeSkipped,
    NodeStarted,
    RunCompleted,
    RunStarted,
)
from core.execution_context import CancellationSignal, ExecutionContext
from core.scheduler import DependencyMaps, build_dependency_maps, order_from_maps
from core.types_registry import (
    ExecutionDirection,
    GraphValidationError,
    NodeError,
    NodeExecutionError,
    NodeOutcome,
    OutputKey,
    ProgressCallback,
    SkipReason,
)

if TYPE_CHECKING:
    from core.graph import Graph

logger = logging.getLogger(__name__)


_Outcome = tuple[NodeOutcome, Exception | None]


class _GraphExecutionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class RunResult:
    """Outcome of one run.

    ``executed_count`` counts nodes that completed; skipped, faulted and
    cancelled nodes are reported separately.
    """

    total_nodes: int
    executed_count: int = 0
    order: list[str] = field(default_factory=list)
    outcomes: dict[str, NodeOutcome] = field(default_factory=dict)
    faulted: dict[str, BaseException] = field(default_factory=dict)
    skipped: dict[str, SkipReason] = field(default_factory=dict)
    outputs: dict[OutputKey, Any] = field(default_factory=dict)
    shared: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    duration: float = 0.0

    @property
    def faulted_node_ids(self) -> list[str]:
        return list(self.faulted)

    @property
    def succeeded(self) -> bool:
        return not self.faulted and not self.cancelled

    def output(self, node_id: str, socket_name: str, default: Any = None) -> Any:
        return self.outputs.get((node_id, socket_name), default)


class GraphExecutor:
    """Runs a graph once, dispatching each node as soon as all of its upstream nodes resolve.

    Independent nodes run concurrently as asyncio tasks. Before anything runs
    the graph is validated; a graph with issues is refused with
    ``GraphValidationError`` and no node is invoked.
    """

    def __init__(
        self,
        graph: "Graph",
        branch_tracking: bool = True,
        cancel_signal: CancellationSignal | None = None,
        only: Iterable[str] | None = None,
        max_concurrency: int | None = None,
        direction: ExecutionDirection = ExecutionDirection.INPUT_TO_OUTPUT,
    ):
        self.graph = graph
        self.branch_tracking = branch_tracking
        self.direction = direction
        self.cancel_signal = cancel_signal or CancellationSignal()
        self.only = set(only) if only is not None else None
        self.max_concurrency = max_concurrency
        self._state: _GraphExecutionState = _GraphExecutionState.IDLE
        self._progress_callback: ProgressCallback | None = None
        self._active_tasks: dict[asyncio.Task[_Outcome], str] = {}
        # faulted nodes plus nodes skipped because of them
        self._fault_tainted: set[str] = set()
        self._maps = DependencyMaps()

    # ============================================================================
    # Execution Flow
    # ============================================================================

    async def execute(self) -> RunResult:
        issues = self.graph.validate()
        if issues:
            raise GraphValidationError(issues)

        maps = build_dependency_maps(self.graph, self.only, self.direction)
        order = order_from_maps(maps)
        self._maps = maps
        self._fault_tainted.clear()

        context = ExecutionContext(
            self.graph,
            self.graph.type_registry,
            cancel_signal=self.cancel_signal,
            branch_tracking=self.branch_tracking,
        )
        result = RunResult(total_nodes=len(order), order=order, shared=context.shared)
        started = time.perf_counter()
        self.graph.events.publish(RunStarted(len(order)))

        if context.is_cancelled:
            logger.info("Run cancelled before start, no node invoked")
            result.cancelled = True
            self._state = _GraphExecutionState.STOPPED
            return self._finish(result, context, started)

        for node_id in order:
            logic = self.graph.nodes[node_id].logic
            logic.set_progress_callback(self._progress_callback)
            await logic.before_graph_execution()

        self._state = _GraphExecutionState.RUNNING
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        remaining = {node_id: len(maps.predecessors[node_id]) for node_id in order}
        ready: deque[str] = deque(node_id for node_id in order if remaining[node_id] == 0)
        cancel_waiter = asyncio.create_task(self.cancel_signal.wait())

        def release(node_id: str) -> None:
            for successor in maps.successors[node_id]:
                remaining[successor] -= 1
                if remaining[successor] == 0:
                    ready.append(successor)

        try:
            while ready or self._active_tasks:
                while ready and not context.is_cancelled:
                    node_id = ready.popleft()
                    reason = self._skip_reason(node_id, context)
                    if reason is not None:
                        self._mark_skipped(node_id, reason, context, result)
                        release(node_id)
                        continue
                    task = asyncio.create_task(self._run_node(node_id, context, semaphore))
                    self._active_tasks[task] = node_id

                if context.is_cancelled:
                    self._stop_running_nodes()
                if not self._active_tasks:
                    break

                waiting: set[asyncio.Future[Any]] = set(self._active_tasks)
                if not cancel_waiter.done():
                    waiting.add(cancel_waiter)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                finished = [task for task in done if task in self._active_tasks]
                finished.sort(key=lambda task: maps.order_index[self._active_tasks[task]])
                for task in finished:
                    node_id = self._active_tasks.pop(task)
                    outcome, error = task.result()
                    self._record(node_id, outcome, error, context, result)
                    release(node_id)
        finally:
            await self._cleanup_execution(cancel_waiter)

        result.cancelled = context.is_cancelled
        return self._finish(result, context, started)

    async def _run_node(
        self,
        node_id: str,
        context: ExecutionContext,
        semaphore: asyncio.Semaphore | None,
    ) -> _Outcome:
        if semaphore is None:
            return await self._invoke(node_id, context)
        async with semaphore:
            if context.is_cancelled:
                return NodeOutcome.CANCELLED, None
            return await self._invoke(node_id, context)

    async def _invoke(self, node_id: str, context: ExecutionContext) -> _Outcome:
        node = self.graph.nodes[node_id]
        self.graph.events.publish(NodeStarted(node_id))
        try:
            await node.logic.execute(context.for_node(node))
            return NodeOutcome.COMPLETED, None
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # node gave up on its own after observing the cancellation signal
            logger.debug(f"Node {node_id} stopped after cancellation")
            return NodeOutcome.CANCELLED, None
        except Exception as e:
            if isinstance(e, NodeExecutionError) and e.original_exc is not None:
                logger.debug(
                    f"Original exception in node {node_id}: {type(e.original_exc).__name__}: {e.original_exc}"
                )
            logger.error(f"Node {node_id} failed: {e}", exc_info=not isinstance(e, NodeError))
            return NodeOutcome.FAULTED, e

    def _skip_reason(self, node_id: str, context: ExecutionContext) -> SkipReason | None:
        """Decide whether a ready node should be skipped instead of invoked.

        Nodes with no dependencies in scope always run. Edges from nodes
        outside an ``only`` subset are ignored here and read as defaults. In an
        ``OUTPUT_TO_INPUT`` run a node's inputs come from nodes that run later,
        so only fault isolation applies.
        """
        dependencies = self._maps.predecessors[node_id]
        if not dependencies:
            return None
        if all(dep in self._fault_tainted for dep in dependencies):
            return SkipReason.UPSTREAM_FAULT
        if not self.branch_tracking or self.direction != ExecutionDirection.INPUT_TO_OUTPUT:
            return None
        in_edges = [
            edge
            for edge in self.graph.incoming_edges(node_id)
            if edge.from_node_id in self._maps.order_index
        ]
        if not any(context.is_edge_active(edge) for edge in in_edges):
            return SkipReason.INACTIVE_BRANCH
        return None

    def _mark_skipped(
        self, node_id: str, reason: SkipReason, context: ExecutionContext, result: RunResult
    ) -> None:
        logger.debug(f"Skipping node {node_id}: {reason.value}")
        context.deactivate_node(node_id)
        if reason == SkipReason.UPSTREAM_FAULT:
            self._fault_tainted.add(node_id)
        result.outcomes[node_id] = NodeOutcome.SKIPPED
        result.skipped[node_id] = reason
        self.graph.events.publish(NodeSkipped(node_id, reason.value))

    def _record(
        self,
        node_id: str,
        outcome: NodeOutcome,
        error: Exception | None,
        context: ExecutionContext,
        result: RunResult,
    ) -> None:
        result.outcomes[node_id] = outcome
        if outcome == NodeOutcome.COMPLETED:
            result.executed_count += 1
            self.graph.events.publish(NodeCompleted(node_id))
        elif outcome == NodeOutcome.FAULTED:
            context.discard_outputs(node_id)
            context.deactivate_node(node_id)
            self._fault_tainted.add(node_id)
            assert error is not None
            result.faulted[node_id] = error
            self.graph.events.publish(NodeFaulted(node_id, error))
        else:
            context.deactivate_node(node_id)

    def _finish(self, result: RunResult, context: ExecutionContext, started: float) -> RunResult:
        result.outputs = dict(context.outputs)
        result.duration = time.perf_counter() - started
        if self._state == _GraphExecutionState.RUNNING:
            self._state = _GraphExecutionState.IDLE
        logger.info(
            f"Run finished: {result.executed_count}/{result.total_nodes} completed, "
            f"{len(result.skipped)} skipped, {len(result.faulted)} faulted, cancelled={result.cancelled}"
        )
        self.graph.events.publish(
            RunCompleted(
                result.executed_count,
                result.total_nodes,
                tuple(result.faulted),
                result.cancelled,
            )
        )
        return result

    def _stop_running_nodes(self) -> None:
        if self._state != _GraphExecutionState.RUNNING:
            return
        self._state = _GraphExecutionState.STOPPING
        for node_id in self._active_tasks.values():
            logger.debug(f"Calling force_stop on running node {node_id}")
            self.graph.nodes[node_id].logic.force_stop()

    async def _cleanup_execution(self, cancel_waiter: asyncio.Task[Any]) -> None:
        """Cancel whatever is still pending when the run ends or is itself cancelled."""
        cancel_waiter.cancel()
        pending = [task for task in self._active_tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(cancel_waiter, *pending, return_exceptions=True)
        self._active_tasks.clear()
        if self._state == _GraphExecutionState.STOPPING:
            self._state = _GraphExecutionState.STOPPED

    def stop(self, reason: str = "user") -> None:
        """Request cancellation of the current run. Idempotent."""
        self.cancel_signal.cancel(reason)

    # ============================================================================
    # State Management
    # ============================================================================

    @property
    def state(self) -> _GraphExecutionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == _GraphExecutionState.RUNNING

    @property
    def is_stopped(self) -> bool:
        return self._state == _GraphExecutionState.STOPPED

    @property
    def cancellation_reason(self) -> str | None:
        return self.cancel_signal.reason

    # ============================================================================
    # Configuration
    # ============================================================================

    def set_progress_callback(self, callback: ProgressCallback) -> None:
        """Set a progress callback function, forwarded to every node before the run."""
        self._progress_callback = callback
