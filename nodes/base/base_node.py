import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from core.models import Node, NodeDescriptor, SocketSpec
from core.types_registry import (
    ANY_TYPE,
    NodeCategory,
    NodeError,
    NodeExecutionError,
    NodeOutputs,
    NodeParams,
    NodeValidationError,
    ProgressCallback,
    ProgressEvent,
    ProgressState,
    SocketDirection,
    TYPE_REGISTRY,
)

if TYPE_CHECKING:
    from core.execution_context import NodeExecutionContext

logger = logging.getLogger(__name__)


class Base(ABC):
    # Socket declarations map socket name -> value type id (see core.types_registry.TYPE_REGISTRY)
    inputs: dict[str, str] = {}
    outputs: dict[str, str] = {}
    max_connections: dict[str, int] = {}
    default_params: NodeParams = {}
    CATEGORY: NodeCategory = NodeCategory.BASE
    TITLE: str = ""
    DESCRIPTION: str = ""
    ICON: str = ""
    ORDER: int = 0

    def __init__(self, id: str, params: NodeParams | None = None):
        self.id = id
        # Shared with the owning Node so parameter edits made during a run are persisted
        self.params = params if params is not None else dict(self.default_params)
        self._progress_callback: ProgressCallback | None = None
        self._is_stopped = False

    @classmethod
    def descriptor(cls, type_id: str | None = None) -> NodeDescriptor:
        """Build the explicit registration descriptor for this node class."""
        sockets = [
            SocketSpec(name, SocketDirection.INPUT, value_type, cls.max_connections.get(name))
            for name, value_type in cls.inputs.items()
        ]
        sockets += [
            SocketSpec(name, SocketDirection.OUTPUT, value_type, cls.max_connections.get(name))
            for name, value_type in cls.outputs.items()
        ]

        def factory(node: Node) -> "Base":
            return cls(node.id, node.params)

        resolved_id = type_id or cls.__name__
        return NodeDescriptor(
            type_id=resolved_id,
            factory=factory,
            sockets=tuple(sockets),
            title=cls.TITLE or resolved_id,
            category=cls.CATEGORY.value,
            description=cls.DESCRIPTION,
            icon=cls.ICON,
            order=cls.ORDER,
            default_params=dict(cls.default_params),
        )

    def _get_or_build_model(self, fields: dict[str, str]) -> type[BaseModel]:
        # Host-defined socket types have no Python type to check against
        field_defs: dict[str, Any] = {
            name: (Any if type_id == ANY_TYPE else TYPE_REGISTRY.get(type_id, Any), ...)
            for name, type_id in fields.items()
        }
        return create_model(
            f"Node{type(self).__name__}Outputs",
            __config__=ConfigDict(arbitrary_types_allowed=True),
            **field_defs,
        )

    def _validate_outputs(self, outputs: NodeOutputs) -> None:
        """Best-effort output validation using Pydantic. Only validates outputs that were written.

        Intentionally lenient: an int written to a float output passes.
        """
        if not self.outputs or not outputs:
            return
        present = {k: self.outputs[k] for k in self.outputs if k in outputs}
        if not present:
            return
        try:
            model = self._get_or_build_model(present)
            model.model_validate({k: outputs[k] for k in present}, strict=False)
        except ValidationError as ve:
            raise NodeValidationError(self.id, f"Output validation failed: {ve}") from ve

    def set_progress_callback(self, callback: ProgressCallback | None) -> None:
        """Set a callback function to report progress during execution."""
        self._progress_callback = callback

    def _clamp_progress(self, value: float) -> float:
        if value < 0.0:
            return 0.0
        if value > 100.0:
            return 100.0
        return value

    def _emit_progress(
        self,
        state: ProgressState,
        progress: float | None = None,
        text: str = "",
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not self._progress_callback:
            return
        event: ProgressEvent = {
            "node_id": self.id,
            "state": state,
        }
        if progress is not None:
            event["progress"] = self._clamp_progress(progress)
        if text:
            event["text"] = text
        if meta:
            event["meta"] = meta
        self._progress_callback(event)

    def report_progress(self, progress: float, text: str = ""):
        """Convenience helper for subclasses to report an UPDATE event."""
        self._emit_progress(ProgressState.UPDATE, progress, text)

    @property
    def is_stopped(self) -> bool:
        return self._is_stopped

    def force_stop(self):
        """Ask a running node to stop at its next opportunity. Idempotent."""
        logger.debug(f"BaseNode: force_stop called for node {self.id}, already stopped: {self._is_stopped}")
        if self._is_stopped:
            return
        self._is_stopped = True
        self._emit_progress(ProgressState.STOPPED, 100.0, "stopped")

    async def before_graph_execution(self) -> None:
        """Reset per-run state. Called for every node, in schedule order, before a run starts."""
        self._is_stopped = False

    async def execute(self, context: "NodeExecutionContext") -> None:
        """Template method for execution with uniform error handling and progress lifecycle.

        Outputs are written through ``context.set_output``; a dict returned by
        ``_execute_impl`` is written the same way. Outputs left unwritten are
        inactive for the rest of the run.
        """
        self._emit_progress(ProgressState.START, 0.0, "start")
        try:
            result = await self._execute_impl(context)
            for name, value in (result or {}).items():
                context.set_output(name, value)
            self._validate_outputs(context.run.node_outputs(self.id))
            self._emit_progress(ProgressState.DONE, 100.0, "")
        except asyncio.CancelledError:
            self._emit_progress(ProgressState.STOPPED, 100.0, "cancelled")
            raise
        except NodeError:
            # Re-raise node errors as-is to preserve detailed error messages
            self._emit_progress(ProgressState.ERROR, 100.0, "error")
            raise
        except Exception as e:
            self._emit_progress(ProgressState.ERROR, 100.0, f"error: {type(e).__name__}: {str(e)}")
            raise NodeExecutionError(self.id, "Execution failed", original_exc=e) from e

    @abstractmethod
    async def _execute_impl(self, context: "NodeExecutionContext") -> NodeOutputs | None:
        """Core execution logic - implement in subclasses. Do not add try/except here; let base handle errors."""
        raise NotImplementedError("Subclasses must implement _execute_impl()")
