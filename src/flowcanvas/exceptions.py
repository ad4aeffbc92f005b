"""Custom exceptions for FlowCanvas.

All custom exceptions inherit from FlowCanvasError. Each carries a stable
error code and an optional details dict, so editor surfaces can render a
message and tests can assert on the code without parsing text.

Connection rule violations (ConnectionRuleError and its subclasses) are
local and recoverable: the interaction layer turns them into transient
notifications. Everything raised while running a workflow ends up as a
failed ExecutionRun instead of escaping the dispatcher.
"""

from typing import Any, Optional, Dict, TypeVar, Type

E = TypeVar("E", bound="FlowCanvasError")


class FlowCanvasError(Exception):
    """
    Base error for FlowCanvas.

    Args:
        message: Human-readable error message.
        code: Unique error code for programmatic handling.
        details: Optional structured data for debugging or client use.
    """

    error_code: str = "flowcanvas.error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message: str = message or self.__class__.__doc__ or "FlowCanvas error"
        self.code: str = code or self.error_code
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the exception for logging or notifications."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    @classmethod
    def from_exception(
        cls: Type[E],
        exc: Exception,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> E:
        """
        Wrap an arbitrary exception as a FlowCanvasError subclass.
        Preserves the original message and records the original exception repr.
        """
        return cls(
            message=str(exc) or exc.__class__.__name__,
            code=code,
            details={**(details or {}), "original_exception": repr(exc)},
        )


# --- Catalog ---

class CatalogError(FlowCanvasError):
    """Raised when a node catalog payload cannot be parsed."""
    error_code: str = "flowcanvas.catalog_error"


class UnknownTypeError(FlowCanvasError):
    """Raised when a node type id is not present in the catalog."""
    error_code: str = "flowcanvas.unknown_type"


# --- Edge creation rules ---

class ConnectionRuleError(FlowCanvasError):
    """Raised when an edge would violate a connection rule."""
    error_code: str = "flowcanvas.connection"


class UnknownEndpoint(ConnectionRuleError):
    """An edge endpoint references a node or port that does not exist."""
    error_code: str = "flowcanvas.connection.unknown_endpoint"


class WrongDirection(ConnectionRuleError):
    """Edges run from an output port to an input port."""
    error_code: str = "flowcanvas.connection.wrong_direction"


class TypeMismatch(ConnectionRuleError):
    """Source and target port types are not compatible."""
    error_code: str = "flowcanvas.connection.type_mismatch"


class PortFull(ConnectionRuleError):
    """The target input port does not accept another connection."""
    error_code: str = "flowcanvas.connection.port_full"


class DuplicateEdge(PortFull):
    """The target input port already holds this exact connection."""
    error_code: str = "flowcanvas.connection.duplicate"


class WouldCycle(ConnectionRuleError):
    """The edge would introduce a cycle into the workflow graph."""
    error_code: str = "flowcanvas.connection.would_cycle"


# --- Graph editing / validation ---

class ValidationError(FlowCanvasError):
    """Raised when the workflow graph is not ready for execution."""
    error_code: str = "flowcanvas.validation_error"


class ParameterError(FlowCanvasError):
    """Raised when a parameter value is rejected."""
    error_code: str = "flowcanvas.parameter_error"


class SerializationError(FlowCanvasError):
    """Raised when a workflow document cannot be serialized or loaded."""
    error_code: str = "flowcanvas.serialization_error"


# --- Execution ---

class RunInProgress(FlowCanvasError):
    """Raised when a run is submitted while another is still in flight."""
    error_code: str = "flowcanvas.run_in_progress"


class TransportError(FlowCanvasError):
    """Raised when the execution or catalog service cannot be reached or misbehaves."""
    error_code: str = "flowcanvas.transport_error"


class ExecutionFailed(FlowCanvasError):
    """Raised when the execution service reports that a workflow failed."""
    error_code: str = "flowcanvas.execution_failed"


class ExecutionTimeout(FlowCanvasError):
    """Raised when the execution service stays silent for too long."""
    error_code: str = "flowcanvas.timeout"


class RunCancelled(FlowCanvasError):
    """Raised when a run is cancelled on request."""
    error_code: str = "flowcanvas.cancelled"
