"""
FlowCanvas Shared Constants & Type-Safe Enumerations

Single source of truth for port directions, type tags, node display
status and run lifecycle values used across the builder and the
execution engine.
"""

from enum import Enum, unique
from typing import FrozenSet

# Wildcard type tag: an ANY port connects to a port of any type
ANY_TYPE = "ANY"


@unique
class PortDirection(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


@unique
class NodeStatus(str, Enum):
    """Per-node execution status shown on the canvas."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@unique
class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_RUN_STATUSES: FrozenSet[RunStatus] = frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED})


@unique
class FailureReason(str, Enum):
    """Why a run ended in the failed state."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


DEFAULT_INTERACTION_ID = "default"
