"""
Dispatch engine - executor registry, executor adapters and the control loop.

Core Components:
- registry: executor profiles and thread-safe registration
- executors: Outcome type, FunctionExecutor and CommandExecutor adapters
- controller: select / execute / validate / retry state machine
"""

from .controller import (
    AttemptRecord,
    DispatchController,
    DispatchResult,
    DispatchState,
    clarify_reframer,
)
from .executors import CommandExecutor, Executor, FunctionExecutor, Outcome
from .registry import (
    Complexity,
    ExecutorProfile,
    ExecutorRegistry,
    QualityClass,
    RegisteredExecutor,
    Speed,
)

__all__ = [
    # Controller
    "AttemptRecord",
    "DispatchController",
    "DispatchResult",
    "DispatchState",
    "clarify_reframer",
    # Executors
    "CommandExecutor",
    "Executor",
    "FunctionExecutor",
    "Outcome",
    # Registry
    "Complexity",
    "ExecutorProfile",
    "ExecutorRegistry",
    "QualityClass",
    "RegisteredExecutor",
    "Speed",
]
