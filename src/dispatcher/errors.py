"""Error taxonomy for the dispatch engine.

Exceptions cover failures that abort the call that caused them (registration,
lookup, configuration). Conditions a dispatch run recovers from are reported
on the result as an ``ErrorKind`` instead of being raised.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Result-level failure conditions surfaced by ``DispatchController.run``."""

    EXECUTION_FAILURE = "execution_failure"
    QUALITY_NOT_REACHED = "quality_not_reached"
    STORE_UNAVAILABLE = "store_unavailable"
    CANCELLED = "cancelled"
    NO_EXECUTORS = "no_executors"


class DispatchError(Exception):
    """Base class for dispatcher errors."""


class DuplicateIdError(DispatchError):
    """An executor id is already registered."""

    def __init__(self, executor_id: str) -> None:
        super().__init__(f"Executor already registered: {executor_id}")
        self.executor_id = executor_id


class NotFoundError(DispatchError, KeyError):
    """Lookup of an executor id that is not registered."""

    def __init__(self, executor_id: str) -> None:
        super().__init__(f"Executor not registered: {executor_id}")
        self.executor_id = executor_id

    def __str__(self) -> str:
        return str(self.args[0])


class ExecutorProfileError(DispatchError, ValueError):
    """A profile is inconsistent with the executor it describes."""


class NoExecutorsError(DispatchError):
    """No registered executor is eligible for a recommendation."""


class ExecutionFailure(DispatchError):
    """An executor raised or reported an error instead of producing an answer."""

    def __init__(self, executor_id: str, message: str) -> None:
        super().__init__(f"{executor_id}: {message}")
        self.executor_id = executor_id
        self.message = message


class StoreUnavailableError(DispatchError):
    """The history store's durable backend cannot be read or written."""


class ConfigError(DispatchError, ValueError):
    """Configuration file is malformed."""
