"""Executor Registry - Holds registered executors and their capability profiles."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from dispatcher.engine.executors import Executor
from dispatcher.errors import DuplicateIdError, ExecutorProfileError, NotFoundError

logger = logging.getLogger(__name__)


class Complexity(StrEnum):
    """Task complexity an executor is built for."""

    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class Speed(StrEnum):
    """Relative latency class."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class QualityClass(StrEnum):
    """Declared output quality tier."""

    STANDARD = "standard"
    HIGH = "high"
    EXTREME = "extreme"


@dataclass(frozen=True)
class ExecutorProfile:
    """Declared capabilities of an executor. Immutable once registered."""

    executor_id: str
    tags: frozenset[str] = field(default_factory=frozenset)
    complexity: Complexity = Complexity.MEDIUM
    speed: Speed = Speed.MEDIUM
    quality_class: QualityClass = QualityClass.STANDARD
    kind: str = "unknown"  # rule-based, reasoning-loop, retrieval, ...
    description: str = ""

    def __post_init__(self) -> None:
        if not self.executor_id:
            raise ExecutorProfileError("executor_id cannot be empty")
        # Accept any iterable of tags and plain strings for the enums
        object.__setattr__(self, "tags", frozenset(t.lower() for t in self.tags))
        object.__setattr__(self, "complexity", Complexity(self.complexity))
        object.__setattr__(self, "speed", Speed(self.speed))
        object.__setattr__(self, "quality_class", QualityClass(self.quality_class))

    def to_dict(self) -> dict[str, Any]:
        return {
            "executor_id": self.executor_id,
            "tags": sorted(self.tags),
            "complexity": self.complexity.value,
            "speed": self.speed.value,
            "quality_class": self.quality_class.value,
            "kind": self.kind,
            "description": self.description,
        }


@dataclass(frozen=True)
class RegisteredExecutor:
    """Registry entry: the executor and its profile."""

    executor: Executor
    profile: ExecutorProfile


class ExecutorRegistry:
    """
    Registry of executors keyed by id.

    Features:
    - Registration order is preserved for deterministic tie-breaking
    - Entries are never removed, so history records always resolve
    - Reads return immutable snapshots and are safe from any thread
    """

    def __init__(self) -> None:
        self._entries: dict[str, RegisteredExecutor] = {}
        self._order: tuple[str, ...] = ()
        self._lock = threading.Lock()

    def register(self, executor_id: str, executor: Executor, profile: ExecutorProfile) -> None:
        """
        Register an executor.

        Raises:
            DuplicateIdError: ``executor_id`` is already registered.
            ExecutorProfileError: ``profile.executor_id`` differs from ``executor_id``.
            TypeError: ``executor`` has no ``execute`` method.
        """
        if profile.executor_id != executor_id:
            raise ExecutorProfileError(
                f"Profile id {profile.executor_id!r} does not match executor id {executor_id!r}"
            )
        if not callable(getattr(executor, "execute", None)):
            raise TypeError(f"Executor {executor_id!r} must implement execute(task)")

        with self._lock:
            if executor_id in self._entries:
                raise DuplicateIdError(executor_id)
            self._entries[executor_id] = RegisteredExecutor(executor=executor, profile=profile)
            self._order = (*self._order, executor_id)

        logger.info("Registered executor %s (%s)", executor_id, profile.kind)

    def get(self, executor_id: str) -> RegisteredExecutor:
        """Get executor entry by id."""
        try:
            return self._entries[executor_id]
        except KeyError:
            raise NotFoundError(executor_id) from None

    def profile(self, executor_id: str) -> ExecutorProfile:
        return self.get(executor_id).profile

    def all(self) -> tuple[RegisteredExecutor, ...]:
        """Snapshot of all entries in registration order."""
        order = self._order
        return tuple(self._entries[executor_id] for executor_id in order)

    def profiles(self) -> tuple[ExecutorProfile, ...]:
        return tuple(entry.profile for entry in self.all())

    def ids(self) -> tuple[str, ...]:
        return self._order

    def position(self, executor_id: str) -> int:
        """Registration index; unknown ids sort last."""
        order = self._order
        return order.index(executor_id) if executor_id in order else len(order)

    def __contains__(self, executor_id: object) -> bool:
        return executor_id in self._entries

    def __len__(self) -> int:
        return len(self._order)
