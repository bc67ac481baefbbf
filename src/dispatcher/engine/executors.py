"""Executor capability and adapters.

Any object with ``execute(task) -> Outcome`` can be registered. Two adapters
cover the common cases: wrapping a Python callable, and running an external
command with the task text as its last argument.
"""

from __future__ import annotations

import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

# Maximum task length passed to external commands
MAX_TASK_LENGTH = 50_000


@dataclass(frozen=True)
class Outcome:
    """Result of one executor call."""

    answer: str
    duration_ms: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class Executor(Protocol):
    """Uniform task-solver capability."""

    def execute(self, task: str) -> Outcome: ...


class FunctionExecutor:
    """Adapts a callable returning a string (or an ``Outcome``) to ``Executor``."""

    def __init__(self, fn: Callable[[str], str | Outcome]) -> None:
        self.fn = fn

    def execute(self, task: str) -> Outcome:
        start = time.monotonic()
        result = self.fn(task)
        if isinstance(result, Outcome):
            return result
        return Outcome(answer=str(result), duration_ms=int((time.monotonic() - start) * 1000))


class CommandExecutor:
    """
    Runs an external command per task.

    The task text is appended as the final argument; stdout is the answer.
    A non-zero exit or a timeout is reported as an ``Outcome`` error.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout: float = 300.0,
        cwd: Path | None = None,
    ) -> None:
        if not command:
            raise ValueError("Command cannot be empty")
        self.command = list(command)
        self.timeout = timeout
        self.cwd = cwd

    @staticmethod
    def _sanitize(task: str) -> str:
        """Validate and sanitize task input."""
        if not task or not task.strip():
            raise ValueError("Task cannot be empty")
        if len(task) > MAX_TASK_LENGTH:
            raise ValueError(f"Task exceeds maximum length ({MAX_TASK_LENGTH} chars)")
        # Strip null bytes and non-printable control chars (keep newlines, tabs)
        return "".join(c for c in task if c == "\n" or c == "\t" or (ord(c) >= 32))

    def execute(self, task: str) -> Outcome:
        cmd = [*self.command, self._sanitize(task)]
        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=str(self.cwd) if self.cwd else None,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return Outcome(
                answer="",
                duration_ms=int(self.timeout * 1000),
                error=f"Command timed out after {self.timeout}s",
            )

        duration_ms = int((time.monotonic() - start) * 1000)
        if result.returncode != 0:
            return Outcome(
                answer=result.stdout.strip(),
                duration_ms=duration_ms,
                error=result.stderr.strip() or f"Exit code {result.returncode}",
            )
        return Outcome(answer=result.stdout.strip(), duration_ms=duration_ms)
