"""
Per-unit execution state machine.

Each unit owns one `UnitState`. Concurrent workers consult it to decide
whether a unit may run, and claim it before running:

    IDLE --acquire--> EXECUTING --release (generation += 1)--> IDLE

`generation` counts completed executions and never decreases. Both fields are
guarded by a single lock so that a reader always observes a consistent
(generation, busy) pair and a release is visible to every worker before any
dependent unit can be judged ready.

`acquire` and `release` are the only mutators.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple
import threading

from ._errors import StateViolation


class ExecutionState(Enum):
    """The two states of a unit."""

    IDLE = "idle"
    EXECUTING = "executing"


class UnitState:
    """
    Lock-guarded `(generation, busy)` pair.

    Notes
    -----
    `acquire` is a compare-and-swap: it succeeds for exactly one caller among
    any set of racing workers. Passing `expected_generation` additionally
    rejects a caller whose readiness check was made against a generation that
    has since advanced.
    """

    __slots__ = ("_generation", "_busy", "_lock")

    def __init__(self) -> None:
        self._generation = 0
        self._busy = False
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    @property
    def state(self) -> ExecutionState:
        with self._lock:
            return ExecutionState.EXECUTING if self._busy else ExecutionState.IDLE

    def snapshot(self) -> Tuple[int, bool]:
        """Return `(generation, busy)` read atomically."""
        with self._lock:
            return self._generation, self._busy

    def acquire(self, expected_generation: Optional[int] = None) -> bool:
        """
        Try to move IDLE -> EXECUTING.

        Parameters
        ----------
        expected_generation : Optional[int]
            If given, the acquire only succeeds while the generation still
            equals this value.

        Returns
        -------
        bool
            True if this caller now holds the unit, False otherwise.
        """
        with self._lock:
            if self._busy:
                return False
            if (
                expected_generation is not None
                and self._generation != expected_generation
            ):
                return False
            self._busy = True
            return True

    def release(self) -> int:
        """
        Move EXECUTING -> IDLE and advance the generation by one.

        Returns
        -------
        int
            The new generation.

        Raises
        ------
        StateViolation
            If the unit is not currently executing.
        """
        with self._lock:
            if not self._busy:
                raise StateViolation(
                    f"release of an idle unit (generation={self._generation})"
                )
            self._busy = False
            self._generation += 1
            return self._generation

    def __repr__(self) -> str:
        generation, busy = self.snapshot()
        return f"UnitState(generation={generation}, busy={busy})"
