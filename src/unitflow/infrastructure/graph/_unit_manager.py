"""
Graph arena and sweep scheduler.

`UnitManager` owns every unit of one graph. Units are stored in an arena (a
list indexed by insertion position); edges are integer index lists resolved
once by `compile`. A *sweep* executes every unit exactly once, in forward or
backward direction, driven purely by unit generations:

- forward-ready:  not busy, every producer is one generation ahead and every
  consumer is at the same generation;
- backward-ready: not busy, every consumer is one generation ahead and every
  producer is at the same generation.

Workers scan the arena in insertion order (reverse order for backward),
claim a ready unit with a compare-and-swap on its state, copy the data it
needs into its own input slots, run it and release it. With one worker the
scan runs inline; with more, the workers run on a thread pool and race for
units through the same state machine.

Failure policy
--------------
A unit whose step raises is still released. Errors that are not already
`UnitflowError`s are wrapped in `ComputeFailure` (chained to the cause),
the other workers stop after their current unit, and the error reaches the
caller of the sweep. A failed or aborted sweep, or a single `submit_unit`
execution, leaves the generations out of step; the next sweep refuses to
start until `resynchronize` has run the missing executions of the
interrupted phase. Trainable tensors are kept.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
from typing_extensions import Self

from ...domain._errors import (
    ComputeFailure,
    ConfigurationError,
    StateViolation,
    SweepAborted,
    UnitflowError,
)
from ...domain._unit_id import UnitId
from ..ops import matrix_cpu
from ..optimizers import create_optimizer
from ..units import (
    ComputableUnit,
    PlaceHolderUnit,
    TrainableUnit,
    UnitMetaData,
    create_unit,
    unit_class,
)
from ._config import SchedulerConfig

logger = logging.getLogger(__name__)


class Phase(Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


PhaseLike = Union[Phase, str]


class _Progress:
    """Shared timestamp of the last unit completion of a sweep."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = time.monotonic()

    def touch(self) -> None:
        with self._lock:
            self._last = time.monotonic()

    def idle_for(self) -> float:
        with self._lock:
            return time.monotonic() - self._last


class UnitManager:
    """
    Arena of units plus the scheduler that sweeps them.

    Parameters
    ----------
    config : SchedulerConfig, optional
        Scheduler settings. Defaults to `SchedulerConfig()`.

    Notes
    -----
    Metadata is appended in dependency order (producers first). Nothing is
    allocated until `compile`. Only one sweep runs at a time; concurrent
    callers of `forward` / `backward` are serialized.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None) -> None:
        self.config = config or SchedulerConfig()
        self._metadata: List[UnitMetaData] = []
        self._index: Dict[UnitId, int] = {}
        self._units: List[ComputableUnit] = []
        self._upstream: List[List[int]] = []
        self._downstream: List[List[int]] = []
        self._compiled = False
        self._last_phase: Optional[Phase] = None

        self._sweep_lock = threading.Lock()
        self._abort = threading.Event()
        self._stop = threading.Event()
        self._task_executor: Optional[ThreadPoolExecutor] = None
        self._worker_pool: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    def append_unit(self, metadata: UnitMetaData) -> UnitId:
        """
        Register a unit description.

        Raises
        ------
        ConfigurationError
            If the id is already registered, an input is bound to a unit
            that was not appended before, or two inputs share a producer.
        """
        unit_id = metadata.unit_id
        if unit_id in self._index:
            raise ConfigurationError("unit is already registered", unit_id.name)
        if any(m.unit_id.name == unit_id.name for m in self._metadata):
            raise ConfigurationError("unit name is already taken", unit_id.name)

        producers = list(metadata.input_units.values())
        for key, producer in metadata.input_units.items():
            if producer not in self._index:
                raise ConfigurationError(
                    f"input {key!r} is bound to unknown unit {producer}", unit_id.name
                )
        if len(set(producers)) != len(producers):
            raise ConfigurationError(
                "two inputs are bound to the same producer", unit_id.name
            )

        self._index[unit_id] = len(self._metadata)
        self._metadata.append(metadata)
        self._compiled = False
        return unit_id

    def compile(
        self,
        optimizer: Any = None,
        optimizer_params: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Resolve the graph and build every unit.

        Parameters
        ----------
        optimizer : str or callable, optional
            Optimizer spec (see `create_optimizer`). A fresh instance is
            attached to every trainable unit.
        optimizer_params : Mapping[str, Any], optional
            Keyword parameters for the optimizer factory.

        Notes
        -----
        Compiling again rebuilds every unit from its metadata: trainable
        tensors are re-initialized and all generations restart at 0.
        """
        count = len(self._metadata)
        downstream: List[List[int]] = [[] for _ in range(count)]
        for i, metadata in enumerate(self._metadata):
            for producer in metadata.input_units.values():
                downstream[self._index[producer]].append(i)

        units: List[ComputableUnit] = []
        upstream: List[List[int]] = []
        trainable = 0
        for i, metadata in enumerate(self._metadata):
            consumers = [self._metadata[j].unit_id for j in downstream[i]]
            unit_optimizer = None
            if issubclass(unit_class(metadata.unit_id.type), TrainableUnit):
                unit_optimizer = create_optimizer(optimizer, optimizer_params)
            unit = create_unit(metadata, consumers, unit_optimizer)
            if set(unit.input_unit_ids) != set(metadata.input_units.values()):
                raise ConfigurationError(
                    "unit wired inputs that differ from its metadata", metadata.name
                )
            if isinstance(unit, TrainableUnit):
                trainable += 1
            units.append(unit)
            upstream.append([self._index[p] for p in unit.input_unit_ids])
            logger.debug(
                "built %s: inputs=%s outputs=%s",
                unit.unit_id,
                [str(u) for u in unit.input_unit_ids],
                [str(u) for u in unit.output_unit_ids],
            )

        self._units = units
        self._upstream = upstream
        self._downstream = downstream
        self._compiled = True
        self._last_phase = None
        logger.info(
            "compiled graph: %d units (%d trainable), optimizer=%r",
            count,
            trainable,
            optimizer,
        )

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------
    @property
    def compiled(self) -> bool:
        return self._compiled

    @property
    def units(self) -> Tuple[ComputableUnit, ...]:
        self._require_compiled()
        return tuple(self._units)

    @property
    def metadata(self) -> Tuple[UnitMetaData, ...]:
        return tuple(self._metadata)

    def _position(self, unit_id: UnitId) -> int:
        try:
            return self._index[unit_id]
        except KeyError:
            raise KeyError(f"unknown unit {unit_id}") from None

    def unit(self, unit_id: UnitId) -> ComputableUnit:
        self._require_compiled()
        return self._units[self._position(unit_id)]

    def generations(self) -> Dict[UnitId, int]:
        self._require_compiled()
        return {u.unit_id: u.state.generation for u in self._units}

    def output(self, unit_id: UnitId) -> np.ndarray:
        """Return a copy of a unit's forward output as `(batch, *shape)`."""
        return self.unit(unit_id).forward_output.to_numpy().copy()

    def is_ready(self, unit_id: UnitId, phase: PhaseLike) -> bool:
        self._require_compiled()
        return self._ready(self._position(unit_id), Phase(phase)) is not None

    def feed(self, unit_id: UnitId, data: Any) -> None:
        """
        Load `data` into a placeholder unit.

        Raises
        ------
        ConfigurationError
            If the unit is not a placeholder.
        """
        unit = self.unit(unit_id)
        if not isinstance(unit, PlaceHolderUnit):
            raise ConfigurationError("only placeholder units can be fed", unit_id.name)
        unit.feed(data)

    # ------------------------------------------------------------------
    # scheduling primitives
    # ------------------------------------------------------------------
    def _require_compiled(self) -> None:
        if not self._compiled:
            raise StateViolation("graph is not compiled; call compile() first")

    def _ready(self, i: int, phase: Phase) -> Optional[int]:
        """Return the generation at which unit `i` is ready, or None."""
        generation, busy = self._units[i].state.snapshot()
        if busy:
            return None
        if phase is Phase.FORWARD:
            ahead, level = self._upstream[i], self._downstream[i]
        else:
            ahead, level = self._downstream[i], self._upstream[i]
        for j in ahead:
            if self._units[j].state.generation != generation + 1:
                return None
        for j in level:
            if self._units[j].state.generation != generation:
                return None
        return generation

    def _pull_inputs(self, i: int, phase: Phase) -> None:
        unit = self._units[i]
        if phase is Phase.FORWARD:
            for j, producer in zip(self._upstream[i], unit.input_unit_ids):
                unit.forward_input_map[producer].copy_from(
                    self._units[j].forward_output
                )
        elif phase is Phase.BACKWARD:
            for j, consumer in zip(self._downstream[i], unit.output_unit_ids):
                unit.backward_input_map[consumer].copy_from(
                    self._units[j].backward_output_map[unit.unit_id]
                )
        else:
            raise NotImplementedError(f"unknown phase {phase!r}")

    def _check_finite(self, unit: ComputableUnit, phase: Phase) -> None:
        if phase is Phase.FORWARD:
            produced = [unit.forward_output]
        else:
            produced = list(unit.backward_output_map.values())
        for tensor in produced:
            if not matrix_cpu.all_finite(tensor):
                raise ComputeFailure(
                    unit.unit_id, phase.value, "produced non-finite values"
                )

    def _execute(self, i: int, phase: Phase, generation: int) -> bool:
        """
        Claim unit `i` at `generation`, run one step of `phase`, release.

        Returns False if the claim was lost to another worker.
        """
        unit = self._units[i]
        if not unit.state.acquire(generation):
            return False
        logger.debug("acquired %s for %s at generation %d", unit.unit_id, phase.value, generation)
        try:
            self._pull_inputs(i, phase)
            if phase is Phase.FORWARD:
                unit.forward()
            elif phase is Phase.BACKWARD:
                unit.backward()
            else:
                raise NotImplementedError(f"unknown phase {phase!r}")
            if self.config.check_finite:
                self._check_finite(unit, phase)
        except UnitflowError:
            logger.error("%s of %s failed", phase.value, unit.unit_id, exc_info=True)
            raise
        except Exception as e:
            logger.error("%s of %s failed", phase.value, unit.unit_id, exc_info=True)
            raise ComputeFailure(
                unit.unit_id, phase.value, f"{type(e).__name__}: {e}"
            ) from e
        finally:
            new_generation = unit.state.release()
            logger.debug("released %s at generation %d", unit.unit_id, new_generation)
        return True

    # ------------------------------------------------------------------
    # sweeps
    # ------------------------------------------------------------------
    def _scan_order(self, phase: Phase) -> List[int]:
        order = list(range(len(self._units)))
        if phase is Phase.BACKWARD:
            order.reverse()
        return order

    def _check_interrupt(self) -> bool:
        """Raise if aborted; return True if the sweep should stop quietly."""
        if self._abort.is_set():
            raise SweepAborted("sweep aborted by caller")
        return self._stop.is_set()

    def _worker(self, phase: Phase, target: int, progress: _Progress) -> None:
        order = self._scan_order(phase)
        try:
            while True:
                if self._check_interrupt():
                    return
                remaining = False
                progressed = False
                for i in order:
                    if self._check_interrupt():
                        return
                    if self._units[i].state.generation >= target:
                        continue
                    remaining = True
                    generation = self._ready(i, phase)
                    if generation is None:
                        continue
                    if self._execute(i, phase, generation):
                        progressed = True
                        progress.touch()
                if not remaining:
                    return
                if not progressed:
                    if any(u.state.busy for u in self._units):
                        # another worker is inside a unit step
                        progress.touch()
                    elif progress.idle_for() > self.config.stall_timeout:
                        raise StateViolation(
                            f"{phase.value} sweep made no progress for "
                            f"{self.config.stall_timeout}s"
                        )
                    time.sleep(self.config.poll_interval)
        except BaseException:
            self._stop.set()
            raise

    def _common_generation(self) -> int:
        generations = {u.state.generation for u in self._units}
        if len(generations) > 1:
            raise StateViolation(
                f"unit generations are out of step ({sorted(generations)}); "
                "call resynchronize() first"
            )
        return generations.pop()

    def _run_workers(self, phase: Phase, target: int) -> None:
        progress = _Progress()
        workers = min(self.config.num_workers, len(self._units))
        if workers <= 1:
            self._worker(phase, target, progress)
            return

        pool = self._pool()
        futures = [
            pool.submit(self._worker, phase, target, progress) for _ in range(workers)
        ]
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        if any(f.exception() is not None for f in done):
            self._stop.set()
        wait(futures)

        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            # prefer the root cause over follow-up aborts
            errors.sort(key=lambda e: isinstance(e, SweepAborted))
            raise errors[0]

    def run(self, phase: PhaseLike) -> None:
        """
        Execute one sweep of `phase`.

        Raises
        ------
        StateViolation
            If the graph is not compiled, generations are out of step, or
            the sweep stalls.
        ComputeFailure
            If a unit step fails.
        SweepAborted
            If `abort` was called while the sweep was running.
        """
        phase = Phase(phase)
        self._require_compiled()
        with self._sweep_lock:
            if not self._units:
                return
            self._abort.clear()
            self._stop.clear()
            start = self._common_generation()
            self._last_phase = phase
            started = time.perf_counter()
            self._run_workers(phase, start + 1)
            logger.info(
                "%s sweep complete: %d units, generation %d -> %d in %.4fs",
                phase.value,
                len(self._units),
                start,
                start + 1,
                time.perf_counter() - started,
            )

    def forward(self) -> None:
        self.run(Phase.FORWARD)

    def backward(self) -> None:
        self.run(Phase.BACKWARD)

    def resynchronize(self) -> None:
        """
        Bring every unit back to a common generation.

        Runs the units that the last interrupted sweep (or the last
        `submit_unit` execution) left one generation behind, in that sweep's
        phase, through the usual acquire/release cycle. Trainable tensors
        are kept; a backward phase still applies its gradients.

        Raises
        ------
        StateViolation
            If the generations cannot be levelled by one more partial sweep
            (units more than one generation apart, or mixed phases). Compile
            the graph again in that case.
        ComputeFailure
            If a unit step fails again.
        """
        self._require_compiled()
        with self._sweep_lock:
            generations = [u.state.generation for u in self._units]
            if not generations or min(generations) == max(generations):
                return
            low, high = min(generations), max(generations)
            if high - low > 1 or self._last_phase is None:
                raise StateViolation(
                    f"cannot resynchronize generations {sorted(set(generations))}"
                )
            self._abort.clear()
            self._stop.clear()
            behind = generations.count(low)
            logger.info(
                "resynchronizing %d unit(s) at generation %d with a %s pass",
                behind,
                low,
                self._last_phase.value,
            )
            self._run_workers(self._last_phase, high)

    def abort(self) -> None:
        """Ask the running sweep to stop before its next unit execution."""
        self._abort.set()

    # ------------------------------------------------------------------
    # futures
    # ------------------------------------------------------------------
    def _tasks(self) -> ThreadPoolExecutor:
        if self._task_executor is None:
            self._task_executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="unitflow-task"
            )
        return self._task_executor

    def _pool(self) -> ThreadPoolExecutor:
        if self._worker_pool is None:
            self._worker_pool = ThreadPoolExecutor(
                max_workers=self.config.num_workers, thread_name_prefix="unitflow-worker"
            )
        return self._worker_pool

    def forward_async(self) -> "Future[None]":
        """Submit a forward sweep; the Future resolves when it completes."""
        return self._tasks().submit(self.run, Phase.FORWARD)

    def backward_async(self) -> "Future[None]":
        """Submit a backward sweep; the Future resolves when it completes."""
        return self._tasks().submit(self.run, Phase.BACKWARD)

    def _run_single(self, i: int, phase: Phase) -> int:
        unit = self._units[i]
        generation = self._ready(i, phase)
        if generation is None:
            raise StateViolation(f"{unit.unit_id} is not ready for {phase.value}")
        self._last_phase = phase
        if not self._execute(i, phase, generation):
            raise StateViolation(f"{unit.unit_id} is not ready for {phase.value}")
        return unit.state.generation

    def submit_unit(self, unit_id: UnitId, phase: PhaseLike) -> "Future[int]":
        """
        Submit one execution of one unit.

        The Future resolves to the unit's new generation, or raises
        `StateViolation` if the unit was not ready when the task ran.
        Cancelling the Future succeeds only while the task is still queued,
        that is before the unit is acquired. Call `resynchronize` before the
        next full sweep.
        """
        self._require_compiled()
        return self._tasks().submit(
            self._run_single, self._position(unit_id), Phase(phase)
        )

    def close(self) -> None:
        """Shut down the thread pools. The manager stays usable inline."""
        for executor in (self._task_executor, self._worker_pool):
            if executor is not None:
                executor.shutdown(wait=True)
        self._task_executor = None
        self._worker_pool = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
