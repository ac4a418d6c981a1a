"""
Scheduler configuration.
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Callable, Optional, Union

from dotenv import dotenv_values
from typing_extensions import Self

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Tuning knobs of the sweep scheduler.

    Parameters
    ----------
    num_workers : int
        Workers scanning the arena during a sweep. 1 runs the sweep inline in
        the calling thread.
    poll_interval : float
        Seconds a worker sleeps when no unit is ready.
    stall_timeout : float
        Seconds without any unit completing after which a sweep is declared
        stuck (`StateViolation`).
    check_finite : bool
        If True, a unit producing NaN or infinite values fails with
        `ComputeFailure`.

    Raises
    ------
    ValueError
        If a value is out of range.
    """

    num_workers: int = 1
    poll_interval: float = 1e-4
    stall_timeout: float = 30.0
    check_finite: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.num_workers, bool) or int(self.num_workers) != self.num_workers:
            raise ValueError(f"num_workers must be an integer, got {self.num_workers!r}")
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if not self.poll_interval >= 0.0:
            raise ValueError(f"poll_interval must be >= 0, got {self.poll_interval}")
        if not self.stall_timeout > 0.0:
            raise ValueError(f"stall_timeout must be > 0, got {self.stall_timeout}")
        object.__setattr__(self, "num_workers", int(self.num_workers))
        object.__setattr__(self, "poll_interval", float(self.poll_interval))
        object.__setattr__(self, "stall_timeout", float(self.stall_timeout))
        object.__setattr__(self, "check_finite", bool(self.check_finite))

    @classmethod
    def from_environ(
        cls,
        prefix: str = "UNITFLOW_",
        getenv: Callable[[str], Optional[str]] = os.getenv,
    ) -> Self:
        """
        Build a config from environment variables.

        Reads ``<prefix>NUM_WORKERS``, ``<prefix>POLL_INTERVAL``,
        ``<prefix>STALL_TIMEOUT`` and ``<prefix>CHECK_FINITE``; unset
        variables keep their defaults.
        """
        converters = {
            "num_workers": int,
            "poll_interval": float,
            "stall_timeout": float,
        }
        kwargs = {}
        for f in fields(cls):
            key = prefix + f.name.upper()
            raw = getenv(key)
            if raw is None:
                continue
            if f.name == "check_finite":
                kwargs[f.name] = _parse_bool(key, raw)
                continue
            try:
                kwargs[f.name] = converters[f.name](raw.strip())
            except ValueError as e:
                raise ValueError(f"{key}: cannot parse {raw!r}") from e
        return cls(**kwargs)

    @classmethod
    def from_dotenv(
        cls,
        path: Union[str, Path] = ".env",
        prefix: str = "UNITFLOW_",
    ) -> Self:
        """
        Build a config from a ``.env`` file, as `from_environ` does.

        Variables already set in the process environment take precedence
        over the file. A missing file warns and falls back to the process
        environment alone.
        """
        path = Path(path)
        if not path.is_file():
            warnings.warn(
                f"unitflow: {path} not found; reading the process environment only.",
                RuntimeWarning,
                stacklevel=2,
            )
            return cls.from_environ(prefix)
        values = dotenv_values(path)

        def getenv(key: str) -> Optional[str]:
            value = os.environ.get(key)
            return value if value is not None else values.get(key)

        return cls.from_environ(prefix, getenv)
