"""
Graph arena and sweep scheduler.
"""

from ._config import SchedulerConfig
from ._unit_manager import Phase, UnitManager

__all__ = [
    "SchedulerConfig",
    "Phase",
    "UnitManager",
]
