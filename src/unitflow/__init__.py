"""
unitflow: a dataflow graph engine for small neural networks.

Units (dense, convolution, activations, losses, ...) own their tensors and a
two-state execution state machine; a scheduler sweeps the graph forward and
backward by generation counting, with one or more workers.
"""

from .domain import (
    UnitflowError,
    ConfigurationError,
    StateViolation,
    ComputeFailure,
    SweepAborted,
    DeviceNotSupportedError,
    DeviceMismatchError,
    Shape,
    UnitType,
    UnitId,
    Device,
)
from .infrastructure import (
    Tensor,
    UnitMetaData,
    UnitManager,
    SchedulerConfig,
    Phase,
    SGD,
    WeightInitializer,
    ConstantInitializer,
    ArrayInitializer,
    Model,
    SymbolicTensor,
)

__version__ = "0.1.0"

__all__ = [
    "UnitflowError",
    "ConfigurationError",
    "StateViolation",
    "ComputeFailure",
    "SweepAborted",
    "DeviceNotSupportedError",
    "DeviceMismatchError",
    "Shape",
    "UnitType",
    "UnitId",
    "Device",
    "Tensor",
    "UnitMetaData",
    "UnitManager",
    "SchedulerConfig",
    "Phase",
    "SGD",
    "WeightInitializer",
    "ConstantInitializer",
    "ArrayInitializer",
    "Model",
    "SymbolicTensor",
]
