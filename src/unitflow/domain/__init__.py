"""
Backend-agnostic contracts and value types of the graph engine.
"""

from ._errors import (
    UnitflowError,
    ConfigurationError,
    StateViolation,
    ComputeFailure,
    SweepAborted,
    DeviceNotSupportedError,
    DeviceMismatchError,
)
from ._shape import Shape
from ._unit_id import (
    UnitBaseType,
    UnitType,
    UnitId,
    PLACEHOLDER_TYPE,
    CONSTANT_TYPE,
    DENSE_TYPE,
    CONVOLUTION2D_TYPE,
    ADD_TYPE,
    ACTIVATION_TYPE,
    RELU_TYPE,
    SIGMOID_TYPE,
    MSE_TYPE,
)
from ._unit_state import ExecutionState, UnitState
from ._optimizers import IOptimizer
from .device import Device, DeviceType

__all__ = [
    "UnitflowError",
    "ConfigurationError",
    "StateViolation",
    "ComputeFailure",
    "SweepAborted",
    "DeviceNotSupportedError",
    "DeviceMismatchError",
    "Shape",
    "UnitBaseType",
    "UnitType",
    "UnitId",
    "PLACEHOLDER_TYPE",
    "CONSTANT_TYPE",
    "DENSE_TYPE",
    "CONVOLUTION2D_TYPE",
    "ADD_TYPE",
    "ACTIVATION_TYPE",
    "RELU_TYPE",
    "SIGMOID_TYPE",
    "MSE_TYPE",
    "ExecutionState",
    "UnitState",
    "IOptimizer",
    "Device",
    "DeviceType",
]
