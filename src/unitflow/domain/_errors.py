"""
Error taxonomy for unitflow.

This module defines the exceptions raised by the graph execution engine.
They are split by *when* they can happen:

- `ConfigurationError`:
    Shape, rank, arity or binding problems detected while units are being
    described or constructed. Raised synchronously to the caller that built
    the offending unit and never auto-corrected.
- `StateViolation`:
    An invariant of the unit state machine was broken (for example a unit
    released twice, or a sweep that can no longer make progress). This
    always indicates a scheduler bug or a corrupted graph and aborts the
    current sweep.
- `ComputeFailure`:
    A numerical step of a unit failed while executing. The unit is released
    before the error reaches the caller of the sweep.
- `SweepAborted`:
    The caller requested cancellation of a running sweep.

Device-related errors (`DeviceNotSupportedError`, `DeviceMismatchError`) are
raised by the tensor primitives when operands live on an unsupported device
or on different devices.
"""

from __future__ import annotations

from typing import Any, Optional


class UnitflowError(Exception):
    """Base class of every error raised by unitflow."""


class ConfigurationError(UnitflowError, ValueError):
    """
    Raised when a unit is described or constructed with inconsistent
    configuration (shape, rank, arity, or input binding mismatch).

    Attributes
    ----------
    unit_name : Optional[str]
        Name of the unit being constructed, if known.
    """

    def __init__(self, message: str, unit_name: Optional[str] = None) -> None:
        if unit_name is not None:
            message = f"{unit_name}: {message}"
        super().__init__(message)
        self.unit_name = unit_name


class StateViolation(UnitflowError, RuntimeError):
    """
    Raised when the unit state machine is driven through an illegal
    transition (e.g. releasing an idle unit) or a sweep cannot progress.
    """


class ComputeFailure(UnitflowError, RuntimeError):
    """
    Raised when the forward or backward step of a unit fails.

    Attributes
    ----------
    unit_id : Any
        Identifier of the unit whose step failed.
    phase : str
        Either ``"forward"`` or ``"backward"``.
    """

    def __init__(self, unit_id: Any, phase: str, reason: str) -> None:
        super().__init__(f"{phase} of unit {unit_id} failed: {reason}")
        self.unit_id = unit_id
        self.phase = phase


class SweepAborted(UnitflowError, RuntimeError):
    """Raised when a sweep is cancelled by its caller between unit executions."""


class DeviceNotSupportedError(RuntimeError):
    """
    Raised when a tensor primitive is requested on a device backend
    that is not implemented.

    Attributes
    ----------
    op : str
        The name of the operation that was attempted (e.g., "matmul").
    device : str
        String representation of the device on which the operation
        was attempted.
    """

    def __init__(self, op: str, device: str) -> None:
        super().__init__(f"{op} is not implemented for device '{device}'.")
        self.op = op
        self.device = device


class DeviceMismatchError(RuntimeError):
    """
    Raised when a primitive is attempted between tensors on different devices.
    """

    def __init__(self, device_a: str, device_b: str) -> None:
        super().__init__(f"Device mismatch: '{device_a}' vs '{device_b}'.")
        self.device_a = device_a
        self.device_b = device_b
