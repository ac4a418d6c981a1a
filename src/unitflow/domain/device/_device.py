"""
Device affinity descriptors.

Every tensor owned by a unit is tagged with the device it is meant to be
computed on. The graph engine never dispatches on the device itself; it only
carries the tag so that the primitive layer (`infrastructure.ops`) can check
operand affinity and reject backends it does not implement.

- `DeviceType`: the device category
- `Device`: a validated descriptor parsed from "cpu" or "cuda:<index>"
"""

from __future__ import annotations

from enum import Enum
from typing import Union
import re


class DeviceType(Enum):
    """
    Enumeration of supported device categories.

    Attributes
    ----------
    CPU : DeviceType
        Host memory, computed with NumPy.
    CUDA : DeviceType
        NVIDIA GPU. Recognised as an affinity tag; no primitive implements it.
    """

    CPU = "cpu"
    CUDA = "cuda"


class Device:
    """
    Concrete device descriptor.

    Parameters
    ----------
    device : str
        Device identifier string. Must be either:
        - "cpu"
        - "cuda:<index>", where <index> is a non-negative integer

    Raises
    ------
    ValueError
        If the provided device string does not match the supported formats.

    Notes
    -----
    Two descriptors are equal when their canonical strings are equal, so a
    descriptor can be rebuilt from its string form and still match.
    """

    __slots__ = ("type", "index")

    _CUDA_PATTERN = re.compile(r"^cuda:(\d+)$")

    def __init__(self, device: str = "cpu"):
        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = None
        else:
            m = self._CUDA_PATTERN.match(device)
            if not m:
                raise ValueError(
                    f"Invalid device '{device}'. Expected 'cpu' or 'cuda:<index>'"
                )
            self.type = DeviceType.CUDA
            self.index = int(m.group(1))

    @classmethod
    def coerce(cls, device: Union["Device", str, None]) -> "Device":
        """
        Normalise a device argument.

        Accepts an existing `Device`, a device string, or None (meaning CPU).
        """
        if device is None:
            return cls("cpu")
        if isinstance(device, Device):
            return device
        return cls(str(device))

    def __str__(self) -> str:
        return "cpu" if self.type is DeviceType.CPU else f"cuda:{self.index}"

    def __repr__(self) -> str:
        return f"Device({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    def is_cpu(self) -> bool:
        """Return True if this descriptor denotes the host CPU."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True if this descriptor denotes a CUDA device."""
        return self.type is DeviceType.CUDA
