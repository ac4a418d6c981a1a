"""
Base classes of computable units.

A unit owns every tensor it reads or writes:

- `forward_input_map`   producer id -> copy of that producer's output
- `forward_output`      result of `forward`
- `backward_input_map`  consumer id -> gradient that consumer sent back
- `backward_output_map` producer id -> gradient this unit sends back
- `internal_tensor_map` scratch tensors (matrices, padded buffers, ...)

Trainable units additionally own named trainable tensors, the gradients
staged for them by `backward`, and an optional optimizer.

The scheduler fills the input maps by value copy before calling `forward` or
`backward`; a unit never reads another unit's tensors directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar, Dict, Iterable, List, Mapping, Optional

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._shape import Shape
from ...domain._unit_id import UnitId, UnitType
from ...domain._unit_state import UnitState
from ..ops import matrix_cpu
from ..tensor._tensor import Tensor
from ._metadata import UnitMetaData


class ComputableUnit(ABC):
    """
    A node of the computation graph.

    Parameters
    ----------
    unit_id : UnitId
        Identity of the unit.
    forward_input_map : Mapping[UnitId, Tensor]
        One slot per producer, in input order.
    forward_output : Tensor
        Output slot.
    backward_input_map : Mapping[UnitId, Tensor]
        One gradient slot per consumer, in consumer order.
    backward_output_map : Mapping[UnitId, Tensor]
        One gradient slot per producer.
    internal_tensor_map : Mapping[str, Tensor], optional
        Scratch tensors.
    batch_size : int
        Number of samples per execution.

    Notes
    -----
    `input_unit_ids` and `output_unit_ids` are the graph edges of this unit.
    They follow the insertion order of the maps above.
    """

    UNIT_TYPE: ClassVar[UnitType]

    def __init__(
        self,
        unit_id: UnitId,
        forward_input_map: Mapping[UnitId, Tensor],
        forward_output: Tensor,
        backward_input_map: Mapping[UnitId, Tensor],
        backward_output_map: Mapping[UnitId, Tensor],
        internal_tensor_map: Optional[Mapping[str, Tensor]] = None,
        batch_size: int = 1,
    ) -> None:
        if set(forward_input_map) != set(backward_output_map):
            raise ConfigurationError(
                "forward inputs and backward outputs must name the same producers",
                unit_id.name,
            )
        self.unit_id = unit_id
        self.state = UnitState()
        self.batch_size = int(batch_size)
        self.forward_input_map: Dict[UnitId, Tensor] = dict(forward_input_map)
        self.forward_output = forward_output
        self.backward_input_map: Dict[UnitId, Tensor] = dict(backward_input_map)
        self.backward_output_map: Dict[UnitId, Tensor] = dict(backward_output_map)
        self.internal_tensor_map: Dict[str, Tensor] = dict(internal_tensor_map or {})
        self.input_unit_ids: List[UnitId] = list(self.forward_input_map)
        self.output_unit_ids: List[UnitId] = list(self.backward_input_map)

    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        return self.unit_id.name

    @property
    def type(self) -> UnitType:
        return self.unit_id.type

    @property
    def generation(self) -> int:
        return self.state.generation

    @property
    def output_shape(self) -> Shape:
        return self.forward_output.shape

    # ------------------------------------------------------------------
    @classmethod
    @abstractmethod
    def create_unit(
        cls,
        metadata: UnitMetaData,
        output_unit_ids: Iterable[UnitId],
        optimizer: Optional[IOptimizer] = None,
    ) -> "ComputableUnit":
        """
        Allocate and wire a unit from its metadata.

        Parameters
        ----------
        metadata : UnitMetaData
            Construction bundle produced by the front end.
        output_unit_ids : Iterable[UnitId]
            Consumers of this unit, resolved by the graph at compile time.
        optimizer : Optional[IOptimizer]
            Optimizer for trainable units; ignored by the others.

        Raises
        ------
        ConfigurationError
            If the shapes in `metadata` are inconsistent.
        """

    @abstractmethod
    def forward(self) -> None:
        """Compute `forward_output` from the forward inputs."""

    @abstractmethod
    def backward(self) -> None:
        """Compute `backward_output_map` from the backward inputs."""

    # ------------------------------------------------------------------
    def _sum_backward_inputs(self, out: Tensor) -> Tensor:
        """Write the sum of every consumer's gradient into `out`."""
        matrix_cpu.accumulate(list(self.backward_input_map.values()), out)
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.unit_id}, {self.state!r})"


class TrainableUnit(ComputableUnit):
    """
    A unit owning trainable tensors.

    `backward` implementations stage gradients in `gradient_tensor_map`
    (same keys as `trainable_tensor_map`) and then call `apply_gradients`,
    which hands both maps to the optimizer, if one is attached.
    """

    def __init__(
        self,
        unit_id: UnitId,
        forward_input_map: Mapping[UnitId, Tensor],
        forward_output: Tensor,
        backward_input_map: Mapping[UnitId, Tensor],
        backward_output_map: Mapping[UnitId, Tensor],
        trainable_tensor_map: Mapping[str, Tensor],
        internal_tensor_map: Optional[Mapping[str, Tensor]] = None,
        optimizer: Optional[IOptimizer] = None,
        batch_size: int = 1,
    ) -> None:
        super().__init__(
            unit_id,
            forward_input_map,
            forward_output,
            backward_input_map,
            backward_output_map,
            internal_tensor_map,
            batch_size,
        )
        self.trainable_tensor_map: Dict[str, Tensor] = dict(trainable_tensor_map)
        self.gradient_tensor_map: Dict[str, Tensor] = {
            name: Tensor(t.shape, t.batch_size, t.device, t.dtype)
            for name, t in self.trainable_tensor_map.items()
        }
        self.optimizer = optimizer

    def apply_gradients(self) -> None:
        if self.optimizer is not None:
            self.optimizer.optimize(self.trainable_tensor_map, self.gradient_tensor_map)


# ----------------------------------------------------------------------
# allocation helpers shared by the factories
# ----------------------------------------------------------------------
def allocate(metadata: UnitMetaData, shape: Shape, batched: bool = True) -> Tensor:
    """Allocate a tensor on the unit's device, batched or single-sample."""
    return Tensor(shape, metadata.batch_size if batched else 1, metadata.device)


def backward_input_slots(
    metadata: UnitMetaData, output_unit_ids: Iterable[UnitId]
) -> Dict[UnitId, Tensor]:
    """One output-shaped gradient slot per consumer."""
    return {
        consumer: allocate(metadata, metadata.output_shape)
        for consumer in output_unit_ids
    }


def initialized(metadata: UnitMetaData, key: str, tensor: Tensor) -> Tensor:
    """Apply the initializer bound to `key` to `tensor` and return it."""
    metadata.initializer(key)(tensor)
    return tensor
