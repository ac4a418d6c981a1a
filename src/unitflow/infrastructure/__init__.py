"""
NumPy CPU implementation of the graph engine: tensors, primitives, units,
scheduler and front end.
"""

from .tensor import Tensor
from .units import (
    UnitMetaData,
    ComputableUnit,
    TrainableUnit,
    PlaceHolderUnit,
    ConstantUnit,
    DenseUnit,
    Convolution2DUnit,
    ReLUUnit,
    SigmoidUnit,
    AddUnit,
    MSELossUnit,
)
from .graph import Phase, SchedulerConfig, UnitManager
from .optimizers import SGD, create_optimizer
from .utils.weight_initializer import (
    WeightInitializer,
    ConstantInitializer,
    ArrayInitializer,
)
from .frontend import Model, SymbolicTensor

__all__ = [
    "Tensor",
    "UnitMetaData",
    "ComputableUnit",
    "TrainableUnit",
    "PlaceHolderUnit",
    "ConstantUnit",
    "DenseUnit",
    "Convolution2DUnit",
    "ReLUUnit",
    "SigmoidUnit",
    "AddUnit",
    "MSELossUnit",
    "Phase",
    "SchedulerConfig",
    "UnitManager",
    "SGD",
    "create_optimizer",
    "WeightInitializer",
    "ConstantInitializer",
    "ArrayInitializer",
    "Model",
    "SymbolicTensor",
]
