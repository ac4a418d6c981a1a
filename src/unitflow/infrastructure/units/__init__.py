"""
Concrete units. Importing this package registers every unit kind.
"""

from ._metadata import UnitMetaData
from ._base import ComputableUnit, TrainableUnit
from ._registry import create_unit, register_unit, registered_unit_types, unit_class
from ._source import PlaceHolderUnit, ConstantUnit
from ._dense import DenseUnit
from ._convolution import Convolution2DUnit
from ._activations import ActivationUnit, ReLUUnit, SigmoidUnit
from ._add import AddUnit
from ._losses import MSELossUnit

__all__ = [
    "UnitMetaData",
    "ComputableUnit",
    "TrainableUnit",
    "create_unit",
    "register_unit",
    "registered_unit_types",
    "unit_class",
    "PlaceHolderUnit",
    "ConstantUnit",
    "DenseUnit",
    "Convolution2DUnit",
    "ActivationUnit",
    "ReLUUnit",
    "SigmoidUnit",
    "AddUnit",
    "MSELossUnit",
]
