"""
Domain-level optimizer contract.

The graph engine does not implement weight-update math. A trainable unit
exposes its named trainable tensors together with the gradients staged by its
last backward step, and hands both mappings to an `IOptimizer`. The optimizer
updates the trainable tensors in place and returns nothing.

Notes
-----
- The contract is backend-agnostic and does not mention NumPy.
- One optimizer instance is attached per trainable unit, so stateful
  optimizers may keep per-tensor state keyed by tensor name.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable


@runtime_checkable
class IOptimizer(Protocol):
    """
    Optimizer interface contract.

    Required methods
    ----------------
    - `optimize(trainable, gradients)` applies one update in place.
    """

    def optimize(
        self, trainable: Mapping[str, Any], gradients: Mapping[str, Any]
    ) -> None:
        """
        Update `trainable` tensors in place from `gradients`.

        Parameters
        ----------
        trainable : Mapping[str, Any]
            Named trainable tensors of one unit (e.g. "weight", "bias").
        gradients : Mapping[str, Any]
            Gradients for the same names. Names missing from this mapping
            must be left untouched.
        """
        ...
