"""
Stochastic Gradient Descent.

One `SGD` instance is attached to each trainable unit when the graph is
compiled. `optimize` receives that unit's trainable tensors and the gradients
its backward step staged, and updates the tensors in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ..ops import matrix_cpu
from ..tensor._tensor import Tensor


@dataclass
class SGD:
    """
    Stochastic Gradient Descent optimizer.

    Update rule
    -----------
    For each trainable tensor ``p`` with gradient ``g``:

    - If ``weight_decay > 0`` (classical L2 regularization):
        ``g <- g + weight_decay * p``
    - ``p <- p - lr * g``

    Parameters
    ----------
    lr : float, optional
        Learning rate. Must be positive. Defaults to 1e-3.
    weight_decay : float, optional
        Coupled L2 weight decay coefficient. Must be non-negative.
        Defaults to 0.0.

    Raises
    ------
    ValueError
        If ``lr <= 0`` or ``weight_decay < 0``.
    """

    lr: float = 1e-3
    weight_decay: float = 0.0

    def __post_init__(self) -> None:
        self.lr = float(self.lr)
        self.weight_decay = float(self.weight_decay)
        if self.lr <= 0.0:
            raise ValueError(f"lr must be > 0, got {self.lr}")
        if self.weight_decay < 0.0:
            raise ValueError(f"weight_decay must be >= 0, got {self.weight_decay}")

    def optimize(
        self, trainable: Mapping[str, Tensor], gradients: Mapping[str, Tensor]
    ) -> None:
        """
        Apply one update to every tensor of `trainable` that has a gradient.

        Raises
        ------
        ValueError
            If a gradient's layout differs from its tensor's.
        """
        for name, p in trainable.items():
            g = gradients.get(name)
            if g is None:
                continue
            if g.shape != p.shape or g.batch_size != p.batch_size:
                raise ValueError(
                    f"gradient for {name!r} has layout {g.shape} x {g.batch_size}, "
                    f"tensor has {p.shape} x {p.batch_size}"
                )

            step = g
            if self.weight_decay != 0.0:
                step = g.clone()
                decay = p.clone()
                matrix_cpu.scale(p, self.weight_decay, decay)
                matrix_cpu.add(g, decay, step)

            update = p.clone()
            matrix_cpu.scale(step, self.lr, update)
            matrix_cpu.subtract(p, update, p)
