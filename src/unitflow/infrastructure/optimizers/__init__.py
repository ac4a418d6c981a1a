"""
Optimizers and the by-name optimizer registry.

`create_optimizer` builds one optimizer instance per trainable unit. The
optimizer spec given to `UnitManager.compile` may be:

- a registered name (``"sgd"``), combined with keyword parameters,
- a zero-argument factory (class or callable) returning an `IOptimizer`,
- ``None``, in which case trainable units are not updated.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ._sgd import SGD

OPTIMIZERS: Dict[str, Callable[..., IOptimizer]] = {
    "sgd": SGD,
}


def create_optimizer(
    spec: Any, params: Optional[Mapping[str, Any]] = None
) -> Optional[IOptimizer]:
    """
    Build a fresh optimizer from `spec`.

    Raises
    ------
    ConfigurationError
        If the name is unknown, the parameters are rejected, or the result
        does not implement `IOptimizer`.
    """
    if spec is None:
        return None
    params = dict(params or {})
    if isinstance(spec, str):
        try:
            factory = OPTIMIZERS[spec.lower()]
        except KeyError:
            raise ConfigurationError(
                f"unknown optimizer {spec!r} (known: {sorted(OPTIMIZERS)})"
            ) from None
    elif callable(spec):
        factory = spec
    else:
        raise ConfigurationError(f"not an optimizer spec: {spec!r}")

    try:
        optimizer = factory(**params)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"cannot build optimizer {spec!r}: {e}") from e
    if not isinstance(optimizer, IOptimizer):
        raise ConfigurationError(f"{optimizer!r} does not implement optimize()")
    return optimizer


__all__ = ["SGD", "OPTIMIZERS", "create_optimizer"]
