"""
Coefficient resolution and scope mapping for the constraint compiler.

Both steps run before any row is built, and both are pure:

* ``resolve_coefficients`` turns a coefficient source (a constant, a pool
  attribute, raw per-item values or ability points) into a K x N matrix of
  per-item coefficients, one row per resulting linear expression.
* ``resolve_form_groups`` turns a logical scope (a list of forms plus a
  collapse flag) into concrete groups of form indices. A group with several
  forms is summed into one synthetic form before its row is built.
"""

import numbers
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

import numpy as np

from cbtkit.core.errors import SpecificationError
from cbtkit.core.irt.model import ResponseModel, ThreePLModel
from cbtkit.models.pool import ItemPool


@dataclass(frozen=True)
class ThetaPoints:
    """
    Ability points whose item information is used as coefficients.

    A plain sequence whose length differs from the pool size is read as
    ability points too; wrap it in ``ThetaPoints`` when the lengths coincide.
    """

    values: tuple

    def __init__(self, values: Union[float, Sequence[float]]):
        object.__setattr__(
            self, "values", tuple(float(v) for v in np.atleast_1d(np.asarray(values, dtype=float)))
        )


CoefficientSource = Union[float, int, str, Sequence[float], np.ndarray, ThetaPoints]


def resolve_coefficients(
    pool: ItemPool,
    coef: CoefficientSource,
    level: Any = None,
    model: Optional[ResponseModel] = None,
) -> np.ndarray:
    """
    Resolve a coefficient source into a (K, N) coefficient matrix.

    Args:
        pool: The item pool (defines N).
        coef: One of
            - a number: the same coefficient for every item (K = 1);
            - an attribute name: the attribute vector (K = 1). A categorical
              attribute requires ``level`` and yields a 0/1 indicator;
            - a sequence of length N: raw per-item coefficients (K = 1);
            - ``ThetaPoints`` or any other sequence: item information at each
              ability point (K = number of points).
        level: Categorical level filter; only valid with a categorical attribute.
        model: Response model used for information coefficients.

    Raises:
        SpecificationError: For unknown attributes, a missing or misplaced
            level, non-finite coefficients or an empty source.
    """
    n_items = len(pool)

    if isinstance(coef, bool):
        raise SpecificationError("Boolean is not a valid coefficient source")

    if isinstance(coef, numbers.Real):
        if level is not None:
            raise SpecificationError(
                "A level filter requires a categorical attribute", context={"coef": coef}
            )
        return np.full((1, n_items), float(coef))

    if isinstance(coef, str):
        values = pool.attribute(coef)
        if pool.is_categorical(coef):
            if level is None:
                raise SpecificationError(
                    "A level is required for a categorical attribute",
                    context={"attribute": coef, "levels": pool.levels(coef)},
                )
            if level not in pool.levels(coef):
                raise SpecificationError(
                    "Level not present in the pool",
                    context={"attribute": coef, "level": level},
                )
            return np.array([[1.0 if v == level else 0.0 for v in values]])
        if level is not None:
            raise SpecificationError(
                "A level filter is invalid for a numeric attribute",
                context={"attribute": coef, "level": level},
            )
        if np.any(np.isnan(values)):
            raise SpecificationError(
                "Numeric attribute has missing values", context={"attribute": coef}
            )
        return np.asarray(values, dtype=float)[None, :]

    if level is not None:
        raise SpecificationError("A level filter requires a categorical attribute")

    if isinstance(coef, ThetaPoints):
        thetas = np.asarray(coef.values, dtype=float)
    else:
        arr = np.asarray(coef, dtype=float)
        if arr.ndim == 2:
            if arr.shape[1] != n_items:
                raise SpecificationError(
                    "Coefficient matrix must have one column per item",
                    context={"shape": arr.shape, "n_items": n_items},
                )
            return _check_finite(arr)
        arr = np.atleast_1d(arr)
        if arr.size == n_items:
            return _check_finite(arr[None, :])
        thetas = arr

    if thetas.size == 0:
        raise SpecificationError("Coefficient source is empty")
    model = model or ThreePLModel()
    return _check_finite(model.information(thetas, pool))


def _check_finite(matrix: np.ndarray) -> np.ndarray:
    if not np.all(np.isfinite(matrix)):
        raise SpecificationError("Coefficients must be finite")
    return matrix


def resolve_form_groups(
    forms: Optional[Sequence[int]],
    n_forms: int,
    collapse: bool = False,
) -> List[List[int]]:
    """
    Map a logical form scope to concrete groups of form indices.

    Args:
        forms: Target form indices; ``None`` means every form.
        n_forms: Number of forms in the engine.
        collapse: Sum all targets into one synthetic form.

    Returns:
        ``[[f1, f2, ...]]`` when collapsing, ``[[f1], [f2], ...]`` otherwise.

    Raises:
        SpecificationError: On an empty list, duplicates or out-of-range forms.
    """
    targets = list(range(n_forms)) if forms is None else [int(f) for f in forms]
    validate_forms(targets, n_forms)
    if collapse:
        return [targets]
    return [[f] for f in targets]


def validate_forms(forms: Sequence[int], n_forms: int) -> None:
    if len(forms) == 0:
        raise SpecificationError("Target form list is empty")
    if len(set(forms)) != len(forms):
        raise SpecificationError("Target form list has duplicates", context={"forms": list(forms)})
    out_of_range = [f for f in forms if not 0 <= f < n_forms]
    if out_of_range:
        raise SpecificationError(
            "Target form out of range",
            context={"forms": out_of_range, "n_forms": n_forms},
        )


def resolve_bounds(
    lower: Optional[float], upper: Optional[float]
) -> tuple:
    """Map open bounds to infinities and reject inverted ones."""
    lb = -np.inf if lower is None else float(lower)
    ub = np.inf if upper is None else float(upper)
    if np.isnan(lb) or np.isnan(ub):
        raise SpecificationError("Bounds must not be NaN")
    if lb > ub:
        raise SpecificationError("Lower bound exceeds upper bound", context={"min": lower, "max": upper})
    if lower is None and upper is None:
        raise SpecificationError("At least one bound is required")
    return lb, ub
