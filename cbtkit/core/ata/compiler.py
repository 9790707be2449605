"""
Constraint compiler: objective and constraint declarations to MILP rows.

The compiler knows items and forms only. Every declaration is scoped by
*form groups* (see ``resolve_form_groups``): a group with one form yields a
row over that form's selection variables, a group with several forms yields
a single row over their sum.

Each ``add_*`` call resolves and validates its whole input before it touches
the session, so a rejected declaration leaves no rows behind.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np

from cbtkit.core.ata.coefficients import (
    CoefficientSource,
    resolve_bounds,
    resolve_coefficients,
    validate_forms,
)
from cbtkit.core.ata.milp import MILPSession
from cbtkit.core.errors import SpecificationError
from cbtkit.core.irt.model import ResponseModel, ThreePLModel
from cbtkit.models.pool import ItemPool

logger = logging.getLogger(__name__)

FormGroups = Sequence[Sequence[int]]

OBJECTIVE_MODES = ("max", "min")


class ConstraintCompiler:
    """Builds rows for one MILPSession over one pool."""

    def __init__(
        self,
        pool: ItemPool,
        session: MILPSession,
        model: Optional[ResponseModel] = None,
    ):
        if len(pool) != session.n_items:
            raise SpecificationError(
                "Session was sized for a different pool",
                context={"pool": len(pool), "session": session.n_items},
            )
        self.pool = pool
        self.session = session
        self.model = model or ThreePLModel()

    @property
    def n_forms(self) -> int:
        return self.session.n_forms

    # ---- helpers -----------------------------------------------------------

    def _coefficients(self, coef: CoefficientSource, level: Any = None) -> np.ndarray:
        return resolve_coefficients(self.pool, coef, level=level, model=self.model)

    def _check_groups(self, groups: FormGroups) -> List[List[int]]:
        checked = [[int(f) for f in group] for group in groups]
        if not checked:
            raise SpecificationError("No target forms given")
        for group in checked:
            validate_forms(group, self.n_forms)
        return checked

    def _check_items(self, item_indices: Sequence[int]) -> np.ndarray:
        items = np.asarray(list(item_indices), dtype=int)
        if items.size == 0:
            raise SpecificationError("Item list is empty")
        if np.unique(items).size != items.size:
            raise SpecificationError("Item list has duplicates", context={"items": items.tolist()})
        bad = items[(items < 0) | (items >= len(self.pool))]
        if bad.size:
            raise SpecificationError(
                "Item index out of range",
                context={"items": bad.tolist(), "n_items": len(self.pool)},
            )
        return items

    def _group_terms(
        self, coefficients: np.ndarray, group: Sequence[int]
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Columns and coefficients of ``sum_{f in group} coef . x_f``."""
        columns = np.concatenate([self.session.selection_indices(f) for f in group])
        return columns, np.tile(coefficients, len(group))

    # ---- objectives --------------------------------------------------------

    def add_relative_objective(
        self,
        coef: CoefficientSource,
        groups: FormGroups,
        mode: str = "max",
        negative: bool = False,
        flatten: Optional[float] = None,
        level: Any = None,
    ) -> int:
        """
        Add a maximin/minimax objective and return the index of its ``y``.

        For every coefficient row and group, ``sum c.x`` is tied to one shared
        ``y >= 0``:

            max            sum c.x - y >= 0   maximize y
            max, negative  sum c.x + y >= 0   minimize y
            min            sum c.x - y <= 0   minimize y
            min, negative  sum c.x + y <= 0   maximize y

        ``negative`` is the caller's statement that the optimized values lie
        below zero. ``flatten`` adds the opposite bound at that distance, so
        every row stays within a band of width ``flatten``.
        """
        if mode not in OBJECTIVE_MODES:
            raise SpecificationError(
                "Objective mode must be 'max' or 'min'", context={"mode": mode}
            )
        if flatten is not None and not flatten >= 0:
            raise SpecificationError("Flatten tolerance must be >= 0", context={"flatten": flatten})
        groups = self._check_groups(groups)
        coefficients = self._coefficients(coef, level)

        sign = 1.0 if negative else -1.0  # coefficient of y in each row
        maximize_y = (mode == "max") != negative
        y = self.session.add_variable(lower=0.0, cost=-1.0 if maximize_y else 1.0)

        band = np.inf if flatten is None else float(flatten)
        for row in coefficients:
            for group in groups:
                columns, values = self._group_terms(row, group)
                columns = np.append(columns, y)
                values = np.append(values, sign)
                if mode == "max":
                    self.session.add_row(columns, values, lower=0.0, upper=band)
                else:
                    self.session.add_row(columns, values, lower=-band, upper=0.0)

        logger.debug(
            f"Relative objective: mode={mode}, negative={negative}, flatten={flatten}, "
            f"{coefficients.shape[0]} rows x {len(groups)} groups"
        )
        return y

    def add_absolute_objective(
        self,
        coef: CoefficientSource,
        targets: Union[float, Sequence[float]],
        groups: FormGroups,
        level: Any = None,
    ) -> List[Tuple[int, int]]:
        """
        Add goal-programming rows ``sum c.x - e+ + e- = target``.

        ``targets`` is one value or one value per coefficient row. Both slacks
        are non-negative and enter the minimized objective with weight 1.

        Returns:
            ``(e_plus, e_minus)`` variable indices per row and group.
        """
        groups = self._check_groups(groups)
        coefficients = self._coefficients(coef, level)
        target_values = np.atleast_1d(np.asarray(targets, dtype=float))
        if target_values.size == 1:
            target_values = np.repeat(target_values, coefficients.shape[0])
        if target_values.size != coefficients.shape[0]:
            raise SpecificationError(
                "One target per coefficient row is required",
                context={"targets": target_values.size, "rows": coefficients.shape[0]},
            )
        if not np.all(np.isfinite(target_values)):
            raise SpecificationError("Targets must be finite")

        slacks = []
        for row, target in zip(coefficients, target_values):
            for group in groups:
                e_plus = self.session.add_variable(lower=0.0, cost=1.0)
                e_minus = self.session.add_variable(lower=0.0, cost=1.0)
                columns, values = self._group_terms(row, group)
                self.session.add_row(
                    np.append(columns, [e_plus, e_minus]),
                    np.append(values, [-1.0, 1.0]),
                    lower=target,
                    upper=target,
                )
                slacks.append((e_plus, e_minus))
        return slacks

    # ---- constraints -------------------------------------------------------

    def add_constraint(
        self,
        coef: CoefficientSource,
        groups: FormGroups,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
        level: Any = None,
    ) -> List[int]:
        """One ``lower <= sum c.x <= upper`` row per coefficient row and group."""
        lb, ub = resolve_bounds(lower, upper)
        groups = self._check_groups(groups)
        coefficients = self._coefficients(coef, level)

        rows = []
        for row in coefficients:
            for group in groups:
                columns, values = self._group_terms(row, group)
                rows.append(self.session.add_row(columns, values, lower=lb, upper=ub))
        return rows

    def add_difference_constraint(
        self,
        coef: CoefficientSource,
        form_a: int,
        form_b: int,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
        level: Any = None,
    ) -> List[int]:
        """Bound ``c.x_a - c.x_b`` for every coefficient row."""
        lb, ub = resolve_bounds(lower, upper)
        validate_forms([form_a, form_b], self.n_forms)
        coefficients = self._coefficients(coef, level)

        columns = np.concatenate(
            [self.session.selection_indices(form_a), self.session.selection_indices(form_b)]
        )
        rows = []
        for row in coefficients:
            values = np.concatenate([row, -row])
            rows.append(self.session.add_row(columns, values, lower=lb, upper=ub))
        return rows

    def add_enemy_set(self, item_indices: Sequence[int], forms: Sequence[int]) -> List[int]:
        """At most one member of the set on each form."""
        items = self._check_items(item_indices)
        validate_forms(list(forms), self.n_forms)
        rows = []
        for f in forms:
            columns = [self.session.selection_index(i, f) for i in items]
            rows.append(self.session.add_row(columns, np.ones(len(columns)), upper=1.0))
        return rows

    def add_item_set(self, item_indices: Sequence[int], forms: Sequence[int]) -> List[int]:
        """Members of the set are selected together on each form (testlet cohesion)."""
        items = self._check_items(item_indices)
        validate_forms(list(forms), self.n_forms)
        rows = []
        for f in forms:
            anchor = self.session.selection_index(items[0], f)
            for i in items[1:]:
                rows.append(
                    self.session.add_row(
                        [anchor, self.session.selection_index(i, f)], [1.0, -1.0], 0.0, 0.0
                    )
                )
        return rows

    def add_item_use(
        self,
        item_indices: Sequence[int],
        groups: FormGroups,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
    ) -> List[int]:
        """Bound how many forms of each group an item is selected on."""
        lb, ub = resolve_bounds(lower, upper)
        items = self._check_items(item_indices)
        groups = self._check_groups(groups)
        rows = []
        for group in groups:
            for i in items:
                columns = [self.session.selection_index(i, f) for f in group]
                rows.append(self.session.add_row(columns, np.ones(len(columns)), lb, ub))
        return rows

    def add_fixed_value(
        self,
        item_indices: Sequence[int],
        forms: Sequence[int],
        lower: float = 1.0,
        upper: float = 1.0,
    ) -> None:
        """
        Bound selection variables directly.

        ``lower=upper=1`` forces items onto the forms, ``lower=upper=0``
        keeps them off.
        """
        if lower not in (0, 1) or upper not in (0, 1) or lower > upper:
            raise SpecificationError(
                "Fixed values must be 0/1 with lower <= upper",
                context={"min": lower, "max": upper},
            )
        items = self._check_items(item_indices)
        validate_forms(list(forms), self.n_forms)

        indices = [self.session.selection_index(i, f) for f in forms for i in items]
        for index in indices:
            current_lower, current_upper = self.session.bounds_of(index)
            if max(current_lower, lower) > min(current_upper, upper):
                raise SpecificationError(
                    "Fixed value conflicts with an earlier fixed value",
                    context={"variable": index, "min": lower, "max": upper},
                )
        for index in indices:
            self.session.set_bounds(index, lower, upper)
