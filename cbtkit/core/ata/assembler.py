"""
AssemblyEngine: single-pass automated test assembly (ATA).

Wraps a MILPSession and a ConstraintCompiler behind item-id based
declarations scoped by form lists:

    engine = AssemblyEngine(pool, n_forms=6, test_length=10, max_select=1)
    engine.add_relative_objective("b", mode="max")
    engine.add_constraint("content", lower=2, level="algebra")
    result = engine.solve(time_limit=30)
    if result.success:
        forms = engine.items()

Every declaration is validated in full before any row is added. Solving
again after further declarations extends the same MILP.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from cbtkit.core.ata.coefficients import CoefficientSource, resolve_coefficients, resolve_form_groups
from cbtkit.core.ata.compiler import ConstraintCompiler
from cbtkit.core.ata.milp import MILPSession, SolveResult
from cbtkit.core.errors import AssemblyNotSolvedError, SpecificationError
from cbtkit.core.irt.model import ResponseModel
from cbtkit.models.pool import ItemId, ItemPool

logger = logging.getLogger(__name__)

LengthSpec = Union[int, Tuple[int, int]]


class AssemblyEngine:
    """
    Assemble ``n_forms`` forms from one pool in a single MILP.

    Args:
        pool: Item pool.
        n_forms: Number of forms (one selection column each).
        test_length: Items per form, either exact or a ``(min, max)`` pair.
            ``None`` leaves length to explicit constraints.
        max_select: Maximum number of forms any item may appear on.
        model: Response model for information coefficients.
    """

    def __init__(
        self,
        pool: ItemPool,
        n_forms: int = 1,
        test_length: Optional[LengthSpec] = None,
        max_select: Optional[int] = None,
        model: Optional[ResponseModel] = None,
    ):
        self.pool = pool
        self.session = MILPSession(len(pool), n_forms)
        self.compiler = ConstraintCompiler(pool, self.session, model)
        self.model = self.compiler.model
        self._result: Optional[SolveResult] = None

        if test_length is not None:
            lower, upper = length_bounds(test_length)
            self.compiler.add_constraint(
                1, resolve_form_groups(None, n_forms), lower=lower, upper=upper
            )
        if max_select is not None:
            self.add_max_select(max_select)

    @property
    def n_forms(self) -> int:
        return self.session.n_forms

    def __repr__(self) -> str:
        status = self._result.status.value if self._result else "unsolved"
        return f"AssemblyEngine(n_items={len(self.pool)}, n_forms={self.n_forms}, status={status})"

    def _groups(self, forms: Optional[Sequence[int]], collapse: bool) -> List[List[int]]:
        return resolve_form_groups(forms, self.n_forms, collapse)

    def _forms(self, forms: Optional[Sequence[int]]) -> List[int]:
        return self._groups(forms, collapse=True)[0]

    # ---- objectives --------------------------------------------------------

    def add_relative_objective(
        self,
        coef: CoefficientSource,
        mode: str = "max",
        negative: bool = False,
        flatten: Optional[float] = None,
        forms: Optional[Sequence[int]] = None,
        collapse: bool = False,
        level: Any = None,
    ) -> "AssemblyEngine":
        """Maximin (``mode="max"``) or minimax (``mode="min"``) over the target forms."""
        self.compiler.add_relative_objective(
            coef,
            self._groups(forms, collapse),
            mode=mode,
            negative=negative,
            flatten=flatten,
            level=level,
        )
        return self

    def add_absolute_objective(
        self,
        coef: CoefficientSource,
        target: Union[float, Sequence[float]],
        forms: Optional[Sequence[int]] = None,
        collapse: bool = False,
        level: Any = None,
    ) -> "AssemblyEngine":
        """Minimize the total absolute deviation from ``target`` on the target forms."""
        self.compiler.add_absolute_objective(coef, target, self._groups(forms, collapse), level=level)
        return self

    # ---- constraints -------------------------------------------------------

    def add_constraint(
        self,
        coef: CoefficientSource,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
        level: Any = None,
        forms: Optional[Sequence[int]] = None,
        collapse: bool = False,
    ) -> "AssemblyEngine":
        """
        Bound ``sum coef.x`` on every target form (or their sum when collapsed).

        With a categorical attribute and ``level``, the row counts the items at
        that level; ``lower == upper`` gives an equality.
        """
        self.compiler.add_constraint(
            coef, self._groups(forms, collapse), lower=lower, upper=upper, level=level
        )
        return self

    def add_enemy_set(
        self, item_ids: Iterable[ItemId], forms: Optional[Sequence[int]] = None
    ) -> "AssemblyEngine":
        """No two of these items on the same form."""
        self.compiler.add_enemy_set(self.pool.indices_of(item_ids), self._forms(forms))
        return self

    def add_enemy_groups(
        self, attribute: str, forms: Optional[Sequence[int]] = None
    ) -> "AssemblyEngine":
        """One enemy set per level of a categorical attribute (e.g. ``"enemy"``)."""
        for members in self.pool.groups(attribute).values():
            if len(members) > 1:
                self.compiler.add_enemy_set(members, self._forms(forms))
        return self

    def add_item_set(
        self, item_ids: Iterable[ItemId], forms: Optional[Sequence[int]] = None
    ) -> "AssemblyEngine":
        """Select these items together or not at all on each form."""
        self.compiler.add_item_set(self.pool.indices_of(item_ids), self._forms(forms))
        return self

    def add_item_sets(
        self, attribute: str, forms: Optional[Sequence[int]] = None
    ) -> "AssemblyEngine":
        """One item set per level of a categorical attribute (e.g. ``"set_id"``)."""
        for members in self.pool.groups(attribute).values():
            if len(members) > 1:
                self.compiler.add_item_set(members, self._forms(forms))
        return self

    def add_fixed_value(
        self,
        item_ids: Iterable[ItemId],
        lower: int = 1,
        upper: int = 1,
        forms: Optional[Sequence[int]] = None,
    ) -> "AssemblyEngine":
        """Force items onto (1, 1) or off (0, 0) the target forms."""
        self.compiler.add_fixed_value(
            self.pool.indices_of(item_ids), self._forms(forms), lower=lower, upper=upper
        )
        return self

    def add_max_select(
        self, value: int, item_ids: Optional[Iterable[ItemId]] = None
    ) -> "AssemblyEngine":
        """Each listed item (default: every item) appears on at most ``value`` forms."""
        if value < 0:
            raise SpecificationError("max_select must be >= 0", context={"max_select": value})
        indices = range(len(self.pool)) if item_ids is None else self.pool.indices_of(item_ids)
        if value >= self.n_forms:
            return self
        self.compiler.add_item_use(list(indices), self._groups(None, collapse=True), upper=value)
        return self

    def add_item_use(
        self,
        item_ids: Iterable[ItemId],
        lower: Optional[int] = None,
        upper: Optional[int] = None,
        forms: Optional[Sequence[int]] = None,
    ) -> "AssemblyEngine":
        """Bound how many of the target forms each item appears on."""
        self.compiler.add_item_use(
            self.pool.indices_of(item_ids), self._groups(forms, collapse=True), lower, upper
        )
        return self

    # ---- solve & read back -------------------------------------------------

    def solve(
        self,
        time_limit: Optional[float] = None,
        gap: Optional[float] = None,
        verbose: Optional[bool] = None,
    ) -> SolveResult:
        """
        Solve every declaration made so far.

        The status must be checked before reading items: infeasible and
        timed-out solves leave no assignment.
        """
        result = self.session.solve(time_limit=time_limit, gap=gap, verbose=verbose)
        self._result = result
        if result.success:
            logger.info(
                f"Assembled {self.n_forms} forms, lengths={self.selection.sum(axis=0).tolist()}",
                extra={"status": result.status.value, "n_forms": self.n_forms},
            )
        return result

    @property
    def result(self) -> Optional[SolveResult]:
        return self._result

    def _solved(self) -> SolveResult:
        if self._result is None:
            raise AssemblyNotSolvedError("Assembly has not been solved")
        if not self._result.success:
            raise AssemblyNotSolvedError(
                "Last solve produced no assignment", context={"status": self._result.status.value}
            )
        return self._result

    @property
    def selection(self) -> np.ndarray:
        """Realized (n_items, n_forms) boolean assignment of the last solve."""
        return self._solved().selection

    def item_indices(self, form: int) -> List[int]:
        if not 0 <= form < self.n_forms:
            raise SpecificationError(
                "Form out of range", context={"form": form, "n_forms": self.n_forms}
            )
        return np.flatnonzero(self.selection[:, form]).tolist()

    def items(self, form: Optional[int] = None) -> Union[List[ItemId], List[List[ItemId]]]:
        """
        Item ids on one form, or a list per form when ``form`` is None.

        Raises:
            AssemblyNotSolvedError: Unless the last solve found an assignment.
        """
        ids = self.pool.ids
        if form is None:
            return [[ids[i] for i in self.item_indices(f)] for f in range(self.n_forms)]
        return [ids[i] for i in self.item_indices(form)]

    def evaluate(self, coef: CoefficientSource, level: Any = None) -> np.ndarray:
        """Realized ``sum coef.x`` per coefficient row and form, shape (K, n_forms)."""
        coefficients = resolve_coefficients(self.pool, coef, level=level, model=self.model)
        return coefficients @ self.selection.astype(float)


def length_bounds(test_length: LengthSpec) -> Tuple[int, int]:
    if isinstance(test_length, (tuple, list)):
        lower, upper = test_length
    else:
        lower = upper = test_length
    if lower < 0 or lower > upper:
        raise SpecificationError("Invalid test length", context={"test_length": test_length})
    return int(lower), int(upper)


@dataclass(frozen=True)
class ConstraintSpec:
    """
    A declarative constraint row, e.g. one line of a blueprint table.

    ``ConstraintSpec("content", lower=3, level="algebra")`` asks for at least
    three algebra items on each form it is applied to.
    """

    coef: CoefficientSource
    lower: Optional[float] = None
    upper: Optional[float] = None
    level: Any = None

    def apply(
        self,
        engine: AssemblyEngine,
        forms: Optional[Sequence[int]] = None,
        collapse: bool = False,
    ) -> AssemblyEngine:
        return engine.add_constraint(
            self.coef,
            lower=self.lower,
            upper=self.upper,
            level=self.level,
            forms=forms,
            collapse=collapse,
        )

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> List["ConstraintSpec"]:
        """
        Read a constraint table.

        Each record has ``attribute`` (or ``coef``), optional ``level``,
        ``min`` and ``max``.
        """
        specs = []
        for record in records:
            coef = record.get("attribute", record.get("coef"))
            if coef is None:
                raise SpecificationError(
                    "Constraint record needs an attribute or coef", context={"record": dict(record)}
                )
            specs.append(
                cls(coef=coef, lower=record.get("min"), upper=record.get("max"), level=record.get("level"))
            )
        return specs
