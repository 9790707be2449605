"""
MILP session: variable space, rows and the solver call.

The session owns a block of binary selection variables laid out as
``x[f * n_items + i]`` (item ``i`` on form ``f``) followed by any auxiliary
continuous variables the compiler appends (maximin ``y``, goal-programming
slacks). Rows are accumulated as sparse triplets and handed to HiGHS through
``scipy.optimize.milp`` in one call. The objective is always minimized
internally; callers that maximize a variable give it a negative cost.

A solve never raises for infeasibility or a timeout. Those come back as a
``SolveStatus`` and the session keeps every declared row, so it can be
inspected or extended and solved again.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp
from scipy.sparse import csr_matrix

from cbtkit.core.config import settings
from cbtkit.core.errors import SolverError, SpecificationError

logger = logging.getLogger(__name__)

# scipy.optimize.milp status codes
_SCIPY_OPTIMAL = 0
_SCIPY_LIMIT_REACHED = 1
_SCIPY_INFEASIBLE = 2
_SCIPY_UNBOUNDED = 3
_SCIPY_OTHER = 4

# Selection variables are binary; values above this are read as selected
SELECTION_THRESHOLD = 0.5


class SolveStatus(str, Enum):
    """Terminal outcome of a solve."""

    OPTIMAL = "optimal"
    SUBOPTIMAL = "suboptimal"  # feasible, stopped at the time limit
    INFEASIBLE = "infeasible"
    TIMEOUT = "timeout"  # time limit reached before any feasible solution

    @property
    def has_solution(self) -> bool:
        return self in (SolveStatus.OPTIMAL, SolveStatus.SUBOPTIMAL)


@dataclass
class SolveResult:
    """
    Outcome of one solve.

    ``objective`` is the internal (minimized) objective value; ``selection``
    is the realized (n_items, n_forms) boolean matrix. Both are None when the
    status carries no solution.
    """

    status: SolveStatus
    objective: Optional[float]
    selection: Optional[np.ndarray]
    values: Optional[np.ndarray]
    duration_ms: float
    message: str = ""
    mip_gap: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.status.has_solution


class MILPSession:
    """Accumulates variables, bounds, objective terms and rows for one MILP."""

    def __init__(self, n_items: int, n_forms: int):
        if n_items <= 0:
            raise SpecificationError("Pool is empty", context={"n_items": n_items})
        if n_forms <= 0:
            raise SpecificationError("Form count must be positive", context={"n_forms": n_forms})
        self.n_items = n_items
        self.n_forms = n_forms
        n_selection = n_items * n_forms

        self._lower: List[float] = [0.0] * n_selection
        self._upper: List[float] = [1.0] * n_selection
        self._integer: List[bool] = [True] * n_selection
        self._cost: List[float] = [0.0] * n_selection

        self._row_index: List[int] = []
        self._col_index: List[int] = []
        self._data: List[float] = []
        self._row_lower: List[float] = []
        self._row_upper: List[float] = []

    def __repr__(self) -> str:
        return (
            f"MILPSession(n_items={self.n_items}, n_forms={self.n_forms}, "
            f"n_variables={self.n_variables}, n_rows={self.n_rows})"
        )

    @property
    def n_variables(self) -> int:
        return len(self._lower)

    @property
    def n_rows(self) -> int:
        return len(self._row_lower)

    # ---- variables ---------------------------------------------------------

    def selection_index(self, item: int, form: int) -> int:
        """Flat variable index of ``x[item, form]``."""
        return form * self.n_items + item

    def selection_indices(self, form: int) -> np.ndarray:
        """Variable indices of every item on one form."""
        start = form * self.n_items
        return np.arange(start, start + self.n_items)

    def add_variable(
        self,
        lower: float = 0.0,
        upper: float = np.inf,
        integer: bool = False,
        cost: float = 0.0,
    ) -> int:
        """Append an auxiliary variable and return its index."""
        self._lower.append(float(lower))
        self._upper.append(float(upper))
        self._integer.append(integer)
        self._cost.append(float(cost))
        return len(self._lower) - 1

    def set_bounds(self, index: int, lower: float, upper: float) -> None:
        """Tighten a variable's bounds to the intersection with [lower, upper]."""
        self._lower[index] = max(self._lower[index], float(lower))
        self._upper[index] = min(self._upper[index], float(upper))

    def bounds_of(self, index: int) -> tuple:
        return self._lower[index], self._upper[index]

    def add_cost(self, index: int, cost: float) -> None:
        """Add to a variable's (minimized) objective coefficient."""
        self._cost[index] += float(cost)

    # ---- rows --------------------------------------------------------------

    def add_row(
        self,
        columns: Sequence[int],
        coefficients: Sequence[float],
        lower: float = -np.inf,
        upper: float = np.inf,
    ) -> int:
        """
        Append ``lower <= sum(coef * x[col]) <= upper`` and return its index.

        Repeated columns are summed. Zero coefficients are dropped.
        """
        columns = np.asarray(columns, dtype=int)
        coefficients = np.asarray(coefficients, dtype=float)
        if columns.shape != coefficients.shape:
            raise SpecificationError(
                "Row columns and coefficients differ in length",
                context={"columns": columns.shape, "coefficients": coefficients.shape},
            )
        row = self.n_rows
        keep = coefficients != 0.0
        self._row_index.extend([row] * int(keep.sum()))
        self._col_index.extend(columns[keep].tolist())
        self._data.extend(coefficients[keep].tolist())
        self._row_lower.append(float(lower))
        self._row_upper.append(float(upper))
        return row

    # ---- solve -------------------------------------------------------------

    def solve(
        self,
        time_limit: Optional[float] = None,
        gap: Optional[float] = None,
        verbose: Optional[bool] = None,
    ) -> SolveResult:
        """
        Solve the accumulated program once.

        Args:
            time_limit: Wall-clock budget in seconds (default SOLVER_TIME_LIMIT).
            gap: Relative MIP gap (default SOLVER_MIP_GAP).
            verbose: Print HiGHS progress (default SOLVER_VERBOSE).

        Returns:
            SolveResult with status OPTIMAL, SUBOPTIMAL, INFEASIBLE or TIMEOUT.

        Raises:
            SolverError: If the solver reports an unbounded program or a
                failure that is neither a solution nor an infeasibility proof.
        """
        time_limit = settings.SOLVER_TIME_LIMIT if time_limit is None else time_limit
        gap = settings.SOLVER_MIP_GAP if gap is None else gap
        verbose = settings.SOLVER_VERBOSE if verbose is None else verbose

        n_vars = self.n_variables
        constraints = None
        if self.n_rows:
            matrix = csr_matrix(
                (self._data, (self._row_index, self._col_index)),
                shape=(self.n_rows, n_vars),
            )
            constraints = LinearConstraint(matrix, self._row_lower, self._row_upper)

        logger.info(
            f"Solving MILP: {n_vars} variables, {self.n_rows} rows, "
            f"time_limit={time_limit}s, gap={gap}",
            extra={"n_variables": n_vars, "n_rows": self.n_rows, "n_forms": self.n_forms},
        )

        start = time.perf_counter()
        res = milp(
            c=np.asarray(self._cost),
            integrality=np.asarray(self._integer, dtype=int),
            bounds=Bounds(self._lower, self._upper),
            constraints=constraints,
            options={"time_limit": time_limit, "mip_rel_gap": gap, "disp": verbose},
        )
        duration_ms = (time.perf_counter() - start) * 1000

        status = self._map_status(res)
        result = SolveResult(
            status=status,
            objective=float(res.fun) if status.has_solution else None,
            selection=self._selection_from(res.x) if status.has_solution else None,
            values=np.asarray(res.x) if status.has_solution else None,
            duration_ms=duration_ms,
            message=str(res.message),
            mip_gap=getattr(res, "mip_gap", None),
        )

        log = logger.info if status.has_solution else logger.warning
        log(
            f"MILP solve finished: status={status.value}, objective={result.objective}, "
            f"duration={duration_ms:.0f}ms",
            extra={"status": status.value, "duration_ms": round(duration_ms, 1)},
        )
        return result

    @staticmethod
    def _map_status(res) -> SolveStatus:
        if res.status == _SCIPY_OPTIMAL:
            return SolveStatus.OPTIMAL
        if res.status == _SCIPY_LIMIT_REACHED:
            return SolveStatus.SUBOPTIMAL if res.x is not None else SolveStatus.TIMEOUT
        if res.status == _SCIPY_INFEASIBLE:
            return SolveStatus.INFEASIBLE
        # HiGHS presolve may only prove "unbounded or infeasible"; every
        # selection variable is bounded, so this is an infeasibility.
        if res.status == _SCIPY_OTHER and "infeasible" in str(res.message).lower():
            return SolveStatus.INFEASIBLE
        raise SolverError(
            "Solver returned neither a solution nor an infeasibility proof",
            context={"scipy_status": res.status, "message": res.message},
        )

    def _selection_from(self, x: np.ndarray) -> np.ndarray:
        n_selection = self.n_items * self.n_forms
        block = np.asarray(x[:n_selection]).reshape(self.n_forms, self.n_items)
        return (block > SELECTION_THRESHOLD).T
