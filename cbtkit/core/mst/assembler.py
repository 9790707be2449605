"""
MSTAssembler: multistage test assembly over a module/route topology.

Every module of every panel is one form of a single AssemblyEngine, at form
index ``panel * n_modules + module``. Declarations are issued for all panels
at once:

* bottom-up: indices address modules; each module is its own row target.
* top-down: indices address routes; each route is one row target summed over
  its modules (a collapsed form group).

The assembler moves ``designing -> constrained -> assembled``. Routes can
only change while designing; the first declaration freezes them and adds the
rows that keep an item from appearing twice on any route of a panel.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from cbtkit.core.ata.assembler import AssemblyEngine, LengthSpec, length_bounds
from cbtkit.core.ata.coefficients import CoefficientSource, ThetaPoints
from cbtkit.core.ata.milp import SolveResult
from cbtkit.core.errors import AssemblyNotSolvedError, RoutingError, SpecificationError
from cbtkit.core.irt.model import ResponseModel
from cbtkit.core.mst.routes import Route, RouteGraph, RouteRef
from cbtkit.models.pool import ItemId, ItemPool

logger = logging.getLogger(__name__)

ASSEMBLY_METHODS = ("topdown", "bottomup")


class MSTState(str, Enum):
    DESIGNING = "designing"
    CONSTRAINED = "constrained"
    ASSEMBLED = "assembled"


class MSTAssembler:
    """
    Assemble parallel MST panels in one combined solve.

    Args:
        pool: Item pool shared by all panels.
        design: Modules per stage, e.g. ``[1, 2, 2]``.
        n_panels: Number of parallel panels.
        method: ``"topdown"`` (route-level declarations) or ``"bottomup"``
            (module-level declarations).
        module_length: Items per module, exact or ``(min, max)``; ``None``
            leaves length to declarations.
        max_select: Maximum number of modules, across all panels, an item may
            appear in. ``None`` only forbids repeats along a route.
        model: Response model for information coefficients.
    """

    def __init__(
        self,
        pool: ItemPool,
        design: Sequence[int],
        n_panels: int = 1,
        method: str = "topdown",
        module_length: Optional[LengthSpec] = None,
        max_select: Optional[int] = 1,
        model: Optional[ResponseModel] = None,
    ):
        if method not in ASSEMBLY_METHODS:
            raise SpecificationError(
                "Method must be 'topdown' or 'bottomup'", context={"method": method}
            )
        if n_panels <= 0:
            raise SpecificationError("n_panels must be positive", context={"n_panels": n_panels})

        self.pool = pool
        self.method = method
        self.n_panels = n_panels
        self.max_select = max_select
        self.graph = RouteGraph(design)
        self.engine = AssemblyEngine(
            pool,
            n_forms=n_panels * self.graph.n_modules,
            max_select=max_select,
            model=model,
        )
        if module_length is not None:
            lower, upper = length_bounds(module_length)
            self.engine.add_constraint(1, lower=lower, upper=upper)

        self.state = MSTState.DESIGNING
        self._module_items: Optional[List[List[List[ItemId]]]] = None
        logger.info(
            f"MST design {list(self.graph.design)}: {self.graph.n_modules} modules, "
            f"{n_panels} panels, method={method}"
        )

    def __repr__(self) -> str:
        return (
            f"MSTAssembler(design={list(self.graph.design)}, n_panels={self.n_panels}, "
            f"method={self.method}, state={self.state.value})"
        )

    @property
    def n_modules(self) -> int:
        return self.graph.n_modules

    @property
    def routes(self) -> List[Route]:
        return self.graph.routes

    def form_index(self, panel: int, module: int) -> int:
        return panel * self.n_modules + module

    # ---- design ------------------------------------------------------------

    def add_route(self, route: Sequence[int]) -> Route:
        self._require_designing()
        return self.graph.add(route)

    def remove_route(self, route: Sequence[int]) -> Route:
        """Remove a route, e.g. one that jumps from the easiest to the hardest module."""
        self._require_designing()
        removed = self.graph.remove(route)
        logger.debug(f"Removed route {removed}; {len(self.graph)} routes remain")
        return removed

    def _require_designing(self) -> None:
        if self.state is not MSTState.DESIGNING:
            raise RoutingError(
                "Routes are frozen once declarations have been made",
                context={"state": self.state.value},
            )

    def _freeze(self) -> None:
        """
        Leave the designing state, adding per-route item uniqueness rows once.

        Called after a declaration has been accepted; a rejected one leaves
        the routes open for editing.
        """
        if self.state is MSTState.DESIGNING:
            if self.max_select is None or self.max_select > 1:
                items = list(range(len(self.pool)))
                for panel in range(self.n_panels):
                    for route in self.graph:
                        forms = [self.form_index(panel, m) for m in route]
                        self.engine.compiler.add_item_use(items, [forms], upper=1)
        self.state = MSTState.CONSTRAINED

    # ---- scope -------------------------------------------------------------

    def _groups(self, indices: Optional[Sequence[Any]]) -> List[List[int]]:
        """Form groups for module (bottom-up) or route (top-down) indices, over all panels."""
        if self.method == "bottomup":
            return self._module_groups(indices)

        routes = self.graph.routes if indices is None else [self.graph.resolve(r) for r in indices]
        if not routes:
            raise SpecificationError("Route list is empty")
        return [
            [self.form_index(p, m) for m in route] for p in range(self.n_panels) for route in routes
        ]

    def _module_groups(self, modules: Optional[Sequence[int]]) -> List[List[int]]:
        modules = range(self.n_modules) if modules is None else modules
        modules = [self.graph.check_module(int(m)) for m in modules]
        if not modules:
            raise SpecificationError("Module list is empty")
        return [[self.form_index(p, m)] for p in range(self.n_panels) for m in modules]

    # ---- declarations ------------------------------------------------------

    def add_relative_objective(
        self,
        coef: CoefficientSource,
        mode: str = "max",
        negative: bool = False,
        flatten: Optional[float] = None,
        indices: Optional[Sequence[Any]] = None,
        level: Any = None,
    ) -> "MSTAssembler":
        groups = self._groups(indices)
        self.engine.compiler.add_relative_objective(
            coef, groups, mode=mode, negative=negative, flatten=flatten, level=level
        )
        self._freeze()
        return self

    def add_absolute_objective(
        self,
        coef: CoefficientSource,
        target: Union[float, Sequence[float]],
        indices: Optional[Sequence[Any]] = None,
        level: Any = None,
    ) -> "MSTAssembler":
        groups = self._groups(indices)
        self.engine.compiler.add_absolute_objective(coef, target, groups, level=level)
        self._freeze()
        return self

    def add_constraint(
        self,
        coef: CoefficientSource,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
        level: Any = None,
        indices: Optional[Sequence[Any]] = None,
    ) -> "MSTAssembler":
        """
        Bound a module (bottom-up) or route (top-down) property in every panel.

        ``add_constraint(1, 20, 20)`` under top-down makes every route 20
        items long.
        """
        groups = self._groups(indices)
        self.engine.compiler.add_constraint(coef, groups, lower=lower, upper=upper, level=level)
        self._freeze()
        return self

    def add_enemy_set(self, item_ids: Sequence[ItemId]) -> "MSTAssembler":
        """No two of these items on the same route of any panel."""
        members = np.zeros(len(self.pool))
        members[self.pool.indices_of(item_ids)] = 1.0
        groups = [
            [self.form_index(p, m) for m in route]
            for p in range(self.n_panels)
            for route in self.graph
        ]
        self.engine.compiler.add_constraint(members, groups, upper=1)
        self._freeze()
        return self

    def regulate_stage_length(
        self,
        stages: Sequence[int],
        lower: Optional[int] = None,
        upper: Optional[int] = None,
    ) -> "MSTAssembler":
        """Bound the length of every module in the named stages, in every panel."""
        modules = [m for stage in stages for m in self.graph.modules_in_stage(int(stage))]
        groups = self._module_groups(modules)
        self.engine.compiler.add_constraint(1, groups, lower=lower, upper=upper)
        self._freeze()
        return self

    def anchor_routing_point(
        self,
        theta: float,
        modules: Tuple[int, int],
        tolerance: float,
    ) -> "MSTAssembler":
        """
        Keep two modules comparably informative at a routing decision point.

        Adds ``-tolerance <= info_A(theta) - info_B(theta) <= tolerance`` in
        every panel.
        """
        if len(modules) != 2:
            raise SpecificationError("Exactly two modules are anchored", context={"modules": modules})
        if not tolerance >= 0:
            raise SpecificationError("Tolerance must be >= 0", context={"tolerance": tolerance})
        module_a, module_b = (self.graph.check_module(int(m)) for m in modules)
        if module_a == module_b:
            raise RoutingError("Anchored modules must differ", context={"modules": modules})
        for panel in range(self.n_panels):
            self.engine.compiler.add_difference_constraint(
                ThetaPoints(theta),
                self.form_index(panel, module_a),
                self.form_index(panel, module_b),
                lower=-tolerance,
                upper=tolerance,
            )
        self._freeze()
        return self

    def set_minimum_module_information(
        self,
        theta: Union[float, Sequence[float]],
        threshold: float,
        modules: Optional[Sequence[int]] = None,
    ) -> "MSTAssembler":
        """Require at least ``threshold`` information at ``theta`` in each module."""
        groups = self._module_groups(modules)
        self.engine.compiler.add_constraint(ThetaPoints(theta), groups, lower=threshold)
        self._freeze()
        return self

    # ---- solve & read back -------------------------------------------------

    def assemble(
        self,
        time_limit: Optional[float] = None,
        gap: Optional[float] = None,
        verbose: Optional[bool] = None,
    ) -> SolveResult:
        """
        Solve all panels in one MILP.

        On success the per-module items are recorded and the state becomes
        ``assembled``; otherwise the status is returned and the declarations
        are kept.
        """
        self._freeze()
        result = self.engine.solve(time_limit=time_limit, gap=gap, verbose=verbose)
        if not result.success:
            logger.warning(f"MST assembly failed: status={result.status.value}")
            self._module_items = None
            return result

        self._module_items = [
            [self.engine.items(self.form_index(p, m)) for m in range(self.n_modules)]
            for p in range(self.n_panels)
        ]
        self.state = MSTState.ASSEMBLED
        logger.info(
            f"MST assembled: {self.n_panels} panels, {len(self.graph)} routes per panel",
            extra={"status": result.status.value, "n_forms": self.engine.n_forms},
        )
        return result

    def get_items(
        self,
        panel: int,
        module: Optional[int] = None,
        route: Optional[RouteRef] = None,
    ) -> List[ItemId]:
        """
        Items of one module, one route (modules in stage order) or, with
        neither given, the whole panel.

        Raises:
            AssemblyNotSolvedError: Before a successful ``assemble``.
            RoutingError: For an invalid panel, module or a route that is not
                in the design.
        """
        if self.state is not MSTState.ASSEMBLED or self._module_items is None:
            raise AssemblyNotSolvedError(
                "MST has not been assembled", context={"state": self.state.value}
            )
        if not 0 <= panel < self.n_panels:
            raise RoutingError("Panel out of range", context={"panel": panel, "n_panels": self.n_panels})
        if module is not None and route is not None:
            raise SpecificationError("Give a module or a route, not both")

        modules = self._module_items[panel]
        if module is not None:
            return list(modules[self.graph.check_module(module)])
        if route is not None:
            return [item for m in self.graph.resolve(route) for item in modules[m]]
        return [item for items in modules for item in items]

    def route_items(self, panel: int) -> Dict[Route, List[ItemId]]:
        return {route: self.get_items(panel, route=route) for route in self.graph}

    def module_information(self, theta: Union[float, Sequence[float]]) -> np.ndarray:
        """Realized information at ``theta``, shape (n_panels, n_modules, len(theta))."""
        values = self.engine.evaluate(ThetaPoints(theta))
        return values.T.reshape(self.n_panels, self.n_modules, -1)
