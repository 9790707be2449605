"""
Route graph for a multistage design.

A design such as ``[1, 2, 2]`` numbers its modules sequentially across
stages (stage 0: module 0; stage 1: modules 1-2; stage 2: modules 3-4). A
route picks one module per stage and is stored as a tuple of module
indices. The graph keeps the permitted route set plus, per module, a count
of routes using each edge to a next-stage module, so edge checks are O(1)
and stay consistent with the route set.
"""

import itertools
from collections import Counter
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from cbtkit.core.errors import RoutingError, SpecificationError

Route = Tuple[int, ...]
RouteRef = Union[int, Sequence[int]]


class RouteGraph:
    """Permitted routes through a stage/module design."""

    def __init__(self, design: Sequence[int], routes: Optional[Sequence[Sequence[int]]] = None):
        design = [int(n) for n in design]
        if not design or any(n <= 0 for n in design):
            raise SpecificationError(
                "Design must list a positive module count per stage", context={"design": design}
            )
        self.design: Tuple[int, ...] = tuple(design)

        self._stage_modules: List[Tuple[int, ...]] = []
        self._module_stage: List[int] = []
        start = 0
        for stage, count in enumerate(self.design):
            self._stage_modules.append(tuple(range(start, start + count)))
            self._module_stage.extend([stage] * count)
            start += count

        self._routes: List[Route] = []
        self._route_set: Set[Route] = set()
        self._successors: List[Counter] = [Counter() for _ in self._module_stage]

        initial = itertools.product(*self._stage_modules) if routes is None else routes
        for route in initial:
            self.add(route)

    def __repr__(self) -> str:
        return f"RouteGraph(design={list(self.design)}, n_routes={len(self)})"

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def __contains__(self, route: object) -> bool:
        try:
            return tuple(route) in self._route_set
        except TypeError:
            return False

    @property
    def n_stages(self) -> int:
        return len(self.design)

    @property
    def n_modules(self) -> int:
        return len(self._module_stage)

    @property
    def routes(self) -> List[Route]:
        return list(self._routes)

    def modules_in_stage(self, stage: int) -> Tuple[int, ...]:
        if not 0 <= stage < self.n_stages:
            raise RoutingError("Stage out of range", context={"stage": stage, "n_stages": self.n_stages})
        return self._stage_modules[stage]

    def stage_of(self, module: int) -> int:
        self.check_module(module)
        return self._module_stage[module]

    def check_module(self, module: int) -> int:
        if not 0 <= module < self.n_modules:
            raise RoutingError(
                "Module out of range", context={"module": module, "n_modules": self.n_modules}
            )
        return module

    def successors(self, module: int) -> Set[int]:
        """Next-stage modules reachable from ``module`` on some permitted route."""
        self.check_module(module)
        return set(self._successors[module])

    def has_edge(self, module_a: int, module_b: int) -> bool:
        return 0 <= module_a < self.n_modules and module_b in self._successors[module_a]

    def adjacency(self) -> Dict[int, Set[int]]:
        return {m: self.successors(m) for m in range(self.n_modules)}

    # ---- mutation ----------------------------------------------------------

    def validate(self, route: Sequence[int]) -> Route:
        """Check that ``route`` picks exactly one module from each stage in order."""
        route = tuple(int(m) for m in route)
        if len(route) != self.n_stages:
            raise RoutingError(
                "Route must pick one module per stage",
                context={"route": route, "n_stages": self.n_stages},
            )
        for stage, module in enumerate(route):
            if module not in self._stage_modules[stage]:
                raise RoutingError(
                    "Route module is not in its stage",
                    context={"route": route, "stage": stage, "module": module},
                )
        return route

    def add(self, route: Sequence[int]) -> Route:
        route = self.validate(route)
        if route in self._route_set:
            raise RoutingError("Route already present", context={"route": route})
        self._routes.append(route)
        self._route_set.add(route)
        for a, b in zip(route, route[1:]):
            self._successors[a][b] += 1
        return route

    def remove(self, route: Sequence[int]) -> Route:
        """
        Drop a route.

        Raises:
            RoutingError: If the route is not present or is the last one.
        """
        route = self.validate(route)
        if route not in self._route_set:
            raise RoutingError("Route not in the design", context={"route": route})
        if len(self._routes) == 1:
            raise RoutingError("Cannot remove the last route", context={"route": route})
        self._routes.remove(route)
        self._route_set.discard(route)
        for a, b in zip(route, route[1:]):
            self._successors[a][b] -= 1
            if self._successors[a][b] == 0:
                del self._successors[a][b]
        return route

    # ---- lookup ------------------------------------------------------------

    def resolve(self, ref: RouteRef) -> Route:
        """Turn a route index (into the current route list) or a module tuple into a route."""
        if isinstance(ref, int):
            if not 0 <= ref < len(self._routes):
                raise RoutingError(
                    "Route index out of range", context={"route": ref, "n_routes": len(self)}
                )
            return self._routes[ref]
        route = self.validate(ref)
        if route not in self._route_set:
            raise RoutingError("Route not in the design", context={"route": route})
        return route

    def index_of(self, ref: RouteRef) -> int:
        return self._routes.index(self.resolve(ref))
