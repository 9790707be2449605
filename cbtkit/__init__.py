"""
cbtkit: constraint-based test assembly, multistage panels and adaptive testing.
"""

from cbtkit.core.ata import AssemblyEngine, ConstraintSpec, SolveResult, SolveStatus, ThetaPoints
from cbtkit.core.cat import CATRules, CATSessionManager, StoppingRules
from cbtkit.core.errors import (
    AssemblyNotSolvedError,
    CBTError,
    RoutingError,
    ShadowTestError,
    SolverError,
    SpecificationError,
)
from cbtkit.core.irt import ThreePLModel
from cbtkit.core.mst import MSTAssembler
from cbtkit.models import Item, ItemPool, generate_item_pool

__version__ = "0.1.0"

__all__ = [
    "AssemblyEngine",
    "ConstraintSpec",
    "SolveResult",
    "SolveStatus",
    "ThetaPoints",
    "CATRules",
    "CATSessionManager",
    "StoppingRules",
    "MSTAssembler",
    "ThreePLModel",
    "Item",
    "ItemPool",
    "generate_item_pool",
    "CBTError",
    "SpecificationError",
    "RoutingError",
    "AssemblyNotSolvedError",
    "SolverError",
    "ShadowTestError",
]
