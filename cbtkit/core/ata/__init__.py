"""
Automated test assembly: constraint compiler, MILP session and assembly engine.
"""

from .assembler import AssemblyEngine, ConstraintSpec
from .coefficients import ThetaPoints, resolve_coefficients, resolve_form_groups
from .compiler import ConstraintCompiler
from .milp import MILPSession, SolveResult, SolveStatus

__all__ = [
    "AssemblyEngine",
    "ConstraintSpec",
    "ConstraintCompiler",
    "MILPSession",
    "SolveResult",
    "SolveStatus",
    "ThetaPoints",
    "resolve_coefficients",
    "resolve_form_groups",
]
