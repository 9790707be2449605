"""
Multistage testing: route graph and panel assembly.
"""

from .assembler import MSTAssembler, MSTState
from .routes import Route, RouteGraph

__all__ = [
    "MSTAssembler",
    "MSTState",
    "Route",
    "RouteGraph",
]
