"""
Exception hierarchy for assembly, routing and adaptive testing.

Declaration problems (bad coefficients, inverted bounds, unknown forms,
routes or modules) are raised eagerly when they are declared. Solve outcomes
such as infeasibility or a timeout are *not* exceptions: they come back as a
``SolveStatus`` on the result and callers must check it before reading an
assignment.
"""

from typing import Any, Dict, Optional


class CBTError(Exception):
    """Base exception carrying a message, optional cause and context."""

    def __init__(  # noqa: D107
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} (context: {ctx_str})"
        if self.original_error:
            msg = f"{msg} - caused by: {str(self.original_error)}"
        return msg


class SpecificationError(CBTError, ValueError):
    """A malformed objective or constraint declaration."""


class RoutingError(CBTError, ValueError):
    """A route or module reference outside the current design."""


class AssemblyNotSolvedError(CBTError):
    """An assignment was requested before a successful solve."""


class SolverError(CBTError):
    """The solver returned a status that is neither a solution nor a clean failure."""


class ShadowTestError(CBTError):
    """The per-step shadow test could not be solved."""

    def __init__(  # noqa: D107
        self,
        message: str,
        status: Any,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.status = status
        super().__init__(message, context={"status": status, **(context or {})})


class CalibrationError(CBTError):
    """Item parameter calibration failed."""
