"""
Item response theory collaborators: the 3PL response model and item calibration.
"""

from .calibration import (
    ItemCalibrationResult,
    build_pool,
    calibrate_items,
)
from .model import (
    ResponseModel,
    ThreePLModel,
    information,
    log_likelihood,
    probability,
)

__all__ = [
    "ResponseModel",
    "ThreePLModel",
    "probability",
    "information",
    "log_likelihood",
    "calibrate_items",
    "build_pool",
    "ItemCalibrationResult",
]
