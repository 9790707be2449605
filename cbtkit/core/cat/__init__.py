"""
Computerized Adaptive Testing (CAT) module.

Implements adaptive test administration with pluggable item selection
(maximum information, content balancing, shadow tests), ability estimation
(MLE, MAP, EAP, hybrid, fixed-step) and stopping rules.
"""

from .ability_estimation import (
    AbilityEstimator,
    EAPEstimator,
    FixedStepEstimator,
    HybridEstimator,
    MAPEstimator,
    MLEEstimator,
    estimate_ability_eap,
    estimate_ability_map,
    estimate_ability_mle,
)
from .content_balancing import ContentBalancedSelector, get_priority_domain
from .engine import (
    CATResult,
    CATRules,
    CATSession,
    CATSessionManager,
    CATStepResult,
    SessionStatus,
)
from .exposure_control import ExposureMonitor, apply_randomesque
from .item_selection import ItemCandidate, ItemSelector, MaxInformationSelector
from .shadow_test import ShadowTestSelector
from .simulation import SimulationConfig, SimulationResult, run_simulation
from .stopping_rules import StoppingDecision, StoppingRules, check_stopping_criteria

__all__ = [
    "AbilityEstimator",
    "EAPEstimator",
    "FixedStepEstimator",
    "HybridEstimator",
    "MAPEstimator",
    "MLEEstimator",
    "estimate_ability_eap",
    "estimate_ability_map",
    "estimate_ability_mle",
    "ContentBalancedSelector",
    "get_priority_domain",
    "CATResult",
    "CATRules",
    "CATSession",
    "CATSessionManager",
    "CATStepResult",
    "SessionStatus",
    "ExposureMonitor",
    "apply_randomesque",
    "ItemCandidate",
    "ItemSelector",
    "MaxInformationSelector",
    "ShadowTestSelector",
    "SimulationConfig",
    "SimulationResult",
    "run_simulation",
    "StoppingDecision",
    "StoppingRules",
    "check_stopping_criteria",
]
