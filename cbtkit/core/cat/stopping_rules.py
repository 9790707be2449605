"""
Stopping rules for Computerized Adaptive Testing (CAT).

Stopping rules (evaluated in priority order):
    0. Pool exhausted: no remaining item can be administered
    1. Minimum items: the test continues until ``min_items`` are administered
    2. Maximum items: the test stops at ``max_items`` (overrides all others)
    3. SE threshold: stop when SE(theta) < ``se_threshold``
    4. Minimum information: stop when no remaining item is more informative
       than ``min_information`` at the current estimate
    5. Classification: stop when the confidence interval around theta
       excludes ``cut_score``
    6. Projection: stop when the ability range still reachable with the
       remaining items lies entirely on one side of ``cut_score``

Criteria 3-6 are optional; leave their parameter unset to disable them.

References:
    - Kingsbury, G. G., & Weiss, D. J. (1983). A comparison of IRT-based
      adaptive mastery testing and a sequential mastery testing procedure.
    - Choi, S. W., Grady, M. W., & Dodd, B. G. (2011). A new stopping rule
      for computerized adaptive testing.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import norm

from cbtkit.core.config import settings
from cbtkit.core.irt.model import ResponseModel
from cbtkit.models.pool import ItemPool

logger = logging.getLogger(__name__)


@dataclass
class StoppingRules:
    """Stopping configuration for one test."""

    min_items: int = settings.CAT_MIN_ITEMS
    max_items: int = settings.CAT_MAX_ITEMS
    se_threshold: Optional[float] = settings.CAT_SE_THRESHOLD
    min_information: Optional[float] = None
    cut_score: Optional[float] = None
    classification_confidence: Optional[float] = None  # e.g. 0.95; needs cut_score
    projection: bool = False  # needs cut_score

    def __post_init__(self) -> None:
        if self.min_items < 0:
            raise ValueError(f"min_items must be non-negative, got {self.min_items}")
        if self.max_items < 1 or self.min_items > self.max_items:
            raise ValueError(
                f"Invalid test length bounds: min_items={self.min_items}, max_items={self.max_items}"
            )
        if self.classification_confidence is not None:
            if not 0.0 < self.classification_confidence < 1.0:
                raise ValueError(
                    f"classification_confidence must be in (0, 1), got {self.classification_confidence}"
                )
            if self.cut_score is None:
                raise ValueError("Classification stopping requires a cut_score")
        if self.projection and self.cut_score is None:
            raise ValueError("Projection stopping requires a cut_score")


@dataclass
class StoppingDecision:
    """
    Result of evaluating stopping criteria for a CAT session.

    Attributes:
        should_stop: Whether the test should terminate.
        reason: Primary reason for stopping (if should_stop=True), or None.
        details: Diagnostic information (se, num_items, thresholds and the
            values each enabled criterion looked at).
    """

    should_stop: bool
    reason: Optional[str]
    details: Dict[str, Any]


def check_stopping_criteria(
    theta: float,
    se: float,
    num_items: int,
    rules: StoppingRules,
    remaining_information: Optional[np.ndarray] = None,
    projected_range: Optional[Tuple[float, float]] = None,
) -> StoppingDecision:
    """
    Evaluate the stopping criteria in priority order.

    Args:
        theta: Current ability estimate.
        se: Current standard error.
        num_items: Number of items administered so far.
        rules: Stopping configuration.
        remaining_information: Information of every remaining item at
            ``theta``; an empty array means the pool is exhausted.
        projected_range: (lowest, highest) reachable final estimate, used by
            the projection rule.

    Returns:
        StoppingDecision with should_stop flag, reason, and diagnostic details.

    Raises:
        ValueError: If se or num_items is negative.
    """
    if se < 0:
        raise ValueError(f"Standard error must be non-negative, got {se}")
    if num_items < 0:
        raise ValueError(f"Number of items must be non-negative, got {num_items}")

    details: Dict[str, Any] = {
        "theta": theta,
        "se": se,
        "num_items": num_items,
        "se_threshold": rules.se_threshold,
        "min_items_met": num_items >= rules.min_items,
        "at_max_items": num_items >= rules.max_items,
    }

    # Rule 0: nothing left to administer
    if remaining_information is not None and len(remaining_information) == 0:
        logger.info(f"Stopping: item pool exhausted after {num_items} items")
        return StoppingDecision(should_stop=True, reason="pool_exhausted", details=details)

    # Rule 1: Minimum items
    if num_items < rules.min_items:
        logger.debug(f"Continuing: {num_items}/{rules.min_items} items administered (below minimum)")
        return StoppingDecision(should_stop=False, reason=None, details=details)

    # Rule 2: Maximum items
    if num_items >= rules.max_items:
        logger.info(f"Stopping: reached maximum items ({num_items}/{rules.max_items})")
        return StoppingDecision(should_stop=True, reason="max_items", details=details)

    # Rule 3: SE threshold
    if rules.se_threshold is not None and se < rules.se_threshold:
        logger.info(
            f"Stopping: SE threshold met (SE={se:.4f} < {rules.se_threshold:.4f}) "
            f"after {num_items} items"
        )
        return StoppingDecision(should_stop=True, reason="se_threshold", details=details)

    # Rule 4: Minimum information
    if rules.min_information is not None and remaining_information is not None:
        best = float(np.max(remaining_information))
        details["max_remaining_information"] = best
        if best < rules.min_information:
            logger.info(
                f"Stopping: no remaining item exceeds information {rules.min_information} "
                f"(best={best:.4f}) after {num_items} items"
            )
            return StoppingDecision(should_stop=True, reason="min_information", details=details)

    # Rule 5: Classification against the cut score
    if rules.classification_confidence is not None:
        z = float(norm.ppf(0.5 + rules.classification_confidence / 2.0))
        lower, upper = theta - z * se, theta + z * se
        details["confidence_interval"] = (lower, upper)
        if lower > rules.cut_score or upper < rules.cut_score:
            logger.info(
                f"Stopping: classified against cut={rules.cut_score} "
                f"(CI=[{lower:.3f}, {upper:.3f}]) after {num_items} items"
            )
            return StoppingDecision(should_stop=True, reason="classification", details=details)

    # Rule 6: Projection against the cut score
    if rules.projection and projected_range is not None:
        low, high = projected_range
        details["projected_range"] = (low, high)
        if low > rules.cut_score or high < rules.cut_score:
            logger.info(
                f"Stopping: projected range [{low:.3f}, {high:.3f}] cannot cross "
                f"cut={rules.cut_score} after {num_items} items"
            )
            return StoppingDecision(should_stop=True, reason="projection", details=details)

    logger.debug(f"Continuing: SE={se:.4f}, items={num_items}")
    return StoppingDecision(should_stop=False, reason=None, details=details)


def project_ability_range(
    estimator,
    responses: Sequence[int],
    pool: ItemPool,
    administered: Sequence[int],
    remaining: Sequence[int],
    model: ResponseModel,
    theta: float,
    items_left: int,
) -> Tuple[float, float]:
    """
    Lowest and highest final estimate reachable with ``items_left`` more items.

    The most informative remaining items at ``theta`` are appended once as
    all incorrect and once as all correct, and the estimator is re-run.
    """
    if items_left <= 0 or not remaining:
        return (theta, theta)

    remaining = sorted(remaining)
    information = model.information(theta, pool, remaining)[0]
    best = [remaining[j] for j in np.argsort(-information, kind="stable")[:items_left]]
    indices = list(administered) + best

    low, _ = estimator.estimate(list(responses) + [0] * len(best), pool, indices, model, theta)
    high, _ = estimator.estimate(list(responses) + [1] * len(best), pool, indices, model, theta)
    return (min(low, high), max(low, high))
