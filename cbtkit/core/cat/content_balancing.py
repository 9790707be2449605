"""
Content-balanced item selection for Computerized Adaptive Testing.

Each step picks the content domain whose administered proportion falls
furthest below its target proportion, then the most informative remaining
item inside that domain. The first ``n_random`` selections draw the domain
at random instead, so early tests do not all open with the same domain
sequence.

References:
    - Kingsbury, G.G., & Zara, A.R. (1989). Procedures for selecting items for
      computerized adaptive tests.
    - van der Linden, W.J. (2005). Linear Models for Optimal Test Design.
"""

import logging
from typing import Any, Collection, Dict, List, Mapping, Optional, Sequence

import numpy as np

from cbtkit.core.cat.exposure_control import apply_randomesque
from cbtkit.core.cat.item_selection import rank_items
from cbtkit.core.config import settings
from cbtkit.models.pool import ItemPool

logger = logging.getLogger(__name__)

# Tolerance for floating-point rounding when summing weight fractions
WEIGHT_SUM_TOLERANCE = 0.01


def track_domain_coverage(pool: ItemPool, indices: Sequence[int], attribute: str) -> Dict[Any, int]:
    """Count administered items per domain."""
    values = pool.attribute(attribute)
    coverage: Dict[Any, int] = {}
    for index in indices:
        domain = values[index]
        if domain is not None:
            coverage[domain] = coverage.get(domain, 0) + 1
    return coverage


def get_priority_domain(
    coverage: Mapping[Any, int],
    target_weights: Mapping[Any, float],
    available: Optional[Collection[Any]] = None,
) -> Optional[Any]:
    """
    Return the domain with the largest shortfall below its target proportion.

    shortfall = target_weight - administered_in_domain / administered_total

    With nothing administered yet, the shortfall equals the target weight, so
    the highest-weight domain comes first. Ties go to the domain listed first
    in ``target_weights``.

    Args:
        coverage: Administered item count per domain.
        target_weights: Target proportion per domain.
        available: Domains that still have items; others are skipped.

    Returns:
        The domain to draw from, or ``None`` if no candidate domain remains.
    """
    total_items = sum(coverage.values())
    best_domain = None
    best_gap = -np.inf
    for domain, target in target_weights.items():
        if available is not None and domain not in available:
            continue
        actual = coverage.get(domain, 0) / total_items if total_items else 0.0
        gap = target - actual
        if gap > best_gap:
            best_gap = gap
            best_domain = domain
    return best_domain


class ContentBalancedSelector:
    """
    Largest-shortfall domain first, then maximum information within it.

    Args:
        target_weights: Target proportion per domain; must sum to ~1.
        attribute: Pool attribute holding the domain (default
            CAT_CONTENT_ATTRIBUTE).
        n_random: Number of opening selections with a random domain.
        randomesque_k: Top-k randomization within the chosen domain.
    """

    def __init__(
        self,
        target_weights: Mapping[Any, float],
        attribute: Optional[str] = None,
        n_random: int = 0,
        randomesque_k: Optional[int] = None,
    ):
        if not target_weights:
            raise ValueError("target_weights must not be empty")
        if any(w < 0 for w in target_weights.values()):
            raise ValueError("Domain weights must be non-negative")
        weight_sum = sum(target_weights.values())
        if abs(weight_sum - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"Domain weights must sum to ~1.0, got {weight_sum:.3f}")
        if n_random < 0:
            raise ValueError(f"n_random must be >= 0, got {n_random}")

        self.target_weights = dict(target_weights)
        self.attribute = attribute or settings.CAT_CONTENT_ATTRIBUTE
        self.n_random = n_random
        self.randomesque_k = settings.CAT_RANDOMESQUE_K if randomesque_k is None else randomesque_k

    def select(self, session, pool, model, rng) -> List[int]:
        values = pool.attribute(self.attribute)
        by_domain: Dict[Any, List[int]] = {}
        for index in session.remaining:
            by_domain.setdefault(values[index], []).append(index)
        if not by_domain:
            return []

        available = [d for d in self.target_weights if d in by_domain]
        if session.num_items < self.n_random and available:
            domain = available[int(rng.integers(len(available)))]
        else:
            coverage = track_domain_coverage(pool, session.administered, self.attribute)
            domain = get_priority_domain(coverage, self.target_weights, available=by_domain)

        # Domains outside the targets are only used once the targeted ones run dry
        candidates = by_domain[domain] if domain is not None else list(session.remaining)
        ranked = rank_items(session.theta, pool, candidates, model)
        selected = apply_randomesque(ranked, self.randomesque_k, rng)
        logger.debug(
            f"Content balancing: domain={domain}, {len(candidates)} candidates, "
            f"selected {selected.indices[0]} (info={selected.information:.4f})"
        )
        return [selected.indices[0]]
