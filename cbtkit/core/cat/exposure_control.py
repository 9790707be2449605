"""
Randomesque exposure control with monitoring for Computerized Adaptive Testing.

Over-exposure occurs when a small subset of items is administered
disproportionately often, compromising item security and making the test
predictable. The randomesque method (Kingsbury & Zara, 1989) selects
randomly from the top-K most informative candidates instead of always taking
the single best one.

Key components:
    - apply_randomesque(): randomesque selection from ranked candidates
    - ExposureMonitor: thread-safe per-item exposure rates across sessions,
      fed by the session manager on every administration

References:
    - Kingsbury, G.G., & Zara, A.R. (1989). Procedures for selecting items for
      computerized adaptive tests.
    - Stocking, M.L., & Lewis, C. (1998). Controlling item exposure conditional
      on ability in computerized adaptive testing.
"""

import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import numpy as np

from cbtkit.core.config import settings
from cbtkit.models.pool import ItemId

if TYPE_CHECKING:
    from cbtkit.core.cat.item_selection import ItemCandidate

logger = logging.getLogger(__name__)

# Overexposed items listed individually in an alert
MAX_ALERT_ITEMS = 10


def apply_randomesque(
    ranked: List["ItemCandidate"],
    k: int,
    rng: np.random.Generator,
) -> "ItemCandidate":
    """
    Select uniformly from the top-K candidates.

    Args:
        ranked: Candidates sorted by information (descending).
        k: Number of top candidates to choose from.
        rng: Random generator; seed it for reproducible selection.

    Raises:
        ValueError: If ranked is empty or k is not positive.
    """
    if not ranked:
        raise ValueError("Cannot select from empty ranked list")
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")

    top_k = ranked[: min(k, len(ranked))]
    if len(top_k) == 1:
        return top_k[0]
    return top_k[int(rng.integers(len(top_k)))]


class ExposureMonitor:
    """
    Tracks per-item exposure rates across sessions and alerts on over-exposure.

    Thread-safe, in-memory counters.

    Exposure rate is defined as:
        rate_i = (administrations of item i) / (completed sessions)

    Items exceeding ``alert_threshold`` are logged as warnings by
    :meth:`check_and_alert`.
    """

    def __init__(self, alert_threshold: Optional[float] = None):
        alert_threshold = (
            settings.EXPOSURE_ALERT_THRESHOLD if alert_threshold is None else alert_threshold
        )
        if not (0.0 <= alert_threshold <= 1.0):
            raise ValueError(f"alert_threshold must be in [0.0, 1.0], got {alert_threshold}")

        self._lock = threading.Lock()
        self._item_counts: Dict[ItemId, int] = {}
        self._total_selections = 0
        self._sessions = 0
        self.alert_threshold = alert_threshold

    def record_selection(self, item_id: ItemId) -> None:
        with self._lock:
            self._item_counts[item_id] = self._item_counts.get(item_id, 0) + 1
            self._total_selections += 1

    def record_session(self) -> None:
        """Count one finished session (the exposure-rate denominator)."""
        with self._lock:
            self._sessions += 1

    def get_exposure_rate(self, item_id: ItemId) -> float:
        with self._lock:
            if self._sessions == 0:
                return 0.0
            return self._item_counts.get(item_id, 0) / self._sessions

    def get_exposure_rates(self) -> Dict[ItemId, float]:
        """Rates for every item selected at least once."""
        with self._lock:
            return self._rates_locked()

    def _rates_locked(self) -> Dict[ItemId, float]:
        if self._sessions == 0:
            return {}
        return {item_id: count / self._sessions for item_id, count in self._item_counts.items()}

    def get_overexposed_items(self) -> List[Tuple[ItemId, float]]:
        """(item_id, rate) above the threshold, highest rate first."""
        rates = self.get_exposure_rates()
        overexposed = [(item_id, rate) for item_id, rate in rates.items() if rate > self.alert_threshold]
        overexposed.sort(key=lambda x: x[1], reverse=True)
        return overexposed

    def check_and_alert(self) -> List[Tuple[ItemId, float]]:
        """
        Check for overexposed items and log warnings.

        Snapshots counts under the lock and logs outside it.
        """
        with self._lock:
            rates = self._rates_locked()
            sessions = self._sessions
            overexposed = [(item_id, rate) for item_id, rate in rates.items() if rate > self.alert_threshold]
            overexposed.sort(key=lambda x: x[1], reverse=True)
            log_entries = [
                (item_id, rate, self._item_counts[item_id]) for item_id, rate in overexposed[:MAX_ALERT_ITEMS]
            ]
        remaining = len(overexposed) - MAX_ALERT_ITEMS

        if overexposed:
            logger.warning(
                f"Exposure alert: {len(overexposed)} items exceed "
                f"{self.alert_threshold:.1%} threshold"
            )
            for item_id, rate, count in log_entries:
                logger.warning(f"  Item {item_id}: {rate:.1%} exposure ({count}/{sessions} sessions)")
            if remaining > 0:
                logger.warning(f"  ... and {remaining} more items")

        return overexposed

    @property
    def total_selections(self) -> int:
        with self._lock:
            return self._total_selections

    @property
    def sessions(self) -> int:
        with self._lock:
            return self._sessions

    def reset(self) -> None:
        with self._lock:
            self._item_counts.clear()
            self._total_selections = 0
            self._sessions = 0
            logger.info("ExposureMonitor counters reset")
