"""
Maximum Fisher Information (MFI) item selection for Computerized Adaptive Testing.

Selects the remaining item (or testlet) with the highest information at the
current ability estimate. For a testlet, grouped by a set attribute such as
``set_id``, the information of its remaining members is averaged and the
whole testlet is returned.

Selectors implement ``ItemSelector`` and return pool indices. The session
manager truncates a returned testlet to the items the test still has room for.

References:
    - Lord, F. M. (1980). Applications of item response theory to practical
      testing problems.
    - Kingsbury, G.G., & Zara, A.R. (1989). Procedures for selecting items for
      computerized adaptive tests.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from cbtkit.core.cat.exposure_control import apply_randomesque
from cbtkit.core.config import settings
from cbtkit.core.irt.model import ResponseModel
from cbtkit.models.pool import ItemPool

if TYPE_CHECKING:
    from cbtkit.core.cat.engine import CATSession

logger = logging.getLogger(__name__)


@runtime_checkable
class ItemSelector(Protocol):
    """Pick the next item(s) for a session from its remaining pool."""

    def select(
        self,
        session: "CATSession",
        pool: ItemPool,
        model: ResponseModel,
        rng: np.random.Generator,
    ) -> List[int]:
        ...


@dataclass
class ItemCandidate:
    """An item or testlet with its information at the current estimate."""

    indices: Tuple[int, ...]
    information: float


def rank_items(
    theta: float,
    pool: ItemPool,
    indices: Sequence[int],
    model: ResponseModel,
) -> List[ItemCandidate]:
    """Single-item candidates sorted by information (descending, ties by pool index)."""
    indices = sorted(indices)
    if not indices:
        return []
    information = model.information(theta, pool, indices)[0]
    order = np.argsort(-information, kind="stable")
    return [ItemCandidate((indices[j],), float(information[j])) for j in order]


def rank_sets(
    theta: float,
    pool: ItemPool,
    indices: Sequence[int],
    model: ResponseModel,
    set_attribute: str,
) -> List[ItemCandidate]:
    """
    Testlet candidates sorted by mean member information.

    Items without a set value form a testlet of their own. Members inside a
    candidate are ordered by information.
    """
    singles = rank_items(theta, pool, indices, model)
    set_of = {i: key for key, members in pool.groups(set_attribute).items() for i in members}
    groups: Dict[object, List[ItemCandidate]] = {}
    for candidate in singles:
        index = candidate.indices[0]
        key = set_of.get(index, ("item", index))
        groups.setdefault(key, []).append(candidate)

    ranked = [
        ItemCandidate(
            tuple(c.indices[0] for c in members),
            float(np.mean([c.information for c in members])),
        )
        for members in groups.values()
    ]
    ranked.sort(key=lambda c: (-c.information, c.indices[0]))
    return ranked


class MaxInformationSelector:
    """
    Maximum information selection with randomesque exposure control.

    Args:
        randomesque_k: Choose uniformly among the top-k candidates; 1 always
            takes the most informative.
        set_attribute: Categorical attribute grouping items into testlets.
    """

    def __init__(
        self,
        randomesque_k: Optional[int] = None,
        set_attribute: Optional[str] = None,
    ):
        self.randomesque_k = settings.CAT_RANDOMESQUE_K if randomesque_k is None else randomesque_k
        if self.randomesque_k <= 0:
            raise ValueError(f"randomesque_k must be positive, got {self.randomesque_k}")
        self.set_attribute = set_attribute

    def rank(
        self, theta: float, pool: ItemPool, indices: Sequence[int], model: ResponseModel
    ) -> List[ItemCandidate]:
        if self.set_attribute is not None:
            return rank_sets(theta, pool, indices, model, self.set_attribute)
        return rank_items(theta, pool, indices, model)

    def select(self, session, pool, model, rng) -> List[int]:
        candidates = self.rank(session.theta, pool, session.remaining, model)
        if not candidates:
            logger.warning(
                f"No eligible items remaining. Pool size: {len(pool)}, "
                f"administered: {session.num_items}"
            )
            return []
        selected = apply_randomesque(candidates, self.randomesque_k, rng)
        logger.debug(
            f"Item selection: theta={session.theta:.3f}, eligible={len(candidates)}, "
            f"selected {selected.indices} (info={selected.information:.4f})"
        )
        return list(selected.indices)
