"""
Item and item-pool data model.

An ``ItemPool`` is an ordered, immutable collection of items. The position of
an item in the pool (0..N-1) is the axis of every MILP selection variable and
of every vectorized response-model computation, so it never changes once the
pool is built.
"""

import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

import numpy as np

from cbtkit.core.errors import SpecificationError

logger = logging.getLogger(__name__)

ItemId = Union[int, str]

# Synthetic item parameter distributions (Lord, 1980)
DISCRIMINATION_LOGNORMAL_MEAN = 0.0
DISCRIMINATION_LOGNORMAL_SD = 0.3
DISCRIMINATION_MIN = 0.5
DISCRIMINATION_MAX = 2.5
DIFFICULTY_NORMAL_MEAN = 0.0
DIFFICULTY_NORMAL_SD = 1.0
DIFFICULTY_MIN = -3.0
DIFFICULTY_MAX = 3.0
GUESSING_MIN = 0.05
GUESSING_MAX = 0.25
RESPONSE_TIME_LOGNORMAL_MEAN = 4.0  # ~55 seconds
RESPONSE_TIME_LOGNORMAL_SD = 0.3

DEFAULT_CONTENT_DOMAINS = ("algebra", "geometry", "statistics", "number")

_RESERVED_KEYS = ("id", "a", "b", "c")


@dataclass(frozen=True)
class Item:
    """A calibrated item: 3PL parameters plus free-form attributes."""

    id: ItemId
    a: float  # discrimination
    b: float  # difficulty
    c: float = 0.0  # pseudo-guessing
    attributes: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not (self.a > 0 and math.isfinite(self.a)):
            raise SpecificationError(
                "Item discrimination must be positive", context={"item": self.id, "a": self.a}
            )
        if not math.isfinite(self.b):
            raise SpecificationError(
                "Item difficulty must be finite", context={"item": self.id, "b": self.b}
            )
        if not (0.0 <= self.c < 1.0):
            raise SpecificationError(
                "Item pseudo-guessing must be in [0, 1)", context={"item": self.id, "c": self.c}
            )
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def get(self, name: str, default: Any = None) -> Any:
        """Look up a parameter or attribute by name."""
        if name in _RESERVED_KEYS:
            return getattr(self, name)
        return self.attributes.get(name, default)


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, (float, np.floating)) and math.isnan(value))


def _frozen(values: Sequence[Any], dtype: Any = float) -> np.ndarray:
    arr = np.asarray(values, dtype=dtype)
    arr.setflags(write=False)
    return arr


class ItemPool:
    """
    Ordered, read-only collection of items.

    Exposes the 3PL parameters as read-only numpy arrays (``a``, ``b``, ``c``)
    and any attribute as a vector via :meth:`attribute`. Safe to share between
    assembly engines and adaptive sessions.
    """

    def __init__(self, items: Iterable[Item]):
        self._items = tuple(items)
        self._index: Dict[ItemId, int] = {}
        for i, item in enumerate(self._items):
            if item.id in self._index:
                raise SpecificationError("Duplicate item id in pool", context={"item": item.id})
            self._index[item.id] = i

        self.a = _frozen([item.a for item in self._items])
        self.b = _frozen([item.b for item in self._items])
        self.c = _frozen([item.c for item in self._items])
        self._attribute_cache: Dict[str, np.ndarray] = {}

    # ---- container protocol -------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __getitem__(self, index: int) -> Item:
        return self._items[index]

    def __repr__(self) -> str:
        return f"ItemPool(n_items={len(self)})"

    @property
    def items(self) -> tuple:
        return self._items

    @property
    def ids(self) -> List[ItemId]:
        return [item.id for item in self._items]

    # ---- lookups -----------------------------------------------------------

    def index_of(self, item_id: ItemId) -> int:
        """Return the pool index of an item id."""
        try:
            return self._index[item_id]
        except KeyError:
            raise SpecificationError(
                "Unknown item id", context={"item": item_id}
            ) from None

    def indices_of(self, item_ids: Iterable[ItemId]) -> List[int]:
        return [self.index_of(item_id) for item_id in item_ids]

    def has_attribute(self, name: str) -> bool:
        if name in _RESERVED_KEYS:
            return True
        return any(name in item.attributes for item in self._items)

    def attribute(self, name: str) -> np.ndarray:
        """
        Return the attribute as a read-only vector aligned with the pool.

        Numeric attributes come back as float arrays (missing values are NaN);
        categorical attributes come back as object arrays (missing values are
        None).

        Raises:
            SpecificationError: If no item carries the attribute.
        """
        if name in ("a", "b", "c"):
            return getattr(self, name)
        if name == "id":
            return _frozen(self.ids, dtype=object)
        if name in self._attribute_cache:
            return self._attribute_cache[name]
        if not self.has_attribute(name):
            raise SpecificationError(
                "Unknown pool attribute", context={"attribute": name}
            )

        values = [item.attributes.get(name) for item in self._items]
        if self._values_are_numeric(values):
            arr = _frozen([math.nan if v is None else float(v) for v in values])
        else:
            arr = _frozen(values, dtype=object)
        self._attribute_cache[name] = arr
        return arr

    def is_categorical(self, name: str) -> bool:
        """Whether the attribute holds categorical (non-numeric) values."""
        return self.attribute(name).dtype == object

    def levels(self, name: str) -> List[Any]:
        """Distinct non-missing levels of a categorical attribute, in first-seen order."""
        seen: Dict[Any, None] = {}
        for value in self.attribute(name):
            if value is not None:
                seen.setdefault(value, None)
        return list(seen)

    def groups(self, name: str) -> Dict[Any, List[int]]:
        """
        Pool indices per distinct value, in first-seen order.

        Works for categorical and numeric attributes alike, so integer
        enemy-group or testlet ids group the same way string ids do. Missing
        values (None or NaN) belong to no group.
        """
        groups: Dict[Any, List[int]] = {}
        for index, value in enumerate(self.attribute(name)):
            if _is_missing(value):
                continue
            groups.setdefault(value, []).append(index)
        return groups

    def subset(self, indices: Iterable[int]) -> "ItemPool":
        return ItemPool(self._items[i] for i in indices)

    @staticmethod
    def _values_are_numeric(values: Sequence[Any]) -> bool:
        present = [v for v in values if v is not None]
        return bool(present) and all(
            isinstance(v, (int, float, np.integer, np.floating)) and not isinstance(v, bool)
            for v in present
        )

    # ---- conversion ----------------------------------------------------------

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ItemPool":
        """
        Build a pool from plain mappings.

        Each record needs ``id``, ``a`` and ``b``; ``c`` defaults to 0. Every
        other key becomes an attribute.
        """
        items = []
        for record in records:
            try:
                item_id = record["id"]
                a = float(record["a"])
                b = float(record["b"])
            except KeyError as e:
                raise SpecificationError(
                    "Item record is missing a required field", context={"field": e.args[0]}
                ) from e
            c = float(record.get("c", 0.0))
            attributes = {k: v for k, v in record.items() if k not in _RESERVED_KEYS}
            items.append(Item(id=item_id, a=a, b=b, c=c, attributes=attributes))
        return cls(items)

    def to_records(self) -> List[Dict[str, Any]]:
        return [
            {"id": item.id, "a": item.a, "b": item.b, "c": item.c, **item.attributes}
            for item in self._items
        ]


def generate_item_pool(
    n_items: int = 100,
    content_domains: Optional[Sequence[str]] = DEFAULT_CONTENT_DOMAINS,
    guessing: bool = True,
    set_size: int = 0,
    seed: int = 42,
) -> ItemPool:
    """
    Generate a synthetic pool with realistic 3PL parameters.

    Item parameters are drawn from distributions that match typical
    operational item banks (Lord, 1980):
        - Discrimination (a) ~ LogNormal(0.0, 0.3), clipped to [0.5, 2.5]
        - Difficulty (b) ~ Normal(0.0, 1.0), clipped to [-3.0, 3.0]
        - Pseudo-guessing (c) ~ Uniform(0.05, 0.25) when ``guessing`` is set

    Every item also gets a ``response_time`` (seconds), a ``content`` domain
    assigned round-robin and, when ``set_size`` > 0, a ``set_id`` grouping
    consecutive items into testlets.

    Args:
        n_items: Number of items.
        content_domains: Domains cycled over the pool; ``None`` to omit.
        guessing: Whether to draw non-zero pseudo-guessing parameters.
        set_size: Testlet size; 0 for discrete items only.
        seed: Random seed for reproducibility.

    Returns:
        ItemPool with ids ``1..n_items``.
    """
    if n_items <= 0:
        raise SpecificationError("n_items must be positive", context={"n_items": n_items})

    rng = np.random.default_rng(seed)
    a = np.clip(
        rng.lognormal(mean=DISCRIMINATION_LOGNORMAL_MEAN, sigma=DISCRIMINATION_LOGNORMAL_SD, size=n_items),
        DISCRIMINATION_MIN,
        DISCRIMINATION_MAX,
    )
    b = np.clip(
        rng.normal(loc=DIFFICULTY_NORMAL_MEAN, scale=DIFFICULTY_NORMAL_SD, size=n_items),
        DIFFICULTY_MIN,
        DIFFICULTY_MAX,
    )
    c = rng.uniform(GUESSING_MIN, GUESSING_MAX, size=n_items) if guessing else np.zeros(n_items)
    response_time = rng.lognormal(
        mean=RESPONSE_TIME_LOGNORMAL_MEAN, sigma=RESPONSE_TIME_LOGNORMAL_SD, size=n_items
    )

    items = []
    for i in range(n_items):
        attributes: Dict[str, Any] = {"response_time": round(float(response_time[i]), 1)}
        if content_domains:
            attributes["content"] = content_domains[i % len(content_domains)]
        if set_size > 0:
            attributes["set_id"] = f"S{i // set_size + 1}"
        items.append(
            Item(id=i + 1, a=float(a[i]), b=float(b[i]), c=float(c[i]), attributes=attributes)
        )

    logger.info(f"Generated item pool: {n_items} items (seed={seed})")
    return ItemPool(items)
