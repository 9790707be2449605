"""
Pytest configuration and shared fixtures.
"""

import numpy as np
import pytest

from cbtkit.core.irt.model import ThreePLModel
from cbtkit.models.pool import Item, ItemPool, generate_item_pool


@pytest.fixture
def model() -> ThreePLModel:
    return ThreePLModel()


@pytest.fixture
def pool() -> ItemPool:
    """100-item synthetic pool with four content domains."""
    return generate_item_pool(n_items=100, seed=42)


@pytest.fixture
def testlet_pool() -> ItemPool:
    """60-item pool grouped into testlets of three."""
    return generate_item_pool(n_items=60, set_size=3, seed=7)


@pytest.fixture
def tiny_pool() -> ItemPool:
    """Six hand-written items with known difficulties and enemy groups."""
    difficulties = [-1.5, -0.8, -0.2, 0.3, 0.9, 1.6]
    return ItemPool(
        Item(
            id=f"I{i}",
            a=1.0,
            b=b,
            c=0.0,
            attributes={
                "content": "algebra" if i % 2 == 0 else "geometry",
                "enemy": f"E{i // 2}",
                "words": float(10 * (i + 1)),
            },
        )
        for i, b in enumerate(difficulties)
    )


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(12345)
