"""
Tests for the item and pool data model.

Tests cover:
- Item parameter validation
- Pool construction, lookups and read-only parameter arrays
- Attribute vectors (numeric, categorical, missing values)
- Record conversion
- Synthetic pool generation
"""

import math

import numpy as np
import pytest

from cbtkit.core.errors import SpecificationError
from cbtkit.models.pool import (
    DIFFICULTY_MAX,
    DIFFICULTY_MIN,
    DISCRIMINATION_MAX,
    DISCRIMINATION_MIN,
    GUESSING_MAX,
    GUESSING_MIN,
    Item,
    ItemPool,
    generate_item_pool,
)


class TestItem:
    """Tests for Item validation."""

    def test_valid_item(self):
        item = Item(id="Q1", a=1.2, b=-0.5, c=0.2, attributes={"content": "algebra"})
        assert item.get("a") == pytest.approx(1.2)
        assert item.get("content") == "algebra"
        assert item.get("missing", "default") == "default"

    @pytest.mark.parametrize("a", [0.0, -1.0, math.inf, math.nan])
    def test_invalid_discrimination(self, a):
        with pytest.raises(SpecificationError, match="discrimination"):
            Item(id=1, a=a, b=0.0)

    def test_infinite_difficulty(self):
        with pytest.raises(SpecificationError, match="difficulty"):
            Item(id=1, a=1.0, b=math.inf)

    @pytest.mark.parametrize("c", [-0.1, 1.0])
    def test_invalid_guessing(self, c):
        with pytest.raises(SpecificationError, match="pseudo-guessing"):
            Item(id=1, a=1.0, b=0.0, c=c)

    def test_attributes_are_read_only(self):
        item = Item(id=1, a=1.0, b=0.0, attributes={"content": "algebra"})
        with pytest.raises(TypeError):
            item.attributes["content"] = "geometry"


class TestItemPool:
    """Tests for ItemPool lookups and attribute vectors."""

    def test_index_lookup(self, tiny_pool):
        assert len(tiny_pool) == 6
        assert tiny_pool.index_of("I3") == 3
        assert tiny_pool.indices_of(["I5", "I0"]) == [5, 0]
        assert tiny_pool[2].id == "I2"

    def test_unknown_id(self, tiny_pool):
        with pytest.raises(SpecificationError, match="Unknown item id"):
            tiny_pool.index_of("nope")

    def test_duplicate_ids_rejected(self):
        with pytest.raises(SpecificationError, match="Duplicate"):
            ItemPool([Item(id=1, a=1.0, b=0.0), Item(id=1, a=1.0, b=1.0)])

    def test_parameter_arrays_are_read_only(self, tiny_pool):
        assert tiny_pool.b.shape == (6,)
        with pytest.raises(ValueError):
            tiny_pool.b[0] = 10.0

    def test_numeric_attribute(self, tiny_pool):
        words = tiny_pool.attribute("words")
        assert words.dtype == float
        np.testing.assert_allclose(words, [10, 20, 30, 40, 50, 60])
        assert not tiny_pool.is_categorical("words")

    def test_categorical_attribute(self, tiny_pool):
        assert tiny_pool.is_categorical("content")
        assert tiny_pool.levels("content") == ["algebra", "geometry"]
        assert tiny_pool.levels("enemy") == ["E0", "E1", "E2"]

    def test_missing_numeric_values_are_nan(self):
        pool = ItemPool(
            [
                Item(id=1, a=1.0, b=0.0, attributes={"time": 30}),
                Item(id=2, a=1.0, b=0.0),
            ]
        )
        values = pool.attribute("time")
        assert values[0] == pytest.approx(30.0)
        assert math.isnan(values[1])

    def test_unknown_attribute(self, tiny_pool):
        assert not tiny_pool.has_attribute("nope")
        with pytest.raises(SpecificationError, match="Unknown pool attribute"):
            tiny_pool.attribute("nope")

    def test_parameters_are_attributes(self, tiny_pool):
        assert tiny_pool.has_attribute("b")
        np.testing.assert_allclose(tiny_pool.attribute("b"), tiny_pool.b)
        assert list(tiny_pool.attribute("id")) == tiny_pool.ids

    def test_subset(self, tiny_pool):
        subset = tiny_pool.subset([4, 1])
        assert subset.ids == ["I4", "I1"]
        assert subset.index_of("I1") == 1

    def test_groups_categorical(self, tiny_pool):
        assert tiny_pool.groups("enemy") == {"E0": [0, 1], "E1": [2, 3], "E2": [4, 5]}

    def test_groups_numeric_skip_missing(self):
        pool = ItemPool(
            [
                Item(id=1, a=1.0, b=0.0, attributes={"set": 7}),
                Item(id=2, a=1.0, b=0.0),
                Item(id=3, a=1.0, b=0.0, attributes={"set": 7}),
                Item(id=4, a=1.0, b=0.0, attributes={"set": 2}),
            ]
        )
        assert not pool.is_categorical("set")
        assert pool.groups("set") == {7.0: [0, 2], 2.0: [3]}


class TestRecords:
    """Tests for record conversion."""

    def test_round_trip(self, tiny_pool):
        rebuilt = ItemPool.from_records(tiny_pool.to_records())
        assert rebuilt.ids == tiny_pool.ids
        np.testing.assert_allclose(rebuilt.b, tiny_pool.b)
        assert rebuilt[0].attributes == tiny_pool[0].attributes

    def test_guessing_defaults_to_zero(self):
        pool = ItemPool.from_records([{"id": "A", "a": 1.1, "b": 0.4, "content": "number"}])
        assert pool[0].c == 0.0
        assert pool[0].attributes == {"content": "number"}

    def test_missing_required_field(self):
        with pytest.raises(SpecificationError, match="missing a required field") as exc_info:
            ItemPool.from_records([{"id": "A", "a": 1.0}])
        assert exc_info.value.context["field"] == "b"


class TestGenerateItemPool:
    """Tests for synthetic pool generation."""

    def test_size_and_ids(self):
        pool = generate_item_pool(n_items=50)
        assert len(pool) == 50
        assert pool.ids == list(range(1, 51))

    def test_parameter_ranges(self):
        pool = generate_item_pool(n_items=300, seed=1)
        assert np.all((pool.a >= DISCRIMINATION_MIN) & (pool.a <= DISCRIMINATION_MAX))
        assert np.all((pool.b >= DIFFICULTY_MIN) & (pool.b <= DIFFICULTY_MAX))
        assert np.all((pool.c >= GUESSING_MIN) & (pool.c <= GUESSING_MAX))

    def test_no_guessing(self):
        pool = generate_item_pool(n_items=20, guessing=False)
        assert np.all(pool.c == 0.0)

    def test_domains_round_robin(self):
        pool = generate_item_pool(n_items=8, content_domains=("x", "y"))
        assert list(pool.attribute("content")) == ["x", "y"] * 4

    def test_testlets(self):
        pool = generate_item_pool(n_items=7, set_size=3)
        assert list(pool.attribute("set_id")) == ["S1", "S1", "S1", "S2", "S2", "S2", "S3"]

    def test_reproducible(self):
        first = generate_item_pool(n_items=30, seed=9)
        second = generate_item_pool(n_items=30, seed=9)
        np.testing.assert_array_equal(first.b, second.b)

    def test_non_positive_size(self):
        with pytest.raises(SpecificationError):
            generate_item_pool(n_items=0)
