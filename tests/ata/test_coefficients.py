"""
Tests for coefficient resolution and form-scope mapping.

Tests cover:
- resolve_coefficients: constants, numeric and categorical attributes, raw
  vectors, coefficient matrices and ability points
- resolve_form_groups: all forms, explicit lists, collapsing, invalid scopes
- resolve_bounds: open and inverted bounds
"""

import numpy as np
import pytest

from cbtkit.core.ata.coefficients import (
    ThetaPoints,
    resolve_bounds,
    resolve_coefficients,
    resolve_form_groups,
)
from cbtkit.core.errors import SpecificationError
from cbtkit.core.irt.model import ThreePLModel


class TestResolveCoefficients:
    """Tests for coefficient sources."""

    def test_constant(self, tiny_pool):
        coef = resolve_coefficients(tiny_pool, 2)
        np.testing.assert_array_equal(coef, np.full((1, 6), 2.0))

    def test_numeric_attribute(self, tiny_pool):
        coef = resolve_coefficients(tiny_pool, "words")
        np.testing.assert_array_equal(coef, [[10, 20, 30, 40, 50, 60]])

    def test_item_parameter(self, tiny_pool):
        coef = resolve_coefficients(tiny_pool, "b")
        np.testing.assert_allclose(coef[0], tiny_pool.b)

    def test_categorical_level_indicator(self, tiny_pool):
        coef = resolve_coefficients(tiny_pool, "content", level="geometry")
        np.testing.assert_array_equal(coef, [[0, 1, 0, 1, 0, 1]])

    def test_categorical_without_level(self, tiny_pool):
        with pytest.raises(SpecificationError, match="level is required"):
            resolve_coefficients(tiny_pool, "content")

    def test_unknown_level(self, tiny_pool):
        with pytest.raises(SpecificationError, match="Level not present"):
            resolve_coefficients(tiny_pool, "content", level="calculus")

    def test_level_with_numeric_attribute(self, tiny_pool):
        with pytest.raises(SpecificationError, match="numeric attribute"):
            resolve_coefficients(tiny_pool, "words", level=10)

    def test_level_with_constant(self, tiny_pool):
        with pytest.raises(SpecificationError, match="categorical attribute"):
            resolve_coefficients(tiny_pool, 1, level="algebra")

    def test_unknown_attribute(self, tiny_pool):
        with pytest.raises(SpecificationError, match="Unknown pool attribute"):
            resolve_coefficients(tiny_pool, "nope")

    def test_boolean_rejected(self, tiny_pool):
        with pytest.raises(SpecificationError):
            resolve_coefficients(tiny_pool, True)

    def test_raw_vector(self, tiny_pool):
        values = [1, 0, 2, 0, 3, 0]
        np.testing.assert_array_equal(resolve_coefficients(tiny_pool, values), [values])

    def test_matrix(self, tiny_pool):
        matrix = np.arange(12, dtype=float).reshape(2, 6)
        np.testing.assert_array_equal(resolve_coefficients(tiny_pool, matrix), matrix)

    def test_matrix_wrong_width(self, tiny_pool):
        with pytest.raises(SpecificationError, match="one column per item"):
            resolve_coefficients(tiny_pool, np.ones((2, 5)))

    def test_ability_points(self, tiny_pool):
        model = ThreePLModel()
        coef = resolve_coefficients(tiny_pool, [-1.0, 0.0, 1.0], model=model)
        assert coef.shape == (3, 6)
        np.testing.assert_allclose(coef, model.information([-1.0, 0.0, 1.0], tiny_pool))

    def test_theta_points_disambiguate_length(self, tiny_pool):
        """A sequence as long as the pool is raw unless wrapped in ThetaPoints."""
        thetas = [-2.0, -1.0, 0.0, 0.5, 1.0, 2.0]
        assert resolve_coefficients(tiny_pool, ThetaPoints(thetas)).shape == (6, 6)
        np.testing.assert_array_equal(resolve_coefficients(tiny_pool, thetas), [thetas])

    def test_scalar_theta_points(self, tiny_pool):
        assert resolve_coefficients(tiny_pool, ThetaPoints(0.0)).shape == (1, 6)

    def test_empty_source(self, tiny_pool):
        with pytest.raises(SpecificationError, match="empty"):
            resolve_coefficients(tiny_pool, [])

    def test_non_finite_raw_values(self, tiny_pool):
        with pytest.raises(SpecificationError, match="finite"):
            resolve_coefficients(tiny_pool, [1, 2, np.nan, 4, 5, 6])


class TestResolveFormGroups:
    """Tests for scope mapping."""

    def test_all_forms(self):
        assert resolve_form_groups(None, 3) == [[0], [1], [2]]

    def test_explicit_forms(self):
        assert resolve_form_groups([2, 0], 3) == [[2], [0]]

    def test_collapse(self):
        assert resolve_form_groups(None, 3, collapse=True) == [[0, 1, 2]]
        assert resolve_form_groups([1, 2], 3, collapse=True) == [[1, 2]]

    @pytest.mark.parametrize(
        "forms,match",
        [
            ([], "empty"),
            ([0, 0], "duplicates"),
            ([3], "out of range"),
            ([-1], "out of range"),
        ],
    )
    def test_invalid_scope(self, forms, match):
        with pytest.raises(SpecificationError, match=match):
            resolve_form_groups(forms, 3)


class TestResolveBounds:
    """Tests for bound normalization."""

    def test_open_bounds(self):
        assert resolve_bounds(None, 5) == (-np.inf, 5.0)
        assert resolve_bounds(2, None) == (2.0, np.inf)

    def test_equality(self):
        assert resolve_bounds(3, 3) == (3.0, 3.0)

    def test_inverted(self):
        with pytest.raises(SpecificationError, match="Lower bound exceeds"):
            resolve_bounds(4, 3)

    def test_both_open(self):
        with pytest.raises(SpecificationError, match="At least one bound"):
            resolve_bounds(None, None)
