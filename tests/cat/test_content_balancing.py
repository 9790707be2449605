"""
Tests for content-balanced item selection.
"""

from types import SimpleNamespace

import numpy as np
import pytest

from cbtkit.core.cat.content_balancing import (
    ContentBalancedSelector,
    get_priority_domain,
    track_domain_coverage,
)

DOMAINS = ("algebra", "geometry", "statistics", "number")
EQUAL_WEIGHTS = {domain: 0.25 for domain in DOMAINS}


def _session(remaining, administered=(), theta=0.0):
    return SimpleNamespace(
        theta=theta,
        remaining=set(remaining),
        administered=list(administered),
        num_items=len(administered),
    )


class TestCoverage:
    """Tests for track_domain_coverage and get_priority_domain."""

    def test_track_coverage(self, tiny_pool):
        assert track_domain_coverage(tiny_pool, [0, 1, 2], "content") == {"algebra": 2, "geometry": 1}

    def test_empty_coverage_picks_highest_weight(self):
        weights = {"algebra": 0.2, "geometry": 0.5, "statistics": 0.3}
        assert get_priority_domain({}, weights) == "geometry"

    def test_largest_shortfall(self):
        coverage = {"algebra": 3, "geometry": 1}
        weights = {"algebra": 0.5, "geometry": 0.5}
        assert get_priority_domain(coverage, weights) == "geometry"

    def test_ties_go_to_first_listed(self):
        assert get_priority_domain({}, EQUAL_WEIGHTS) == "algebra"

    def test_unavailable_domains_skipped(self):
        assert get_priority_domain({}, EQUAL_WEIGHTS, available={"number"}) == "number"
        assert get_priority_domain({}, EQUAL_WEIGHTS, available=set()) is None


class TestContentBalancedSelector:
    """Tests for ContentBalancedSelector."""

    @pytest.mark.parametrize(
        "weights,match",
        [
            ({}, "must not be empty"),
            ({"algebra": -0.2, "geometry": 1.2}, "non-negative"),
            ({"algebra": 0.5, "geometry": 0.2}, "sum to"),
        ],
    )
    def test_invalid_weights(self, weights, match):
        with pytest.raises(ValueError, match=match):
            ContentBalancedSelector(weights)

    def test_invalid_n_random(self):
        with pytest.raises(ValueError, match="n_random"):
            ContentBalancedSelector(EQUAL_WEIGHTS, n_random=-1)

    def test_selects_within_priority_domain(self, tiny_pool, model, rng):
        selector = ContentBalancedSelector({"algebra": 0.5, "geometry": 0.5})
        # Two algebra items administered, so geometry has the larger shortfall
        session = _session(remaining=[1, 3, 4, 5], administered=[0, 2], theta=0.85)
        assert selector.select(session, tiny_pool, model, rng) == [3]

    def test_most_informative_in_domain(self, tiny_pool, model, rng):
        selector = ContentBalancedSelector({"algebra": 0.5, "geometry": 0.5})
        session = _session(remaining=range(6), administered=[], theta=0.85)
        # algebra comes first on a tie; b=0.3 is the closest algebra item
        assert selector.select(session, tiny_pool, model, rng) == [4]

    def test_falls_back_when_targeted_domains_run_dry(self, tiny_pool, model, rng):
        selector = ContentBalancedSelector({"statistics": 1.0})
        session = _session(remaining=[0, 1], theta=-1.0)
        assert selector.select(session, tiny_pool, model, rng) == [1]

    def test_exhausted(self, tiny_pool, model, rng):
        selector = ContentBalancedSelector(EQUAL_WEIGHTS)
        assert selector.select(_session(remaining=[]), tiny_pool, model, rng) == []

    def test_balances_over_a_test(self, pool, model, rng):
        selector = ContentBalancedSelector(EQUAL_WEIGHTS)
        remaining = set(range(len(pool)))
        administered = []
        for _ in range(12):
            chosen = selector.select(_session(remaining, administered), pool, model, rng)
            administered.extend(chosen)
            remaining.difference_update(chosen)

        coverage = track_domain_coverage(pool, administered, "content")
        assert coverage == {domain: 3 for domain in DOMAINS}

    def test_random_opening_domains(self, pool, model):
        selector = ContentBalancedSelector(EQUAL_WEIGHTS, n_random=1)
        rng = np.random.default_rng(0)
        domains = {
            pool.attribute("content")[
                selector.select(_session(range(len(pool))), pool, model, rng)[0]
            ]
            for _ in range(40)
        }
        assert len(domains) > 1
