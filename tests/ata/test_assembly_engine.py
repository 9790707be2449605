"""
Tests for the AssemblyEngine.

Tests cover:
- Test length and max-select declared at construction
- Enemy sets and enemy groups, item sets
- Maximin optimality against brute-force enumeration
- Absolute objective deviation as matching items become available
- Fixed values, item use, constraint tables
- Read-back before and after failed solves
- End-to-end parallel forms from a generated pool
"""

import itertools

import numpy as np
import pytest

from cbtkit.core.ata.assembler import AssemblyEngine, ConstraintSpec, length_bounds
from cbtkit.core.ata.coefficients import ThetaPoints
from cbtkit.core.ata.milp import SolveStatus
from cbtkit.core.errors import AssemblyNotSolvedError, SpecificationError
from cbtkit.models.pool import Item, ItemPool, generate_item_pool


def _form_counts(engine):
    return engine.selection.sum(axis=0).tolist()


# ── Construction ──────────────────────────────────────────────────────────────


class TestConstruction:
    """Tests for length and max-select rows added at construction."""

    def test_exact_length(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2, test_length=2)
        engine.add_relative_objective("b")
        assert engine.solve(time_limit=10).success
        assert _form_counts(engine) == [2, 2]

    def test_length_range(self, pool):
        engine = AssemblyEngine(pool, n_forms=1, test_length=(5, 8))
        engine.add_relative_objective(1, mode="min")
        engine.solve(time_limit=10)
        assert _form_counts(engine) == [5]

    @pytest.mark.parametrize("test_length", [-1, (5, 3)])
    def test_invalid_length(self, tiny_pool, test_length):
        with pytest.raises(SpecificationError, match="Invalid test length"):
            AssemblyEngine(tiny_pool, test_length=test_length)

    def test_length_bounds(self):
        assert length_bounds(10) == (10, 10)
        assert length_bounds((8, 12)) == (8, 12)

    def test_max_select(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=3, test_length=2, max_select=1)
        engine.add_relative_objective("b")
        engine.solve(time_limit=10)
        assert engine.selection.sum(axis=1).max() <= 1

    def test_max_select_per_item(self, tiny_pool):
        # Item I5 is the most difficult and would be on every form otherwise
        engine = AssemblyEngine(tiny_pool, n_forms=3, test_length=2)
        engine.add_max_select(1, item_ids=["I5"])
        engine.add_relative_objective("b")
        engine.solve(time_limit=10)
        assert engine.selection[5].sum() <= 1

    def test_max_select_at_form_count_adds_nothing(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2)
        engine.add_max_select(2)
        assert engine.session.n_rows == 0

    def test_infeasible_length(self):
        pool = generate_item_pool(n_items=5)
        engine = AssemblyEngine(pool, n_forms=1, test_length=10, max_select=1)
        result = engine.solve(time_limit=10)
        assert result.status is SolveStatus.INFEASIBLE


# ── Item relations ────────────────────────────────────────────────────────────


class TestEnemySets:
    """No two enemies share a form in any feasible solve."""

    def test_enemy_set(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2, test_length=2)
        engine.add_enemy_set(["I4", "I5"])
        engine.add_relative_objective("b")
        engine.solve(time_limit=10)
        for form in engine.items():
            assert not {"I4", "I5"} <= set(form)

    def test_enemy_groups_from_attribute(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=1, test_length=3)
        engine.add_enemy_groups("enemy")
        engine.add_relative_objective("b")
        result = engine.solve(time_limit=10)
        assert result.success
        enemies = [tiny_pool[i].attributes["enemy"] for i in engine.item_indices(0)]
        assert len(set(enemies)) == 3

    def test_enemy_groups_with_integer_ids(self):
        """Integer group ids group like strings; items without one are unconstrained."""
        pool = ItemPool(
            Item(id=i, a=1.0, b=b, attributes={"enemy": i // 2} if i < 4 else {})
            for i, b in enumerate([-1.5, -0.8, -0.2, 0.3, 0.9, 1.6])
        )
        engine = AssemblyEngine(pool, n_forms=1, test_length=4)
        engine.add_enemy_groups("enemy")
        engine.add_relative_objective("b")
        assert engine.solve(time_limit=10).success

        chosen = set(engine.items(0))
        assert {4, 5} <= chosen
        assert len(chosen & {0, 1}) == 1
        assert len(chosen & {2, 3}) == 1

    def test_enemy_sets_on_generated_pool(self, pool):
        engine = AssemblyEngine(pool, n_forms=3, test_length=10, max_select=1)
        enemy_sets = [[1, 2, 3], [10, 20], [30, 31, 32, 33]]
        for members in enemy_sets:
            engine.add_enemy_set(members)
        engine.add_relative_objective(ThetaPoints(0.0))
        assert engine.solve(time_limit=30, gap=0.05).success
        for form in engine.items():
            for members in enemy_sets:
                assert len(set(members) & set(form)) <= 1


class TestItemSets:
    """Testlet members are selected together."""

    def test_item_sets_from_attribute(self, testlet_pool):
        engine = AssemblyEngine(testlet_pool, n_forms=1, test_length=9)
        engine.add_item_sets("set_id")
        engine.add_relative_objective(ThetaPoints(0.0))
        engine.solve(time_limit=30)

        set_ids = testlet_pool.attribute("set_id")
        chosen = [set_ids[i] for i in engine.item_indices(0)]
        assert len(chosen) == 9
        for set_id in set(chosen):
            assert chosen.count(set_id) == 3

    def test_item_use_minimum(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2, test_length=2)
        engine.add_item_use(["I0"], lower=2)
        engine.add_relative_objective("b")
        engine.solve(time_limit=10)
        assert engine.selection[0].tolist() == [True, True]


# ── Objectives ────────────────────────────────────────────────────────────────


class TestRelativeObjective:
    """Maximin solutions match exhaustive enumeration."""

    def _brute_force_maximin(self, values, n_forms, length):
        best = -np.inf
        items = range(len(values))
        for first in itertools.combinations(items, length):
            rest = [i for i in items if i not in first]
            for second in itertools.combinations(rest, length):
                best = max(best, min(values[list(first)].sum(), values[list(second)].sum()))
        return best

    def test_maximin_matches_enumeration(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2, test_length=2, max_select=1)
        engine.add_relative_objective("b", mode="max")
        result = engine.solve(time_limit=10, gap=0.0)

        expected = self._brute_force_maximin(np.asarray(tiny_pool.b), n_forms=2, length=2)
        assert result.status is SolveStatus.OPTIMAL
        assert -result.objective == pytest.approx(expected, abs=1e-6)
        assert engine.evaluate("b").min() == pytest.approx(expected, abs=1e-6)

    def test_maximin_information_on_random_pools(self):
        """Small random pools: maximin information at 0 equals enumeration."""
        for seed in range(3):
            pool = generate_item_pool(n_items=6, seed=seed)
            info = ThetaPoints(0.0)
            engine = AssemblyEngine(pool, n_forms=2, test_length=2, max_select=1)
            engine.add_relative_objective(info)
            result = engine.solve(time_limit=10, gap=0.0)

            values = engine.model.information(0.0, pool)[0]
            expected = self._brute_force_maximin(values, n_forms=2, length=2)
            assert -result.objective == pytest.approx(expected, rel=1e-5)

    def test_minimax(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=1, test_length=2)
        engine.add_relative_objective("words", mode="min")
        engine.solve(time_limit=10)
        assert engine.items(0) == ["I0", "I1"]

    def test_negative_values(self, tiny_pool):
        """Minimax over negative sums: the easiest pair is most negative."""
        engine = AssemblyEngine(tiny_pool, n_forms=1, test_length=2)
        engine.add_relative_objective("b", mode="min", negative=True)
        engine.solve(time_limit=10, gap=0.0)
        assert sorted(engine.items(0)) == ["I0", "I1"]

    def test_flatten_keeps_forms_in_band(self, pool):
        engine = AssemblyEngine(pool, n_forms=2, test_length=8, max_select=1)
        engine.add_relative_objective(ThetaPoints([-1.0, 0.0, 1.0]), flatten=1.5)
        assert engine.solve(time_limit=30, gap=0.05).success

        realized = engine.evaluate(ThetaPoints([-1.0, 0.0, 1.0]))
        assert realized.max() - realized.min() <= 1.5 + 1e-6


class TestAbsoluteObjective:
    """Deviation from a target shrinks as matching items appear."""

    @staticmethod
    def _pool_with_matches(n_matching):
        items = [Item(id=f"F{i}", a=1.0, b=0.0, attributes={"score": 5.0}) for i in range(10)]
        items += [Item(id=f"M{i}", a=1.0, b=0.0, attributes={"score": 2.0}) for i in range(n_matching)]
        return ItemPool(items)

    def test_deviation_trends_to_zero(self):
        deviations = []
        for n_matching in range(4):
            engine = AssemblyEngine(self._pool_with_matches(n_matching), test_length=3)
            engine.add_absolute_objective("score", target=6.0)
            result = engine.solve(time_limit=10)
            deviations.append(result.objective)

        assert deviations == pytest.approx([9.0, 6.0, 3.0, 0.0], abs=1e-6)

    def test_information_target(self, pool):
        engine = AssemblyEngine(pool, n_forms=2, test_length=10, max_select=1)
        engine.add_absolute_objective(ThetaPoints([-1.0, 1.0]), target=[3.0, 3.0])
        assert engine.solve(time_limit=30, gap=0.01).success
        realized = engine.evaluate(ThetaPoints([-1.0, 1.0]))
        assert np.abs(realized - 3.0).max() < 1.0


# ── Constraints ───────────────────────────────────────────────────────────────


class TestConstraints:
    """Tests for content, fixed-value and table constraints."""

    def test_content_counts(self, pool):
        engine = AssemblyEngine(pool, n_forms=2, test_length=12, max_select=1)
        for domain in ("algebra", "geometry", "statistics", "number"):
            engine.add_constraint("content", lower=3, upper=3, level=domain)
        engine.add_relative_objective(ThetaPoints(0.0))
        engine.solve(time_limit=30, gap=0.05)

        content = pool.attribute("content")
        for form in range(2):
            domains = [content[i] for i in engine.item_indices(form)]
            assert all(domains.count(d) == 3 for d in set(domains))

    def test_collapsed_constraint(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2)
        engine.add_constraint(1, lower=3, upper=3, collapse=True)
        engine.add_relative_objective(1, mode="min", collapse=True)
        engine.solve(time_limit=10)
        assert sum(_form_counts(engine)) == 3

    def test_fixed_inclusion_and_exclusion(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=1, test_length=2)
        engine.add_fixed_value(["I0"])
        engine.add_fixed_value(["I5"], lower=0, upper=0)
        engine.add_relative_objective("words")
        engine.solve(time_limit=10)
        assert engine.items(0) == ["I0", "I4"]

    def test_constraint_table(self, pool):
        specs = ConstraintSpec.from_records(
            [
                {"attribute": "content", "level": "algebra", "min": 4},
                {"attribute": "response_time", "max": 600},
            ]
        )
        engine = AssemblyEngine(pool, test_length=10)
        for spec in specs:
            spec.apply(engine)
        engine.add_relative_objective(ThetaPoints(0.5))
        engine.solve(time_limit=30, gap=0.05)

        assert engine.evaluate("content", level="algebra")[0, 0] >= 4
        assert engine.evaluate("response_time")[0, 0] <= 600 + 1e-6

    def test_constraint_table_needs_attribute(self):
        with pytest.raises(SpecificationError, match="attribute or coef"):
            ConstraintSpec.from_records([{"min": 1}])

    def test_unknown_form(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2)
        with pytest.raises(SpecificationError, match="out of range"):
            engine.add_constraint(1, lower=1, forms=[2])
        assert engine.session.n_rows == 0


# ── Read-back ─────────────────────────────────────────────────────────────────


class TestReadBack:
    """Tests for reading assignments."""

    def test_items_before_solve(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, test_length=2)
        with pytest.raises(AssemblyNotSolvedError, match="not been solved"):
            engine.items()

    def test_items_after_infeasible_solve(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, test_length=2)
        engine.add_constraint("content", lower=3, level="algebra")
        result = engine.solve(time_limit=10)
        assert result.status is SolveStatus.INFEASIBLE
        with pytest.raises(AssemblyNotSolvedError) as exc_info:
            engine.selection
        assert exc_info.value.context["status"] == "infeasible"

    def test_items_per_form(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, n_forms=2, test_length=1, max_select=1)
        engine.add_relative_objective("b")
        engine.solve(time_limit=10)
        forms = engine.items()
        assert len(forms) == 2
        assert sorted(forms[0] + forms[1]) == ["I4", "I5"]

    def test_form_out_of_range(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, test_length=1)
        engine.add_relative_objective("b")
        engine.solve(time_limit=10)
        with pytest.raises(SpecificationError):
            engine.items(3)

    def test_resolve_after_more_declarations(self, tiny_pool):
        engine = AssemblyEngine(tiny_pool, test_length=2)
        engine.add_relative_objective("b")
        engine.solve(time_limit=10)
        assert engine.items(0) == ["I4", "I5"]

        engine.add_fixed_value(["I5"], lower=0, upper=0)
        engine.solve(time_limit=10)
        assert engine.items(0) == ["I3", "I4"]


# ── End-to-end ────────────────────────────────────────────────────────────────


@pytest.mark.slow
def test_parallel_forms_balance_mean_difficulty():
    """Six forms of ten from 100 items, no reuse, maximin on difficulty."""
    pool = generate_item_pool(n_items=100, seed=42)
    engine = AssemblyEngine(pool, n_forms=6, test_length=10, max_select=1)
    engine.add_relative_objective("b", mode="max")

    result = engine.solve(time_limit=30, gap=0.01)

    assert result.success
    assert _form_counts(engine) == [10] * 6
    assert engine.selection.sum(axis=1).max() <= 1
    means = engine.evaluate("b")[0] / 10
    assert means.max() - means.min() < 0.1
