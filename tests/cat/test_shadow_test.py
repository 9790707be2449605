"""
Tests for shadow-test item selection.
"""

import numpy as np
import pytest

from cbtkit.core.ata.assembler import ConstraintSpec
from cbtkit.core.ata.milp import SolveStatus
from cbtkit.core.cat.content_balancing import track_domain_coverage
from cbtkit.core.cat.engine import CATRules, CATSessionManager
from cbtkit.core.cat.shadow_test import ShadowTestSelector
from cbtkit.core.cat.stopping_rules import StoppingRules
from cbtkit.core.errors import ShadowTestError
from cbtkit.models.pool import generate_item_pool

BLUEPRINT = [
    ConstraintSpec("content", lower=2, level=domain)
    for domain in ("algebra", "geometry", "statistics", "number")
]


def _manager(pool, selector, length=10, seed=3):
    rules = CATRules(
        selector=selector,
        stopping=StoppingRules(min_items=length, max_items=length, se_threshold=None),
    )
    return CATSessionManager(pool, rules=rules, seed=seed)


class TestShadowTestSelector:
    """Tests for ShadowTestSelector."""

    def test_final_test_meets_blueprint(self, pool):
        manager = _manager(pool, ShadowTestSelector(constraints=BLUEPRINT, gap=0.01))
        result = manager.run(true_theta=0.5)

        assert result.items_administered == 10
        assert len(set(result.item_ids)) == 10
        coverage = track_domain_coverage(pool, pool.indices_of(result.item_ids), "content")
        assert all(coverage.get(domain, 0) >= 2 for domain in ("algebra", "geometry", "statistics", "number"))

    def test_shadow_contains_administered_items(self, pool):
        selector = ShadowTestSelector(constraints=BLUEPRINT, gap=0.01)
        manager = _manager(pool, selector)
        session = manager.initialize(true_theta=-0.5)
        for _ in range(4):
            manager.step(session)

        assert len(selector.last_shadow) == 10
        assert set(session.administered[:-1]) <= set(selector.last_shadow)
        assert session.administered[-1] in selector.last_shadow

    def test_configure_hook(self, pool):
        enemies = [1, 2, 3, 4, 5]
        selector = ShadowTestSelector(
            configure=lambda engine: engine.add_enemy_set(enemies), gap=0.01
        )
        result = _manager(pool, selector, length=8).run(true_theta=0.0)
        assert len(set(enemies) & set(result.item_ids)) <= 1

    def test_explicit_test_length(self, pool):
        selector = ShadowTestSelector(test_length=12, gap=0.01)
        manager = _manager(pool, selector, length=5)
        session = manager.initialize(true_theta=0.0)
        manager.step(session)
        assert len(selector.last_shadow) == 12

    def test_infeasible_shadow_raises(self, pool):
        selector = ShadowTestSelector(constraints=[ConstraintSpec("content", lower=11, level="algebra")])
        manager = _manager(pool, selector)
        session = manager.initialize(true_theta=0.0)

        with pytest.raises(ShadowTestError) as exc_info:
            manager.select_next(session)
        assert exc_info.value.status is SolveStatus.INFEASIBLE
        assert "items_administered=0" in str(exc_info.value)

    def test_never_reselects_administered_items(self, pool):
        manager = _manager(pool, ShadowTestSelector(constraints=BLUEPRINT, gap=0.01))
        session = manager.initialize(true_theta=0.3)
        while not session.is_terminated:
            chosen = manager.select_next(session)
            assert chosen
            assert not set(chosen) & set(session.administered)
            assert set(chosen) <= session.remaining
            manager.process_responses(session, chosen)
        assert len(set(session.administered)) == 10

    def test_excluded_items_stay_off_the_shadow_test(self):
        pool = generate_item_pool(n_items=40, seed=11)
        # The items most informative near the starting estimate
        closest = np.argsort(np.abs(pool.b), kind="stable")[:10]
        excluded = [pool[int(i)].id for i in closest]
        selector = ShadowTestSelector(gap=0.01)
        manager = _manager(pool, selector, length=8)
        session = manager.initialize(true_theta=0.0, exclude=excluded)

        while not session.is_terminated:
            chosen = manager.select_next(session)
            assert set(chosen) <= session.remaining
            assert not set(selector.last_shadow) & set(closest.tolist())
            manager.process_responses(session, chosen)

        assert session.num_items == 8
        assert not set(session.administered_ids) & set(excluded)
