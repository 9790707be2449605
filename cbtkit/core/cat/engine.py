"""
CATSessionManager: orchestrator for adaptive test sessions.

Drives one session through

    initialized -> (select -> administer -> estimate -> check-stop)* -> terminated

Item selection, ability estimation and stopping are pluggable (``CATRules``).
The manager itself holds no per-examinee state: everything lives in the
``CATSession`` it creates, so one manager can run many sessions over the same
read-only pool.

Two ways to drive a session:

    # simulation: responses drawn from the response model at a true ability
    result = manager.run(true_theta=1.0)

    # live: caller supplies each response
    session = manager.initialize()
    items = manager.select_next(session)
    step = manager.process_responses(session, items, responses=[1])
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple

import numpy as np

from cbtkit.core.cat.ability_estimation import AbilityEstimator, EAPEstimator
from cbtkit.core.cat.exposure_control import ExposureMonitor
from cbtkit.core.cat.item_selection import ItemSelector, MaxInformationSelector
from cbtkit.core.cat.stopping_rules import (
    StoppingDecision,
    StoppingRules,
    check_stopping_criteria,
    project_ability_range,
)
from cbtkit.core.config import settings
from cbtkit.core.errors import CBTError, SpecificationError
from cbtkit.core.irt.model import ResponseModel, ThreePLModel
from cbtkit.models.pool import ItemId, ItemPool

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    INITIALIZED = "initialized"
    IN_PROGRESS = "in_progress"
    TERMINATED = "terminated"


@dataclass
class CATRules:
    """Strategy slots for a test: how to select, estimate and stop."""

    selector: ItemSelector = field(default_factory=MaxInformationSelector)
    estimator: AbilityEstimator = field(default_factory=EAPEstimator)
    stopping: StoppingRules = field(default_factory=StoppingRules)


@dataclass
class CATSession:
    """In-memory state of one adaptive test."""

    session_id: str
    theta: float  # Current ability estimate
    se: float  # Standard error of theta
    remaining: Set[int]  # Pool indices still available
    max_items: int
    true_theta: Optional[float] = None  # Simulation mode only
    administered: List[int] = field(default_factory=list)  # Pool indices, in order
    administered_ids: List[ItemId] = field(default_factory=list)
    responses: List[int] = field(default_factory=list)
    # Estimate recorded after each administration step
    theta_history: List[float] = field(default_factory=list)
    se_history: List[float] = field(default_factory=list)
    status: SessionStatus = SessionStatus.INITIALIZED
    stop_decision: Optional[StoppingDecision] = None

    @property
    def num_items(self) -> int:
        return len(self.administered)

    @property
    def correct_count(self) -> int:
        return sum(self.responses)

    @property
    def stop_reason(self) -> Optional[str]:
        return self.stop_decision.reason if self.stop_decision else None

    @property
    def is_terminated(self) -> bool:
        return self.status is SessionStatus.TERMINATED


@dataclass
class CATStepResult:
    """Result after processing one administration step."""

    item_ids: List[ItemId]
    responses: List[int]
    theta: float
    se: float
    items_administered: int
    should_stop: bool
    stop_reason: Optional[str]


@dataclass
class CATResult:
    """Final test result summary."""

    session_id: str
    theta: float
    se: float
    items_administered: int
    item_ids: List[ItemId]
    responses: List[int]
    correct_count: int
    theta_history: List[float]
    se_history: List[float]
    stop_reason: Optional[str]
    true_theta: Optional[float] = None


class CATSessionManager:
    """
    Runs adaptive sessions over one pool.

    Args:
        pool: Item pool (shared, read-only).
        rules: Selection, estimation and stopping strategies.
        model: Response model.
        seed: Seed for simulated responses and randomized selection.
        monitor: Optional ExposureMonitor fed on every administration.
    """

    def __init__(
        self,
        pool: ItemPool,
        rules: Optional[CATRules] = None,
        model: Optional[ResponseModel] = None,
        seed: Optional[int] = None,
        monitor: Optional[ExposureMonitor] = None,
    ):
        self.pool = pool
        self.rules = rules or CATRules()
        self.model = model or ThreePLModel()
        self.rng = np.random.default_rng(seed)
        self.monitor = monitor

    def initialize(
        self,
        true_theta: Optional[float] = None,
        initial_theta: Optional[float] = None,
        initial_se: Optional[float] = None,
        session_id: Optional[str] = None,
        exclude: Sequence[ItemId] = (),
    ) -> CATSession:
        """
        Start a session.

        Args:
            true_theta: True ability for simulated responses.
            initial_theta: Starting estimate (default CAT_PRIOR_MEAN).
            initial_se: Starting SE (default CAT_PRIOR_SD).
            session_id: Identifier used in logs; generated when omitted.
            exclude: Item ids never to administer (e.g. seen before).
        """
        excluded = set(self.pool.indices_of(exclude))
        session = CATSession(
            session_id=session_id or uuid.uuid4().hex[:12],
            theta=settings.CAT_PRIOR_MEAN if initial_theta is None else initial_theta,
            se=settings.CAT_PRIOR_SD if initial_se is None else initial_se,
            remaining=set(range(len(self.pool))) - excluded,
            max_items=self.rules.stopping.max_items,
            true_theta=true_theta,
        )
        logger.info(
            f"CAT session {session.session_id} initialized: theta={session.theta:.3f}, "
            f"pool={len(session.remaining)} items",
            extra={"session_id": session.session_id},
        )
        return session

    def _require_active(self, session: CATSession) -> None:
        if session.is_terminated:
            raise CBTError(
                "Session is terminated",
                context={"session_id": session.session_id, "reason": session.stop_reason},
            )

    def select_next(self, session: CATSession) -> List[int]:
        """
        Choose the next item(s) as pool indices.

        A testlet is truncated to the items the test still has room for.
        """
        self._require_active(session)
        selected = self.rules.selector.select(session, self.pool, self.model, self.rng)
        room = session.max_items - session.num_items
        selected = list(selected)[:room]
        invalid = [i for i in selected if i not in session.remaining]
        if invalid:
            raise SpecificationError(
                "Selector returned items that are not available",
                context={"session_id": session.session_id, "items": invalid},
            )
        return selected

    def administer(
        self,
        session: CATSession,
        indices: Sequence[int],
        responses: Optional[Sequence[int]] = None,
    ) -> List[int]:
        """
        Record responses to the given items.

        Without ``responses`` the answers are drawn from the response model at
        the session's true ability.
        """
        self._require_active(session)
        indices = list(indices)
        if not indices:
            raise SpecificationError("No items to administer", context={"session_id": session.session_id})
        unavailable = [i for i in indices if i not in session.remaining]
        if unavailable:
            raise SpecificationError(
                "Items already administered or not in the pool",
                context={"session_id": session.session_id, "items": unavailable},
            )

        if responses is None:
            if session.true_theta is None:
                raise SpecificationError(
                    "Simulated administration requires a true ability",
                    context={"session_id": session.session_id},
                )
            responses = self.model.simulate(session.true_theta, self.pool, indices, self.rng).tolist()
        else:
            responses = [int(r) for r in responses]
            if len(responses) != len(indices) or any(r not in (0, 1) for r in responses):
                raise SpecificationError(
                    "Responses must be 0/1, one per administered item",
                    context={"items": len(indices), "responses": responses},
                )

        for index, response in zip(indices, responses):
            item_id = self.pool[index].id
            session.administered.append(index)
            session.administered_ids.append(item_id)
            session.responses.append(response)
            session.remaining.discard(index)
            if self.monitor is not None:
                self.monitor.record_selection(item_id)
        session.status = SessionStatus.IN_PROGRESS
        return responses

    def estimate(self, session: CATSession) -> Tuple[float, float]:
        """Update and record the ability estimate from all responses so far."""
        theta, se = self.rules.estimator.estimate(
            session.responses, self.pool, session.administered, self.model, session.theta
        )
        session.theta = float(theta)
        session.se = float(se)
        session.theta_history.append(session.theta)
        session.se_history.append(session.se)
        return session.theta, session.se

    def check_stop(self, session: CATSession) -> StoppingDecision:
        """Evaluate the stopping rules and terminate the session if one fires."""
        rules = self.rules.stopping
        remaining = sorted(session.remaining)
        remaining_information = (
            self.model.information(session.theta, self.pool, remaining)[0]
            if remaining
            else np.zeros(0)
        )
        projected = None
        if rules.projection:
            projected = project_ability_range(
                self.rules.estimator,
                session.responses,
                self.pool,
                session.administered,
                remaining,
                self.model,
                session.theta,
                session.max_items - session.num_items,
            )

        decision = check_stopping_criteria(
            theta=session.theta,
            se=session.se,
            num_items=session.num_items,
            rules=rules,
            remaining_information=remaining_information,
            projected_range=projected,
        )
        session.stop_decision = decision
        if decision.should_stop:
            session.status = SessionStatus.TERMINATED
        return decision

    def process_responses(
        self,
        session: CATSession,
        indices: Sequence[int],
        responses: Optional[Sequence[int]] = None,
    ) -> CATStepResult:
        """Administer, re-estimate and check the stopping rules."""
        recorded = self.administer(session, indices, responses)
        self.estimate(session)
        decision = self.check_stop(session)

        logger.debug(
            f"CAT step {session.num_items}: items={[self.pool[i].id for i in indices]}, "
            f"responses={recorded}, theta={session.theta:.3f}, se={session.se:.3f}",
            extra={"session_id": session.session_id},
        )
        return CATStepResult(
            item_ids=[self.pool[i].id for i in indices],
            responses=recorded,
            theta=session.theta,
            se=session.se,
            items_administered=session.num_items,
            should_stop=decision.should_stop,
            stop_reason=decision.reason,
        )

    def step(self, session: CATSession) -> CATStepResult:
        """One simulated step: select, draw responses, estimate, check."""
        indices = self.select_next(session)
        if not indices:
            decision = StoppingDecision(
                should_stop=True, reason="pool_exhausted", details={"num_items": session.num_items}
            )
            session.stop_decision = decision
            session.status = SessionStatus.TERMINATED
            return CATStepResult([], [], session.theta, session.se, session.num_items, True, decision.reason)
        return self.process_responses(session, indices)

    def run(
        self,
        true_theta: float,
        initial_theta: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> CATResult:
        """Simulate a full test for one examinee."""
        session = self.initialize(
            true_theta=true_theta, initial_theta=initial_theta, session_id=session_id
        )
        while not session.is_terminated:
            self.step(session)
        return self.finalize(session)

    def finalize(self, session: CATSession) -> CATResult:
        """Summarize a session; counts it for exposure monitoring."""
        if self.monitor is not None:
            self.monitor.record_session()
        session.status = SessionStatus.TERMINATED
        logger.info(
            f"CAT session {session.session_id} complete: theta={session.theta:.3f}, "
            f"se={session.se:.3f}, items={session.num_items}, reason={session.stop_reason}",
            extra={"session_id": session.session_id},
        )
        return CATResult(
            session_id=session.session_id,
            theta=session.theta,
            se=session.se,
            items_administered=session.num_items,
            item_ids=list(session.administered_ids),
            responses=list(session.responses),
            correct_count=session.correct_count,
            theta_history=list(session.theta_history),
            se_history=list(session.se_history),
            stop_reason=session.stop_reason,
            true_theta=session.true_theta,
        )
