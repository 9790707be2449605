"""
CAT simulation for validating adaptive testing configurations.

Simulates N examinees with known ability levels taking adaptive tests through
``CATSessionManager`` and collects recovery and efficiency metrics: bias,
RMSE, test length, final SE, stopping-reason counts and per-item exposure.

References:
    - Weiss, D. J. (2004). Computerized adaptive testing for effective and
      efficient measurement in counseling and education.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from cbtkit.core.cat.engine import CATRules, CATSessionManager
from cbtkit.core.cat.exposure_control import ExposureMonitor
from cbtkit.core.irt.model import ResponseModel
from cbtkit.models.pool import ItemId, ItemPool

logger = logging.getLogger(__name__)

# Ability bands for stratified analysis
ABILITY_BANDS = [
    ("Very Low", -np.inf, -1.2),
    ("Low", -1.2, -0.4),
    ("Average", -0.4, 0.4),
    ("High", 0.4, 1.2),
    ("Very High", 1.2, np.inf),
]


@dataclass
class SimulationConfig:
    """Configuration for a CAT simulation run."""

    n_examinees: int = 200
    theta_mean: float = 0.0  # Mean of the true-ability distribution
    theta_sd: float = 1.0  # SD of the true-ability distribution
    seed: int = 42


@dataclass
class ExamineeResult:
    """Per-examinee simulation results."""

    true_theta: float
    estimated_theta: float
    final_se: float
    bias: float  # estimated_theta - true_theta
    items_administered: int
    stopping_reason: str
    administered_item_ids: List[ItemId] = field(default_factory=list)


@dataclass
class BandMetrics:
    """Metrics for one ability band."""

    label: str
    theta_range: Tuple[float, float]
    n: int
    mean_items: float
    mean_se: float
    mean_bias: float
    rmse: float


@dataclass
class SimulationResult:
    """Aggregate simulation results."""

    config: SimulationConfig
    examinee_results: List[ExamineeResult]
    mean_items: float
    median_items: float
    mean_se: float
    mean_bias: float
    rmse: float
    band_metrics: List[BandMetrics]
    stopping_reason_counts: Dict[str, int]
    exposure_rates: Dict[ItemId, float]


def run_simulation(
    pool: ItemPool,
    rules_factory=None,
    config: Optional[SimulationConfig] = None,
    model: Optional[ResponseModel] = None,
) -> SimulationResult:
    """
    Run a Monte Carlo CAT simulation.

    For each simulated examinee:
    1. Draw true_theta from N(config.theta_mean, config.theta_sd)
    2. Run a full session with the manager
    3. Record an ExamineeResult

    Args:
        pool: Item pool.
        rules_factory: Zero-argument callable returning fresh ``CATRules``
            per examinee (selectors may keep per-test state); default rules
            when omitted.
        config: Simulation configuration.
        model: Response model.

    Returns:
        SimulationResult with per-examinee and aggregate metrics.
    """
    config = config or SimulationConfig()
    if config.n_examinees <= 0:
        raise ValueError(f"n_examinees must be positive, got {config.n_examinees}")
    rules_factory = rules_factory or CATRules

    logger.info(
        f"Starting CAT simulation: N={config.n_examinees}, "
        f"theta ~ N({config.theta_mean}, {config.theta_sd}²)"
    )

    rng = np.random.default_rng(config.seed)
    monitor = ExposureMonitor()
    true_thetas = rng.normal(loc=config.theta_mean, scale=config.theta_sd, size=config.n_examinees)

    examinee_results = []
    for examinee_id, true_theta in enumerate(true_thetas, start=1):
        manager = CATSessionManager(
            pool,
            rules=rules_factory(),
            model=model,
            seed=int(rng.integers(2**31)),
            monitor=monitor,
        )
        result = manager.run(true_theta=float(true_theta), session_id=f"sim-{examinee_id}")
        examinee_results.append(
            ExamineeResult(
                true_theta=float(true_theta),
                estimated_theta=result.theta,
                final_se=result.se,
                bias=result.theta - float(true_theta),
                items_administered=result.items_administered,
                stopping_reason=result.stop_reason or "unknown",
                administered_item_ids=result.item_ids,
            )
        )
        if examinee_id % 100 == 0:
            logger.info(f"Completed {examinee_id}/{config.n_examinees} examinees")

    monitor.check_and_alert()
    return _aggregate_results(config, examinee_results, monitor.get_exposure_rates())


def _aggregate_results(
    config: SimulationConfig,
    examinee_results: List[ExamineeResult],
    exposure_rates: Dict[ItemId, float],
) -> SimulationResult:
    if not examinee_results:
        raise ValueError("Cannot aggregate results from empty examinee list")

    items = np.array([r.items_administered for r in examinee_results])
    ses = np.array([r.final_se for r in examinee_results])
    biases = np.array([r.bias for r in examinee_results])

    stopping_reason_counts: Dict[str, int] = {}
    for r in examinee_results:
        stopping_reason_counts[r.stopping_reason] = stopping_reason_counts.get(r.stopping_reason, 0) + 1

    result = SimulationResult(
        config=config,
        examinee_results=examinee_results,
        mean_items=float(items.mean()),
        median_items=float(np.median(items)),
        mean_se=float(ses.mean()),
        mean_bias=float(biases.mean()),
        rmse=float(np.sqrt(np.mean(biases**2))),
        band_metrics=compute_band_metrics(examinee_results),
        stopping_reason_counts=stopping_reason_counts,
        exposure_rates=exposure_rates,
    )
    logger.info(
        f"Simulation complete: mean_items={result.mean_items:.1f}, "
        f"mean_SE={result.mean_se:.3f}, bias={result.mean_bias:.3f}, RMSE={result.rmse:.3f}"
    )
    return result


def compute_band_metrics(examinee_results: List[ExamineeResult]) -> List[BandMetrics]:
    """
    Metrics per ability band.

    Bands are defined by true_theta (not estimated theta) to avoid
    regression-to-the-mean artifacts. Empty bands report zeros.
    """
    metrics = []
    for label, low, high in ABILITY_BANDS:
        members = [r for r in examinee_results if low <= r.true_theta < high]
        if not members:
            metrics.append(BandMetrics(label, (low, high), 0, 0.0, 0.0, 0.0, 0.0))
            continue
        biases = np.array([r.bias for r in members])
        metrics.append(
            BandMetrics(
                label=label,
                theta_range=(low, high),
                n=len(members),
                mean_items=float(np.mean([r.items_administered for r in members])),
                mean_se=float(np.mean([r.final_se for r in members])),
                mean_bias=float(biases.mean()),
                rmse=float(np.sqrt(np.mean(biases**2))),
            )
        )
    return metrics
