"""
Ability estimation for Computerized Adaptive Testing.

Five interchangeable estimators share one call signature
(``AbilityEstimator``):

    MLE        argmax_theta L(theta) on [THETA_MIN, THETA_MAX]
    MAP        argmax_theta L(theta) * prior(theta)
    EAP        E[theta | responses] by quadrature (Bock & Mislevy, 1982)
    Hybrid     EAP while the response history is all-correct or
               all-incorrect, MLE afterwards
    FixedStep  current estimate +/- a constant step while the history is
               all-correct or all-incorrect, MLE afterwards

MLE is undefined for an all-correct or all-incorrect history: the
likelihood is monotone and the bounded optimizer runs to the edge of the
ability range. Hybrid and FixedStep exist to cover exactly that case.

Standard errors are 1/sqrt(test information) for MLE, 1/sqrt(information +
prior precision) for MAP and the posterior SD for EAP.

References:
    - Bock, R. D., & Mislevy, R. J. (1982). Adaptive EAP estimation of
      ability in a microcomputer environment.
    - Dodd, B. G. (1990). The effect of item selection procedure and stepsize
      on computerized adaptive attitude measurement using the rating scale
      model.
"""

import logging
import math
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np
from scipy.optimize import minimize_scalar
from scipy.special import logsumexp

from cbtkit.core.config import settings
from cbtkit.core.irt.model import ResponseModel
from cbtkit.models.pool import ItemPool

logger = logging.getLogger(__name__)

# Bounded optimizer tolerance on theta
OPTIMIZER_XATOL = 1e-5


@runtime_checkable
class AbilityEstimator(Protocol):
    """Estimate (theta, se) from the responses to the administered items."""

    def estimate(
        self,
        responses: Sequence[int],
        pool: ItemPool,
        indices: Sequence[int],
        model: ResponseModel,
        current_theta: float,
    ) -> Tuple[float, float]:
        ...


def is_degenerate(responses: Sequence[int]) -> bool:
    """True for an empty, all-correct or all-incorrect response history."""
    return len(set(int(r) for r in responses)) <= 1


def _standard_error(information: float) -> float:
    if information <= 0:
        return math.inf
    return 1.0 / math.sqrt(information)


def estimate_ability_eap(
    responses: Sequence[int],
    pool: ItemPool,
    indices: Sequence[int],
    model: ResponseModel,
    prior_mean: float = settings.CAT_PRIOR_MEAN,
    prior_sd: float = settings.CAT_PRIOR_SD,
    n_points: int = settings.QUADRATURE_POINTS,
) -> Tuple[float, float]:
    """
    Estimate ability using Expected A Posteriori (EAP) with numerical quadrature.

    The EAP estimate is the posterior mean:
        theta_hat = E[theta | responses] = sum(theta_q * p(theta_q | responses))

    Standard error is the posterior standard deviation:
        SE = sqrt(Var[theta | responses])

    Args:
        responses: 0/1 responses aligned with ``indices``.
        pool: Item pool.
        indices: Pool indices of the administered items.
        model: Response model.
        prior_mean: Mean of the Gaussian prior on theta.
        prior_sd: Standard deviation of the Gaussian prior on theta.
        n_points: Number of quadrature points over [THETA_MIN, THETA_MAX].

    Returns:
        Tuple of (theta_estimate, standard_error).
    """
    if prior_sd <= 0:
        raise ValueError(f"prior_sd must be positive, got {prior_sd}")
    if len(responses) == 0:
        return (prior_mean, prior_sd)

    theta_points = np.linspace(settings.THETA_MIN, settings.THETA_MAX, n_points)

    # log N(theta | mu, sigma^2) up to a constant, which cancels on normalization
    log_priors = -((theta_points - prior_mean) ** 2) / (2.0 * prior_sd**2)
    log_likelihoods = model.log_likelihood(theta_points, responses, pool, indices)
    log_posteriors = log_priors + log_likelihoods

    # Normalize using log-sum-exp for numerical stability
    log_norm = logsumexp(log_posteriors)
    if not np.isfinite(log_norm):
        logger.warning(
            "Posterior collapsed to zero at all quadrature points. Returning prior estimate."
        )
        return (prior_mean, prior_sd)
    posterior = np.exp(log_posteriors - log_norm)

    theta_hat = float(np.sum(theta_points * posterior))
    posterior_variance = float(np.sum((theta_points - theta_hat) ** 2 * posterior))
    return (theta_hat, math.sqrt(posterior_variance))


def estimate_ability_mle(
    responses: Sequence[int],
    pool: ItemPool,
    indices: Sequence[int],
    model: ResponseModel,
    theta_range: Tuple[float, float] = (settings.THETA_MIN, settings.THETA_MAX),
) -> Tuple[float, float]:
    """
    Maximum-likelihood estimate on a bounded ability range.

    A degenerate history has no interior maximum; the estimate then lands on
    the edge of ``theta_range``.
    """
    if len(responses) == 0:
        raise ValueError("MLE requires at least one response")

    def negative_log_likelihood(theta: float) -> float:
        return -float(model.log_likelihood(theta, responses, pool, indices)[0])

    result = minimize_scalar(
        negative_log_likelihood,
        bounds=theta_range,
        method="bounded",
        options={"xatol": OPTIMIZER_XATOL},
    )
    theta_hat = float(result.x)
    information = float(model.information(theta_hat, pool, indices).sum())
    return (theta_hat, _standard_error(information))


def estimate_ability_map(
    responses: Sequence[int],
    pool: ItemPool,
    indices: Sequence[int],
    model: ResponseModel,
    prior_mean: float = settings.CAT_PRIOR_MEAN,
    prior_sd: float = settings.CAT_PRIOR_SD,
    theta_range: Tuple[float, float] = (settings.THETA_MIN, settings.THETA_MAX),
) -> Tuple[float, float]:
    """Posterior mode under a Gaussian prior; finite for every response history."""
    if prior_sd <= 0:
        raise ValueError(f"prior_sd must be positive, got {prior_sd}")
    if len(responses) == 0:
        return (prior_mean, prior_sd)

    def negative_log_posterior(theta: float) -> float:
        log_likelihood = float(model.log_likelihood(theta, responses, pool, indices)[0])
        return -log_likelihood + (theta - prior_mean) ** 2 / (2.0 * prior_sd**2)

    result = minimize_scalar(
        negative_log_posterior,
        bounds=theta_range,
        method="bounded",
        options={"xatol": OPTIMIZER_XATOL},
    )
    theta_hat = float(result.x)
    information = float(model.information(theta_hat, pool, indices).sum())
    return (theta_hat, _standard_error(information + 1.0 / prior_sd**2))


class MLEEstimator:
    def __init__(self, theta_range: Optional[Tuple[float, float]] = None):
        self.theta_range = theta_range or (settings.THETA_MIN, settings.THETA_MAX)

    def estimate(self, responses, pool, indices, model, current_theta):
        if len(responses) == 0:
            return (current_theta, math.inf)
        return estimate_ability_mle(responses, pool, indices, model, self.theta_range)


class MAPEstimator:
    def __init__(self, prior_mean: Optional[float] = None, prior_sd: Optional[float] = None):
        self.prior_mean = settings.CAT_PRIOR_MEAN if prior_mean is None else prior_mean
        self.prior_sd = settings.CAT_PRIOR_SD if prior_sd is None else prior_sd

    def estimate(self, responses, pool, indices, model, current_theta):
        return estimate_ability_map(
            responses, pool, indices, model, prior_mean=self.prior_mean, prior_sd=self.prior_sd
        )


class EAPEstimator:
    """Posterior mean over a fixed quadrature grid; the default estimator."""

    def __init__(
        self,
        prior_mean: Optional[float] = None,
        prior_sd: Optional[float] = None,
        n_points: Optional[int] = None,
    ):
        self.prior_mean = settings.CAT_PRIOR_MEAN if prior_mean is None else prior_mean
        self.prior_sd = settings.CAT_PRIOR_SD if prior_sd is None else prior_sd
        self.n_points = settings.QUADRATURE_POINTS if n_points is None else n_points

    def estimate(self, responses, pool, indices, model, current_theta):
        return estimate_ability_eap(
            responses,
            pool,
            indices,
            model,
            prior_mean=self.prior_mean,
            prior_sd=self.prior_sd,
            n_points=self.n_points,
        )


class HybridEstimator:
    """EAP for degenerate histories, MLE once both outcomes have been observed."""

    def __init__(
        self,
        eap: Optional[EAPEstimator] = None,
        mle: Optional[MLEEstimator] = None,
    ):
        self.eap = eap or EAPEstimator()
        self.mle = mle or MLEEstimator()

    def estimate(self, responses, pool, indices, model, current_theta):
        if is_degenerate(responses):
            return self.eap.estimate(responses, pool, indices, model, current_theta)
        return self.mle.estimate(responses, pool, indices, model, current_theta)


class FixedStepEstimator:
    """
    Step the estimate up after all-correct and down after all-incorrect
    histories; use MLE once both outcomes have been observed.
    """

    def __init__(self, step: Optional[float] = None, mle: Optional[MLEEstimator] = None):
        self.step = settings.CAT_FIXED_STEP if step is None else step
        if self.step <= 0:
            raise ValueError(f"step must be positive, got {self.step}")
        self.mle = mle or MLEEstimator()

    def estimate(self, responses, pool, indices, model, current_theta):
        if not is_degenerate(responses):
            return self.mle.estimate(responses, pool, indices, model, current_theta)
        if len(responses) == 0:
            return (current_theta, math.inf)

        direction = 1.0 if int(responses[-1]) == 1 else -1.0
        theta = float(
            np.clip(current_theta + direction * self.step, settings.THETA_MIN, settings.THETA_MAX)
        )
        information = float(model.information(theta, pool, indices).sum())
        return (theta, _standard_error(information))
