"""
Three-parameter logistic (3PL) response model.

    P_i(theta) = c_i + (1 - c_i) / (1 + exp(-D * a_i * (theta - b_i)))

    I_i(theta) = (D * a_i)^2 * (Q_i / P_i) * ((P_i - c_i) / (1 - c_i))^2

All functions are pure and vectorized over ability points and items: an
ability vector of length T and an item parameter vector of length N give a
(T, N) matrix. They are safe to call from any number of sessions at once.

References:
    - Birnbaum, A. (1968). Some latent trait models and their use in
      inferring an examinee's ability.
    - Lord, F. M. (1980). Applications of item response theory to practical
      testing problems.
"""

from typing import Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np
from scipy.special import expit

from cbtkit.core.config import settings
from cbtkit.models.pool import ItemPool

ArrayLike = Union[float, Sequence[float], np.ndarray]

# Probabilities are clipped away from 0 and 1 before taking logs
PROBABILITY_EPS = 1e-10


def probability(
    theta: ArrayLike,
    a: ArrayLike,
    b: ArrayLike,
    c: ArrayLike = 0.0,
    D: float = settings.IRT_SCALING_CONSTANT,
) -> np.ndarray:
    """Probability of a correct response, shape (len(theta), len(a))."""
    t = np.atleast_1d(np.asarray(theta, dtype=float))[:, None]
    a_, b_, c_ = (np.atleast_1d(np.asarray(x, dtype=float))[None, :] for x in (a, b, c))
    return c_ + (1.0 - c_) * expit(D * a_ * (t - b_))


def information(
    theta: ArrayLike,
    a: ArrayLike,
    b: ArrayLike,
    c: ArrayLike = 0.0,
    D: float = settings.IRT_SCALING_CONSTANT,
) -> np.ndarray:
    """Fisher information, shape (len(theta), len(a)); always non-negative."""
    p = probability(theta, a, b, c, D)
    a_ = np.atleast_1d(np.asarray(a, dtype=float))[None, :]
    c_ = np.atleast_1d(np.asarray(c, dtype=float))[None, :]
    p = np.clip(p, PROBABILITY_EPS, 1.0 - PROBABILITY_EPS)
    return (D * a_) ** 2 * ((1.0 - p) / p) * ((p - c_) / (1.0 - c_)) ** 2


def log_likelihood(
    theta: ArrayLike,
    responses: ArrayLike,
    a: ArrayLike,
    b: ArrayLike,
    c: ArrayLike = 0.0,
    D: float = settings.IRT_SCALING_CONSTANT,
) -> np.ndarray:
    """
    Log-likelihood of a dichotomous response vector, shape (len(theta),).

    Args:
        theta: Ability points.
        responses: 0/1 responses aligned with the item parameters.
    """
    u = np.atleast_1d(np.asarray(responses, dtype=float))[None, :]
    p = np.clip(probability(theta, a, b, c, D), PROBABILITY_EPS, 1.0 - PROBABILITY_EPS)
    return np.sum(u * np.log(p) + (1.0 - u) * np.log(1.0 - p), axis=1)


@runtime_checkable
class ResponseModel(Protocol):
    """Contract for the response model consumed by assembly and adaptive testing."""

    def probability(
        self, theta: ArrayLike, pool: ItemPool, indices: Optional[Sequence[int]] = None
    ) -> np.ndarray:
        ...

    def information(
        self, theta: ArrayLike, pool: ItemPool, indices: Optional[Sequence[int]] = None
    ) -> np.ndarray:
        ...

    def log_likelihood(
        self,
        theta: ArrayLike,
        responses: ArrayLike,
        pool: ItemPool,
        indices: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        ...


class ThreePLModel:
    """3PL response model bound to pool parameter vectors."""

    def __init__(self, D: Optional[float] = None):
        self.D = settings.IRT_SCALING_CONSTANT if D is None else D

    def __repr__(self) -> str:
        return f"ThreePLModel(D={self.D})"

    @staticmethod
    def _params(pool: ItemPool, indices: Optional[Sequence[int]]):
        if indices is None:
            return pool.a, pool.b, pool.c
        idx = np.asarray(indices, dtype=int)
        return pool.a[idx], pool.b[idx], pool.c[idx]

    def probability(
        self, theta: ArrayLike, pool: ItemPool, indices: Optional[Sequence[int]] = None
    ) -> np.ndarray:
        a, b, c = self._params(pool, indices)
        return probability(theta, a, b, c, self.D)

    def information(
        self, theta: ArrayLike, pool: ItemPool, indices: Optional[Sequence[int]] = None
    ) -> np.ndarray:
        a, b, c = self._params(pool, indices)
        return information(theta, a, b, c, self.D)

    def log_likelihood(
        self,
        theta: ArrayLike,
        responses: ArrayLike,
        pool: ItemPool,
        indices: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        a, b, c = self._params(pool, indices)
        return log_likelihood(theta, responses, a, b, c, self.D)

    def test_information(
        self, theta: ArrayLike, pool: ItemPool, indices: Optional[Sequence[int]] = None
    ) -> np.ndarray:
        """Sum of item information over the given items, shape (len(theta),)."""
        if indices is not None and len(indices) == 0:
            return np.zeros(np.atleast_1d(theta).shape[0])
        return self.information(theta, pool, indices).sum(axis=1)

    def simulate(
        self,
        theta: float,
        pool: ItemPool,
        indices: Sequence[int],
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Draw 0/1 responses for the given items at a true ability."""
        p = self.probability(theta, pool, indices)[0]
        return (rng.random(p.shape[0]) < p).astype(int)
