"""
Truncated stick-breaking representation of a Dirichlet process.
"""

from typing import Optional

import numpy as np

from ..core.distributions import log_beta_density


# Stick variates are kept strictly below 1 so that log(1 - V) stays finite
V_MAX = 1.0 - 1e-12


class StickBreakingProcess:
    """
    Mixture weights of a Dirichlet process truncated at K components.

    V_1..V_{K-1} ~ Beta(1, kappa) and V_K = 1, with

        w_i = V_i * prod_{j<i} (1 - V_j)

    so that the K weights always sum to one.

    Parameters
    ----------
    size : int
        Truncation level K
    kappa : float
        Concentration parameter
    """

    def __init__(self, size: int, kappa: float = 1.0):
        if size < 1:
            raise ValueError(f"size must be at least 1, got {size}")
        if kappa <= 0:
            raise ValueError(f"kappa must be positive, got {kappa}")
        self.size = size
        self.kappa = float(kappa)
        self.v = np.ones(size)
        self.weights = np.zeros(size)
        self.compute_weights()

    def compute_weights(self) -> None:
        self.v[-1] = 1.0
        remaining = np.concatenate(([1.0], np.cumprod(1.0 - self.v[:-1])))
        self.weights = self.v * remaining

    @property
    def log_weights(self) -> np.ndarray:
        with np.errstate(divide='ignore'):
            return np.log(self.weights)

    def set_kappa(self, kappa: float) -> None:
        self.kappa = float(kappa)

    def prior_resample(self, rng: np.random.Generator) -> None:
        """Draw every stick from its Beta(1, kappa) prior."""
        self.v[:-1] = np.minimum(rng.beta(1.0, self.kappa, size=self.size - 1), V_MAX)
        self.compute_weights()

    def gibbs_resample(self, occupancy, rng: np.random.Generator) -> None:
        """
        Resample the sticks given component occupancies.

        V_i ~ Beta(1 + n_i, kappa + sum_{j>i} n_j)
        """
        counts = np.asarray(getattr(occupancy, 'counts', occupancy), dtype=float)
        if len(counts) != self.size:
            raise ValueError(f"occupancy has length {len(counts)}, expected {self.size}")
        tail = np.cumsum(counts[::-1])[::-1]
        beyond = np.append(tail[1:], 0.0)
        v = rng.beta(1.0 + counts[:-1], self.kappa + beyond[:-1])
        self.v[:-1] = np.minimum(v, V_MAX)
        self.compute_weights()

    def log_prob(self, kappa: Optional[float] = None) -> float:
        """Joint log density of the sticks under Beta(1, kappa)."""
        if kappa is None:
            kappa = self.kappa
        if self.size == 1:
            return 0.0
        return float(np.sum(log_beta_density(self.v[:-1], 1.0, kappa)))

    def swap_components(self, i: int, j: int) -> None:
        self.v[[i, j]] = self.v[[j, i]]
        self.compute_weights()

    def copy_from(self, other: "StickBreakingProcess") -> None:
        if other.size != self.size:
            raise ValueError(f"Cannot copy weights of size {other.size} into size {self.size}")
        self.kappa = other.kappa
        self.v[:] = other.v
        self.compute_weights()
