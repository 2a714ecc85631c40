"""
Sufficient-statistic containers.

Each container is cleared and refilled at every sweep; none of them is part
of the persisted chain state. Arrays are indexed by site, mixture component
or branch along their first axis.
"""

import numpy as np
from scipy.special import gammaln


class PathSuffStatArray:
    """
    Substitution-path sufficient statistics, one entry per site or component.

    For entry i:

    - ``root_count[i, a]``: number of times state a is found at the root
    - ``pair_count[i, a, b]``: number of a -> b substitutions
    - ``waiting_time[i, a]``: total time spent in state a (branch length units)

    Given a rate matrix Q with stationary distribution pi, the log-probability
    of entry i is

        sum_a root_count[a] log pi[a] + sum_a waiting_time[a] Q[a, a]
        + sum_{a != b} pair_count[a, b] log Q[a, b]
    """

    def __init__(self, size: int, n_states: int):
        self.size = size
        self.n_states = n_states
        self.root_count = np.zeros((size, n_states))
        self.pair_count = np.zeros((size, n_states, n_states))
        self.waiting_time = np.zeros((size, n_states))

    def __len__(self) -> int:
        return self.size

    def clear(self) -> None:
        self.root_count.fill(0.0)
        self.pair_count.fill(0.0)
        self.waiting_time.fill(0.0)

    def add_by_allocation(self, site_suffstats: "PathSuffStatArray", allocation: np.ndarray) -> None:
        """Sum per-site statistics into per-component entries."""
        np.add.at(self.root_count, allocation, site_suffstats.root_count)
        np.add.at(self.pair_count, allocation, site_suffstats.pair_count)
        np.add.at(self.waiting_time, allocation, site_suffstats.waiting_time)

    def add(self, other: "PathSuffStatArray") -> None:
        """Entry-wise addition (used to pool statistics across genes)."""
        if other.size != self.size:
            raise ValueError(f"Cannot add arrays of sizes {other.size} and {self.size}")
        self.root_count += other.root_count
        self.pair_count += other.pair_count
        self.waiting_time += other.waiting_time

    def swap(self, i: int, j: int) -> None:
        for arr in (self.root_count, self.pair_count, self.waiting_time):
            arr[[i, j]] = arr[[j, i]]

    def log_prob(self, i: int, matrix) -> float:
        """Log-probability of entry i under a codon matrix."""
        return float(
            np.dot(self.root_count[i], matrix.log_stationary)
            + np.dot(self.waiting_time[i], matrix.diagonal)
            + np.sum(self.pair_count[i] * matrix.log_rates)
        )

    def log_prob_matrix(self, matrices) -> np.ndarray:
        """
        Log-probability of every entry under every matrix.

        Returns
        -------
        ndarray, shape (size, len(matrices))
        """
        log_stat = np.array([m.log_stationary for m in matrices])
        diag = np.array([m.diagonal for m in matrices])
        log_rates = np.array([m.log_rates.ravel() for m in matrices])
        pairs = self.pair_count.reshape(self.size, -1)
        return self.root_count @ log_stat.T + self.waiting_time @ diag.T + pairs @ log_rates.T

    def total_substitutions(self) -> float:
        return float(self.pair_count.sum())


class OmegaPathSuffStat:
    """
    Gamma-Poisson sufficient statistic for omega.

    ``count`` is the number of nonsynonymous substitutions and ``beta`` the
    integrated nonsynonymous rate divided by omega, so that the path
    log-likelihood as a function of omega is count*log(omega) - beta*omega.
    """

    def __init__(self):
        self.clear()

    def clear(self) -> None:
        self.count = 0.0
        self.beta = 0.0

    def add_suffstat(self, matrix, path_suffstats: PathSuffStatArray, i: int) -> None:
        self.count += float(np.sum(path_suffstats.pair_count[i] * matrix.nonsyn_mask))
        self.beta += float(np.dot(path_suffstats.waiting_time[i], matrix.nonsyn_rate_per_state)) / matrix.omega

    def log_prob(self, omega: float) -> float:
        return self.count * np.log(omega) - self.beta * omega


class PoissonSuffStatArray:
    """
    Poisson sufficient statistics (count, beta), e.g. one per branch.

    The log-likelihood of a rate l for entry i is count[i]*log(l) - beta[i]*l.
    """

    def __init__(self, size: int):
        self.size = size
        self.count = np.zeros(size)
        self.beta = np.zeros(size)

    def clear(self) -> None:
        self.count.fill(0.0)
        self.beta.fill(0.0)

    def add(self, other: "PoissonSuffStatArray") -> None:
        self.count += other.count
        self.beta += other.beta

    def log_prob(self, rates: np.ndarray) -> float:
        return float(np.sum(self.count * np.log(rates) - self.beta * rates))


class GammaSuffStat:
    """Sufficient statistic (sum, sum of logs, n) of i.i.d. positive variables."""

    def __init__(self):
        self.clear()

    def clear(self) -> None:
        self.sum = 0.0
        self.sumlog = 0.0
        self.n = 0

    def add_values(self, values) -> None:
        values = np.asarray(values, dtype=float)
        self.sum += float(values.sum())
        self.sumlog += float(np.log(values).sum())
        self.n += values.size

    def log_prob(self, shape: float, rate: float) -> float:
        """Joint log density of the values under Gamma(shape, rate)."""
        return (
            self.n * (shape * np.log(rate) - gammaln(shape))
            + (shape - 1) * self.sumlog - rate * self.sum
        )


class DirichletSuffStatArray:
    """
    Sufficient statistics of profiles allocated to each Dirichlet component.

    Entry k holds the number of profiles ``n[k]`` and the sum of their logs
    ``sumlog[k]``.
    """

    def __init__(self, size: int, dim: int):
        self.size = size
        self.dim = dim
        self.sumlog = np.zeros((size, dim))
        self.n = np.zeros(size, dtype=int)

    def __len__(self) -> int:
        return self.size

    def clear(self) -> None:
        self.sumlog.fill(0.0)
        self.n.fill(0)

    def add_profile(self, k: int, profile: np.ndarray) -> None:
        self.sumlog[k] += np.log(profile)
        self.n[k] += 1

    def add(self, other: "DirichletSuffStatArray") -> None:
        self.sumlog += other.sumlog
        self.n += other.n

    def swap(self, i: int, j: int) -> None:
        self.sumlog[[i, j]] = self.sumlog[[j, i]]
        self.n[[i, j]] = self.n[[j, i]]

    def log_prob(self, k: int, center: np.ndarray, concentration: float) -> float:
        alpha = concentration * center
        return float(
            self.n[k] * (gammaln(concentration) - gammaln(alpha).sum())
            + np.dot(alpha - 1, self.sumlog[k])
        )


class OccupancySuffStat:
    """Number of data units allocated to each mixture component."""

    def __init__(self, size: int):
        self.size = size
        self.counts = np.zeros(size, dtype=int)

    def clear(self) -> None:
        self.counts.fill(0)

    def add_allocation(self, values: np.ndarray) -> None:
        self.counts += np.bincount(values, minlength=self.size)

    def add(self, other: "OccupancySuffStat") -> None:
        self.counts += other.counts

    def swap(self, i: int, j: int) -> None:
        self.counts[[i, j]] = self.counts[[j, i]]

    def __getitem__(self, k: int) -> int:
        return int(self.counts[k])

    def __len__(self) -> int:
        return self.size

    def occupied(self) -> np.ndarray:
        """Indices of components with at least one allocated unit."""
        return np.flatnonzero(self.counts)

    @property
    def n_occupied(self) -> int:
        return int(np.count_nonzero(self.counts))

    @property
    def total(self) -> int:
        return int(self.counts.sum())
