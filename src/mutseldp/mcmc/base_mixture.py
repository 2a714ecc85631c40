"""
Base distribution of the amino-acid fitness mixture.

The base distribution is itself a stick-breaking mixture of Dirichlet
distributions, each with its own center (a point of the 20-simplex) and
concentration.
"""

from typing import Optional

import numpy as np
from scipy.special import gammaln

from ..core.distributions import entropy
from ..core.suffstat import DirichletSuffStatArray
from ..io.sequences import N_AMINO_ACIDS
from ..mixture import AllocationVector, IIDDirichletArray, IIDGammaArray, MixtureLevel, StickBreakingProcess
from .config import ModelConfig
from .diagnostics import MoveStats
from .moves import profile_move, scaling_move


# Initial concentration of every base component
INITIAL_BASE_CONCENTRATION = 20.0


class BaseMixture:
    """
    Stick-breaking mixture of Dirichlet components (centers and concentrations).

    Parameters
    ----------
    size : int
        Truncation level (baseNcat)
    config : ModelConfig
        Hyperparameters and move counts
    rng : numpy.random.Generator
    n_units : int, optional
        Number of fitness components allocated to this mixture. When given,
        the mixture owns the allocation vector (single-gene use); otherwise
        occupancies are set from outside.
    """

    def __init__(self, size: int, config: ModelConfig, rng: np.random.Generator,
                 n_units: Optional[int] = None):
        self.size = size
        self.config = config
        self.rng = rng

        self.kappa = config.basekappa
        self.weights = StickBreakingProcess(size, self.kappa)
        self.weights.prior_resample(rng)

        self.hypercenter = np.full(N_AMINO_ACIDS, 1.0 / N_AMINO_ACIDS)
        self.hyperinvconc = config.base_hyperinvconc
        self.centers = IIDDirichletArray(size, self.hypercenter, 1.0 / self.hyperinvconc)

        self.conc_hypermean = config.base_conc_hypermean
        self.conc_hyperinvshape = config.base_conc_hyperinvshape
        shape = 1.0 / self.conc_hyperinvshape
        self.concentrations = IIDGammaArray(
            size, INITIAL_BASE_CONCENTRATION, shape, shape / self.conc_hypermean
        )

        self.suffstat = DirichletSuffStatArray(size, N_AMINO_ACIDS)

        self.allocation = None
        if n_units is not None:
            self.allocation = AllocationVector(n_units, size)
            self.allocation.sample_from_weights(self.weights.weights, rng)

        self.level = MixtureLevel("base", self.weights, self.allocation)
        self.level.register(self.centers, self.concentrations, self.suffstat)

    @property
    def occupancy(self):
        return self.level.occupancy

    @property
    def n_cluster(self) -> int:
        return self.level.n_occupied

    def set_kappa(self, kappa: float) -> None:
        self.kappa = float(kappa)
        self.weights.set_kappa(self.kappa)

    # Priors

    def kappa_log_prior(self, kappa: Optional[float] = None) -> float:
        if kappa is None:
            kappa = self.kappa
        return -kappa / 10

    def component_log_prior(self, k: int) -> float:
        return self.centers.log_prob(k) + self.concentrations.log_prob(k)

    def log_prior(self) -> float:
        total = 0.0
        if self.size > 1:
            total += self.kappa_log_prior() + self.weights.log_prob(self.kappa)
        total += sum(self.component_log_prior(k) for k in range(self.size))
        return total

    def suffstat_log_prob(self, k: int) -> float:
        return self.suffstat.log_prob(k, self.centers[k], self.concentrations[k])

    def log_prob(self, k: int) -> float:
        """Prior of component k plus the Dirichlet density of its profiles."""
        return self.component_log_prior(k) + self.suffstat_log_prob(k)

    # Sufficient statistics

    def collect_suffstat(self, fitness, allocation: np.ndarray) -> None:
        self.suffstat.clear()
        for i, k in enumerate(allocation):
            self.suffstat.add_profile(k, fitness[i])

    def allocation_log_likelihoods(self, fitness: np.ndarray) -> np.ndarray:
        """
        Log Dirichlet density of every profile under every base component.

        Returns
        -------
        ndarray, shape (len(fitness), size)
        """
        alpha = self.concentrations.values[:, np.newaxis] * self.centers.values
        log_norm = gammaln(alpha.sum(axis=1)) - gammaln(alpha).sum(axis=1)
        return np.log(fitness) @ (alpha - 1).T + log_norm[np.newaxis, :]

    # Moves

    def resample_allocation(self, fitness: np.ndarray, rng: np.random.Generator) -> None:
        self.level.resample_allocation(self.allocation_log_likelihoods(fitness), rng)

    def resample_empty(self, rng: np.random.Generator) -> None:
        empty = np.flatnonzero(self.occupancy.counts == 0)
        self.centers.prior_resample(rng, empty)
        self.concentrations.prior_resample(rng, empty)

    def move_centers(self, tuning: float, n: int, rng: np.random.Generator,
                     stats: Optional[MoveStats] = None) -> None:
        for k in self.occupancy.occupied():
            profile_move(
                self.centers[k], lambda k=k: self.log_prob(k), tuning, n, 1, rng,
                stats=stats, name=f"basecenter({tuning},{n})",
            )

    def move_concentrations(self, tuning: float, rng: np.random.Generator,
                            stats: Optional[MoveStats] = None) -> None:
        for k in self.occupancy.occupied():
            def log_prob(c, k=k):
                self.concentrations[k] = c
                return self.log_prob(k)

            current = self.concentrations[k]
            new = scaling_move(current, log_prob, tuning, 1, rng, stats, f"baseconc({tuning})")
            self.concentrations[k] = new

    def move_components(self, nrep: int, rng: np.random.Generator,
                        stats: Optional[MoveStats] = None) -> None:
        for _ in range(nrep):
            self.move_centers(1.0, 1, rng, stats)
            self.move_centers(1.0, 3, rng, stats)
            self.move_centers(0.3, 3, rng, stats)
            self.move_concentrations(1.0, rng, stats)
            self.move_concentrations(0.3, rng, stats)

    def move_kappa(self, rng: np.random.Generator, stats: Optional[MoveStats] = None) -> None:
        def log_prob(kappa):
            return self.kappa_log_prior(kappa) + self.weights.log_prob(kappa)

        kappa = scaling_move(self.kappa, log_prob, 1.0, 10, rng, stats, "basekappa")
        kappa = scaling_move(kappa, log_prob, 0.3, 10, rng, stats, "basekappa")
        self.set_kappa(kappa)

    def move_mixture(self, nrep: int, rng: np.random.Generator,
                     stats: Optional[MoveStats] = None) -> None:
        """
        Cycles of component moves, prior redraw of empty components, label
        switching, weight resampling and concentration moves.
        """
        for _ in range(nrep):
            self.move_components(self.config.n_base_component_reps, rng, stats)
            self.resample_empty(rng)
            if self.size > 1:
                self.level.label_switching_move(self.config.label_switching_factor, rng, stats)
                self.level.resample_weights(rng)
                self.move_kappa(rng, stats)

    # Summaries

    def mean_concentration(self, n_components: int) -> float:
        """Occupancy-weighted mean concentration, per fitness component."""
        return float(np.dot(self.occupancy.counts, self.concentrations.values)) / n_components

    def mean_center_entropy(self, n_components: int) -> float:
        entropies = np.array([entropy(c) for c in self.centers.values])
        return float(np.dot(self.occupancy.counts, entropies)) / n_components

    def copy_parameters_from(self, other: "BaseMixture") -> None:
        """Take centers, concentrations, sticks and concentration parameter from another mixture."""
        self.centers.copy_from(other.centers)
        self.concentrations.copy_from(other.concentrations)
        self.weights.copy_from(other.weights)
        self.kappa = other.kappa
