"""
One level of a stick-breaking mixture, with its label-switching moves.

A ``MixtureLevel`` groups everything that is indexed by the components of a
mixture: the stick-breaking weights, the occupancy counts, and any number of
registered per-component arrays (parameters, sufficient statistics, matrix
caches, allocation entries). Exchanging the identities of two components is
a single operation, ``swap_components``, that updates all of them together.
"""

from typing import Optional

import numpy as np

from ..core.distributions import draw_from_urn, normalized_posterior
from ..core.suffstat import OccupancySuffStat
from ..errors import InvariantViolationError
from .allocation import AllocationVector
from .stickbreaking import StickBreakingProcess


class MixtureLevel:
    """
    Parameters
    ----------
    name : str
        Used in diagnostics and error messages
    weights : StickBreakingProcess
    allocation : AllocationVector, optional
        Allocation of the units of this level to its components. Its values
        are relabelled on every swap. Without it (e.g. a level whose units
        live in other models) occupancies are set with ``set_occupancy``.

    Attributes
    ----------
    permutation : ndarray of int
        Label permutation accumulated since the last ``reset_permutation``,
        with ``permutation[new] = old``
    """

    def __init__(self, name: str, weights: StickBreakingProcess,
                 allocation: Optional[AllocationVector] = None):
        self.name = name
        self.weights = weights
        self.size = weights.size
        self.allocation = allocation
        if allocation is not None and allocation.n_components != self.size:
            raise ValueError(
                f"{name}: allocation has {allocation.n_components} components, expected {self.size}"
            )
        self.occupancy = OccupancySuffStat(self.size)
        self._members = []
        self.permutation = np.arange(self.size)
        self.update_occupancy()

    def register(self, *members) -> None:
        """Add per-component containers (anything with ``swap(i, j)``)."""
        for member in members:
            if len(member) != self.size:
                raise ValueError(f"{self.name}: member has length {len(member)}, expected {self.size}")
            self._members.append(member)

    @property
    def n_occupied(self) -> int:
        return self.occupancy.n_occupied

    def swap_components(self, i: int, j: int, swap_sticks: bool = False) -> None:
        """
        Exchange the identities of components i and j.

        Every registered member, the occupancy counts and the recorded
        permutation are swapped, and the allocation is relabelled. With
        ``swap_sticks`` the stick variates are exchanged as well.
        """
        if i == j:
            return
        for member in self._members:
            member.swap(i, j)
        if self.allocation is not None:
            self.allocation.relabel(i, j)
        self.occupancy.swap(i, j)
        if swap_sticks:
            self.weights.swap_components(i, j)
        self.permutation[[i, j]] = self.permutation[[j, i]]

    def reset_permutation(self) -> None:
        self.permutation = np.arange(self.size)

    def update_occupancy(self) -> None:
        self.occupancy.clear()
        if self.allocation is not None:
            self.occupancy.add_allocation(self.allocation.values)

    def set_occupancy(self, counts: np.ndarray) -> None:
        self.occupancy.counts[:] = counts

    def check_occupancy(self) -> None:
        """Raise InvariantViolationError if occupancies disagree with the allocation."""
        if self.allocation is None:
            return
        self.allocation.validate()
        expected = self.allocation.counts()
        if not np.array_equal(expected, self.occupancy.counts):
            raise InvariantViolationError(
                f"{self.name}: occupancy {self.occupancy.counts.tolist()} "
                f"does not match allocation histogram {expected.tolist()}"
            )

    def resample_weights(self, rng: np.random.Generator) -> None:
        self.weights.gibbs_resample(self.occupancy, rng)

    def resample_allocation(self, log_likelihoods: np.ndarray, rng: np.random.Generator) -> None:
        """
        Gibbs resampling of every unit given its log-likelihood under each component.

        Parameters
        ----------
        log_likelihoods : ndarray, shape (n_units, size)
        """
        probs = normalized_posterior(self.weights.log_weights, log_likelihoods)
        self.allocation.gibbs_resample(probs, rng)
        self.update_occupancy()

    def occupied_swap_move(self, factor: float, rng: np.random.Generator, stats=None) -> float:
        """
        Metropolis swaps of two occupied components.

        The weights are first resampled given occupancies; the swap of
        components c1 and c2 is then accepted with log-probability
        (n[c2] - n[c1]) * log(w[c1] / w[c2]).

        Returns
        -------
        float
            Acceptance rate
        """
        self.resample_weights(rng)
        nrep = int(factor * self.weights.kappa)
        n_occupied = self.n_occupied
        if n_occupied <= 1 or nrep == 0:
            return 0.0

        w = self.weights.weights
        n_accepted = 0
        for _ in range(nrep):
            occupied = self.occupancy.occupied()
            if len(occupied) != n_occupied:
                raise InvariantViolationError(
                    f"{self.name}: found {len(occupied)} occupied components, expected {n_occupied}"
                )
            i1, i2 = draw_from_urn(rng, 2, n_occupied)
            c1 = occupied[i1]
            c2 = occupied[i2]
            n = self.occupancy.counts
            log_metropolis = (n[c2] - n[c1]) * np.log(w[c1] / w[c2])
            accepted = np.log(rng.random()) < log_metropolis
            if accepted:
                n_accepted += 1
                self.swap_components(c1, c2)
            if stats is not None:
                stats.record(f"{self.name}.occupiedswap", accepted)
        return n_accepted / nrep

    def adjacent_swap_move(self, factor: float, rng: np.random.Generator, stats=None) -> float:
        """
        Metropolis swaps of neighbouring components (k, k+1) in stick order.

        The swap carries the stick variates along and is accepted with
        log-probability n[k] * log(1 - V[k+1]) - n[k+1] * log(1 - V[k]).
        """
        self.resample_weights(rng)
        nrep = int(factor * self.weights.kappa)
        if self.size < 3 or nrep == 0:
            return 0.0

        v = self.weights.v
        n_accepted = 0
        for _ in range(nrep):
            c1 = int(rng.random() * (self.size - 2))
            c2 = c1 + 1
            n = self.occupancy.counts
            log_metropolis = n[c1] * np.log1p(-v[c2]) - n[c2] * np.log1p(-v[c1])
            accepted = np.log(rng.random()) < log_metropolis
            if accepted:
                n_accepted += 1
                self.swap_components(c1, c2, swap_sticks=True)
            if stats is not None:
                stats.record(f"{self.name}.adjacentswap", accepted)
        return n_accepted / nrep

    def label_switching_move(self, factor: float, rng: np.random.Generator, stats=None) -> None:
        self.occupied_swap_move(factor, rng, stats)
        self.adjacent_swap_move(factor, rng, stats)
