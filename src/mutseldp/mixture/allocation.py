"""
Allocation of data units (sites, or mixture components) to mixture components.
"""

from typing import Optional

import numpy as np

from ..core.distributions import sample_categorical_rows
from ..errors import InvariantViolationError


class AllocationVector:
    """
    Categorical assignment of ``size`` units to ``n_components`` components.

    Values are only changed by Gibbs resampling, by relabelling when two
    components exchange identities, or by a whole permutation of labels.
    """

    def __init__(self, size: int, n_components: int, values: Optional[np.ndarray] = None):
        self.size = size
        self.n_components = n_components
        if values is None:
            self.values = np.zeros(size, dtype=int)
        else:
            self.values = np.array(values, dtype=int)
            self.validate()

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, i):
        return self.values[i]

    def sample_from_weights(self, weights: np.ndarray, rng: np.random.Generator) -> None:
        self.values = rng.choice(self.n_components, size=self.size, p=weights / weights.sum())

    def gibbs_resample(self, probs: np.ndarray, rng: np.random.Generator) -> None:
        """Draw every unit from its row of a (size, n_components) probability matrix."""
        if probs.shape != (self.size, self.n_components):
            raise ValueError(
                f"posterior has shape {probs.shape}, expected {(self.size, self.n_components)}"
            )
        self.values = sample_categorical_rows(rng, probs)

    def relabel(self, i: int, j: int) -> None:
        """Exchange component labels i and j in every entry."""
        at_i = self.values == i
        at_j = self.values == j
        self.values[at_i] = j
        self.values[at_j] = i

    def swap(self, i: int, j: int) -> None:
        """Exchange the entries of units i and j."""
        self.values[[i, j]] = self.values[[j, i]]

    def permute(self, permutation: np.ndarray) -> None:
        """
        Apply a label permutation, where ``permutation[new] = old``.
        """
        inverse = np.argsort(permutation)
        self.values = inverse[self.values]

    def counts(self) -> np.ndarray:
        return np.bincount(self.values, minlength=self.n_components)

    def validate(self) -> None:
        if self.values.shape != (self.size,):
            raise InvariantViolationError(
                f"allocation has shape {self.values.shape}, expected ({self.size},)"
            )
        if self.size and (self.values.min() < 0 or self.values.max() >= self.n_components):
            raise InvariantViolationError(
                f"allocation values out of range [0, {self.n_components})"
            )

    def copy_from(self, other: "AllocationVector") -> None:
        self.values = other.values.copy()
