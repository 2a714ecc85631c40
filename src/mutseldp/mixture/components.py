"""
Owned arrays of per-component parameters, and read-only mixture views.
"""

import numpy as np

from ..core.distributions import dirichlet_sample, log_dirichlet_density, log_gamma_density


class ComponentArray:
    """
    Owner of one parameter (scalar or vector) per mixture component.

    The backing ndarray is indexed by component along its first axis. Entries
    returned by ``__getitem__`` are views that may be modified in place.
    """

    def __init__(self, values):
        self.values = np.array(values, dtype=float)

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, k):
        return self.values[k]

    def __setitem__(self, k, value) -> None:
        self.values[k] = value

    def swap(self, i: int, j: int) -> None:
        self.values[[i, j]] = self.values[[j, i]]

    def copy_from(self, other: "ComponentArray") -> None:
        self.values[...] = other.values


class IIDDirichletArray(ComponentArray):
    """
    Simplex vectors drawn i.i.d. from Dirichlet(concentration * center).
    """

    def __init__(self, size: int, center: np.ndarray, concentration: float):
        self.center = np.array(center, dtype=float)
        self.concentration = float(concentration)
        super().__init__(np.tile(self.center, (size, 1)))

    def prior_resample(self, rng: np.random.Generator, indices=None) -> None:
        if indices is None:
            indices = range(len(self))
        for k in indices:
            self.values[k] = dirichlet_sample(rng, self.center, self.concentration)

    def log_prob(self, k: int) -> float:
        return log_dirichlet_density(self.values[k], self.center, self.concentration)


class IIDGammaArray(ComponentArray):
    """Positive scalars drawn i.i.d. from Gamma(shape, rate)."""

    def __init__(self, size: int, initial: float, shape: float, rate: float):
        self.shape = float(shape)
        self.rate = float(rate)
        super().__init__(np.full(size, float(initial)))

    def prior_resample(self, rng: np.random.Generator, indices=None) -> None:
        if indices is None:
            indices = range(len(self))
        for k in indices:
            self.values[k] = rng.gamma(self.shape, 1.0 / self.rate)

    def log_prob(self, k: int) -> float:
        return float(log_gamma_density(self.values[k], self.shape, self.rate))


class MixtureView:
    """
    Read-only view ``owner[allocation[k]]``.

    Views hold references to the owner and the allocation, not copies; they
    are built on demand and not kept across sweeps.
    """

    def __init__(self, owner: ComponentArray, allocation):
        self.owner = owner
        self.allocation = allocation

    def __len__(self) -> int:
        return len(self.allocation)

    def __getitem__(self, k: int):
        return self.owner[self.allocation[k]]


class MultiDirichletArray(ComponentArray):
    """
    Simplex vectors, each drawn from its own Dirichlet(concentration * center).

    Centers and concentrations are supplied per entry through mixture views
    over the base components.
    """

    def __init__(self, size: int, dim: int):
        super().__init__(np.full((size, dim), 1.0 / dim))

    def prior_resample(self, rng: np.random.Generator, centers: MixtureView,
                       concentrations: MixtureView, indices=None) -> None:
        if indices is None:
            indices = range(len(self))
        for k in indices:
            self.values[k] = dirichlet_sample(rng, centers[k], concentrations[k])

    def log_prob(self, k: int, centers: MixtureView, concentrations: MixtureView) -> float:
        return log_dirichlet_density(self.values[k], centers[k], concentrations[k])
