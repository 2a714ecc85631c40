"""
Mutation-selection codon matrices and their per-component cache.

The rate from codon a to a neighbour codon b, differing by the mutation
x -> y, is

    Q[a, b] = mu[x, y] * omega * S / (1 - exp(-S))   (nonsynonymous)
    Q[a, b] = mu[x, y]                                (synonymous)

with S = log(fitness[aa(b)]) - log(fitness[aa(a)]) and mu the GTR mutation
matrix. The stationary distribution is proportional to the product of the
nucleotide frequencies of the codon times the fitness of its amino acid.
Matrices are not normalised, so nonsynonymous rates are linear in omega.
"""

from typing import Optional

import numpy as np
from scipy.special import logsumexp

from ..core.matrix import eigen_decompose_rev, transition_matrix_from_eigen
from .codon import CodonStateSpace, get_codon_state_space
from .nucleotide import GTRNucMatrix


def fixation_factor(S: np.ndarray) -> np.ndarray:
    """S / (1 - exp(-S)), equal to 1 at S = 0."""
    S = np.asarray(S, dtype=float)
    small = np.abs(S) < 1e-8
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        factor = S / -np.expm1(-S)
    return np.where(small, 1.0 + 0.5 * S, factor)


class AAMutSelOmegaMatrix:
    """
    Codon rate matrix for one amino-acid fitness profile.

    Attributes
    ----------
    Q : ndarray, shape (61, 61)
        Rate matrix (rows sum to zero)
    stationary : ndarray, shape (61,)
        Equilibrium codon frequencies
    log_stationary : ndarray, shape (61,)
    diagonal : ndarray, shape (61,)
        Q[a, a]
    log_rates : ndarray, shape (61, 61)
        log Q[a, b] at neighbour pairs, 0 elsewhere (including the diagonal)
    nonsyn_rate_per_state : ndarray, shape (61,)
        Total nonsynonymous rate out of each codon
    """

    def __init__(
        self,
        nuc_matrix: GTRNucMatrix,
        fitness: np.ndarray,
        omega: float,
        state_space: Optional[CodonStateSpace] = None,
    ):
        self.state_space = state_space or get_codon_state_space()
        self.omega = float(omega)
        self.fitness = np.array(fitness, dtype=float)
        self._eigen = None
        self._build(nuc_matrix)

    def _build(self, nuc_matrix: GTRNucMatrix) -> None:
        ss = self.state_space
        n = ss.n_states
        log_fitness = np.log(self.fitness)

        mu = nuc_matrix.Q[ss.nuc_from, ss.nuc_to]
        S = log_fitness[ss.aa_to] - log_fitness[ss.aa_from]
        rates = np.where(ss.synonymous, mu, mu * self.omega * fixation_factor(S))

        Q = np.zeros((n, n))
        Q[ss.pair_from, ss.pair_to] = rates
        np.fill_diagonal(Q, -Q.sum(axis=1))
        self.Q = Q
        self.diagonal = Q.diagonal().copy()

        log_rates = np.zeros((n, n))
        with np.errstate(divide='ignore'):
            log_rates[ss.pair_from, ss.pair_to] = np.log(rates)
        self.log_rates = log_rates

        log_stat = (
            np.log(nuc_matrix.stationary)[ss.codon_nucleotides].sum(axis=1)
            + log_fitness[ss.codon_aa]
        )
        self.log_stationary = log_stat - logsumexp(log_stat)
        self.stationary = np.exp(self.log_stationary)

        self.nonsyn_mask = ss.nonsyn_mask
        self.nonsyn_rate_per_state = (Q * ss.nonsyn_mask).sum(axis=1)

    @property
    def n_states(self) -> int:
        return self.state_space.n_states

    def eigen(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Reversible eigendecomposition, computed on first use."""
        if self._eigen is None:
            self._eigen = eigen_decompose_rev(self.Q, self.stationary)
        return self._eigen

    def transition_matrix(self, t: float) -> np.ndarray:
        return transition_matrix_from_eigen(*self.eigen(), t)


class CodonMatrixCache:
    """
    One lazily rebuilt codon matrix per mixture component.

    The cache reads fitness profiles from the component array it is attached
    to. Any change to a profile, to omega or to the nucleotide matrix must be
    followed by ``corrupt(k)`` / ``corrupt_all()``; the matrix is then rebuilt
    once, on the next access. ``swap`` exchanges two cached entries and is
    called together with the swap of the corresponding profiles.

    Parameters
    ----------
    nuc_matrix : GTRNucMatrix
        Shared mutation matrix
    fitness : array-like of shape (K, 20)
        Owner of the fitness profiles, indexed by component
    omega : float
    """

    def __init__(self, nuc_matrix: GTRNucMatrix, fitness, omega: float):
        self.nuc_matrix = nuc_matrix
        self.fitness = fitness
        self.omega = float(omega)
        self.state_space = get_codon_state_space()
        self._matrices: list[Optional[AAMutSelOmegaMatrix]] = [None] * len(fitness)
        self.n_builds = 0

    def __len__(self) -> int:
        return len(self._matrices)

    def __getitem__(self, k: int) -> AAMutSelOmegaMatrix:
        matrix = self._matrices[k]
        if matrix is None:
            matrix = AAMutSelOmegaMatrix(self.nuc_matrix, self.fitness[k], self.omega, self.state_space)
            self._matrices[k] = matrix
            self.n_builds += 1
        return matrix

    def is_dirty(self, k: int) -> bool:
        return self._matrices[k] is None

    def corrupt(self, k: int) -> None:
        self._matrices[k] = None

    def corrupt_all(self) -> None:
        self._matrices = [None] * len(self._matrices)

    def set_omega(self, omega: float) -> None:
        self.omega = float(omega)
        self.corrupt_all()

    def swap(self, i: int, j: int) -> None:
        self._matrices[i], self._matrices[j] = self._matrices[j], self._matrices[i]

    def backup(self, k: int) -> Optional[AAMutSelOmegaMatrix]:
        return self._matrices[k]

    def restore(self, k: int, matrix: Optional[AAMutSelOmegaMatrix]) -> None:
        self._matrices[k] = matrix

    def backup_all(self) -> list:
        return list(self._matrices)

    def restore_all(self, matrices: list) -> None:
        self._matrices = list(matrices)

    def matrices(self, indices=None) -> list[AAMutSelOmegaMatrix]:
        """Current matrices for the given components (all by default)."""
        if indices is None:
            indices = range(len(self._matrices))
        return [self[k] for k in indices]
