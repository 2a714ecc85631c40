"""
Phylogenetic likelihood and stochastic substitution mapping.

The process is stateless with respect to model parameters: every operation
receives the current codon matrices, the site-to-component allocation and the
branch lengths. It owns the current substitution mapping only, stored in
relative branch time so that the path sufficient statistics follow branch
lengths changed by Gibbs moves without resampling.
"""

import numpy as np
from scipy.stats import poisson

from ..errors import NumericalInstabilityError
from ..io.sequences import Alignment, N_CODONS
from ..io.trees import Tree
from .distributions import sample_categorical_rows


# Tail mass of the Poisson number of uniformization events that is ignored
UNIFORMIZATION_TAIL = 1e-12


def _sample_index(rng: np.random.Generator, weights: np.ndarray) -> int:
    cumulative = np.cumsum(weights)
    i = int(np.searchsorted(cumulative, rng.random() * cumulative[-1], side='right'))
    return min(i, len(weights) - 1)


class UniformizationSampler:
    """
    Endpoint-conditioned path sampling for one rate matrix.

    With mu the largest leaving rate and R = I + Q/mu, the number of events
    on a branch of length t ending in state b is drawn with weights
    Pois(n; mu*t) * R^n[a, b]; intermediate states then follow
    R[s, x] * R^(n-i)[x, b] and event times are sorted uniforms. Events
    that do not change state are virtual and are dropped by the caller.
    """

    def __init__(self, Q: np.ndarray):
        self.n_states = Q.shape[0]
        self.mu = float(-Q.diagonal().min())
        if self.mu <= 0:
            raise ValueError("rate matrix has no positive leaving rate")
        self.R = np.eye(self.n_states) + Q / self.mu
        self._powers = np.eye(self.n_states)[np.newaxis, :, :]

    def _ensure_powers(self, n: int) -> None:
        if n < len(self._powers):
            return
        powers = list(self._powers)
        while len(powers) <= n:
            powers.append(powers[-1] @ self.R)
        self._powers = np.array(powers)

    def sample(self, a: int, b: int, t: float, rng: np.random.Generator):
        """
        Returns
        -------
        states : list[int]
            Visited states, starting with a and ending with b
        times : ndarray
            Event times as fractions of the branch (one fewer than states)
        """
        mut = self.mu * t
        n_max = int(poisson.ppf(1.0 - UNIFORMIZATION_TAIL, mut)) + 1
        self._ensure_powers(n_max)
        counts = np.arange(n_max + 1)
        weights = poisson.pmf(counts, mut) * self._powers[:n_max + 1, a, b]
        if not weights.sum() > 0:
            raise NumericalInstabilityError(
                f"no path from state {a} to state {b} over time {t}"
            )
        n = int(counts[_sample_index(rng, weights)])

        states = [a]
        current = a
        for i in range(1, n + 1):
            probs = self.R[current] * self._powers[n - i][:, b]
            current = _sample_index(rng, probs)
            states.append(current)
        times = np.sort(rng.random(n))
        return states, times


class PhyloProcess:
    """
    Pruning likelihood and substitution mapping of a codon alignment on a tree.

    Parameters
    ----------
    tree : Tree
        Rooted tree whose leaf names match the alignment
    alignment : Alignment
        Codon alignment; gaps and unknown codons are treated as missing

    Attributes
    ----------
    root_states : ndarray of int, shape (n_sites,)
    seg_site, seg_branch, seg_state, seg_frac : ndarray
        Time segments of the mapping: site, branch, state, and duration as a
        fraction of the branch
    jump_site, jump_branch, jump_from, jump_to : ndarray of int
        Substitution events of the mapping
    """

    def __init__(self, tree: Tree, alignment: Alignment):
        missing = set(tree.leaf_names) - set(alignment.names)
        if missing:
            raise ValueError(f"Tree leaves not found in alignment: {sorted(missing)}")
        extra = set(alignment.names) - set(tree.leaf_names)
        if extra:
            raise ValueError(f"Alignment sequences not found in tree: {sorted(extra)}")

        self.tree = tree
        self.alignment = alignment
        self.n_sites = alignment.n_sites
        self.n_states = N_CODONS
        self.n_branches = tree.n_branches

        self._postorder = tree.postorder()
        self._branch_nodes = tree.branch_nodes()
        self._preorder_branches = [node for node in tree.preorder() if not node.is_root]
        rows = {name: i for i, name in enumerate(alignment.names)}
        self._leaf_codes = {
            node: alignment.sequences[rows[node.name]].astype(int)
            for node in self._postorder if node.is_leaf
        }

        self.root_states = np.zeros(self.n_sites, dtype=int)
        self._set_mapping([], [])
        self.has_mapping = False

    def _set_mapping(self, segments, jumps) -> None:
        def stack(parts, column, dtype):
            if not parts:
                return np.zeros(0, dtype=dtype)
            return np.concatenate([part[column] for part in parts]).astype(dtype)

        self.seg_site = stack(segments, 0, int)
        self.seg_branch = stack(segments, 1, int)
        self.seg_state = stack(segments, 2, int)
        self.seg_frac = stack(segments, 3, float)
        self.jump_site = stack(jumps, 0, int)
        self.jump_branch = stack(jumps, 1, int)
        self.jump_from = stack(jumps, 2, int)
        self.jump_to = stack(jumps, 3, int)

    @staticmethod
    def _groups(allocation: np.ndarray, sites: np.ndarray):
        values = allocation[sites]
        for k in np.unique(values):
            yield int(k), sites[values == k]

    def _leaf_partials(self, node, sites: np.ndarray) -> np.ndarray:
        codes = self._leaf_codes[node][sites]
        observed = (codes >= 0) & (codes < N_CODONS)
        L = np.zeros((len(sites), self.n_states))
        L[np.flatnonzero(observed), codes[observed]] = 1.0
        L[~observed] = 1.0
        return L

    def _transition_matrices(self, matrix, branch_lengths: np.ndarray) -> dict:
        return {
            node: matrix.transition_matrix(branch_lengths[node.index])
            for node in self._branch_nodes
        }

    def _prune(self, sites: np.ndarray, P: dict):
        """Conditional likelihoods of every node, rescaled per site."""
        partials = {}
        log_scale = np.zeros(len(sites))
        for node in self._postorder:
            if node.is_leaf:
                partials[node] = self._leaf_partials(node, sites)
                continue
            L = np.ones((len(sites), self.n_states))
            for child in node.children:
                L *= partials[child] @ P[child].T
            scale = L.max(axis=1)
            scale = np.where(scale > 0, scale, 1.0)
            L /= scale[:, np.newaxis]
            log_scale += np.log(scale)
            partials[node] = L
        return partials, log_scale

    def site_log_likelihoods(self, matrices, allocation: np.ndarray,
                             branch_lengths: np.ndarray) -> np.ndarray:
        """Log-likelihood of every site under the matrix of its component."""
        result = np.zeros(self.n_sites)
        for k, sites in self._groups(np.asarray(allocation), np.arange(self.n_sites)):
            matrix = matrices[k]
            partials, log_scale = self._prune(sites, self._transition_matrices(matrix, branch_lengths))
            with np.errstate(divide='ignore'):
                result[sites] = np.log(partials[self.tree.root] @ matrix.stationary) + log_scale
        return result

    def log_likelihood(self, matrices, allocation: np.ndarray, branch_lengths: np.ndarray) -> float:
        return float(self.site_log_likelihoods(matrices, allocation, branch_lengths).sum())

    def resample_mapping(self, matrices, allocation: np.ndarray, branch_lengths: np.ndarray,
                         rng: np.random.Generator, frac: float = 1.0) -> None:
        """
        Draw node states and substitution histories from their posterior.

        Parameters
        ----------
        frac : float
            Fraction of sites to resample (each site independently); all
            sites are resampled when no mapping exists yet
        """
        if frac >= 1.0 or not self.has_mapping:
            selected = np.arange(self.n_sites)
        else:
            selected = np.flatnonzero(rng.random(self.n_sites) < frac)
            if len(selected) == 0:
                return

        keep_seg = ~np.isin(self.seg_site, selected)
        keep_jump = ~np.isin(self.jump_site, selected)
        segments = [(self.seg_site[keep_seg], self.seg_branch[keep_seg],
                     self.seg_state[keep_seg], self.seg_frac[keep_seg])]
        jumps = [(self.jump_site[keep_jump], self.jump_branch[keep_jump],
                  self.jump_from[keep_jump], self.jump_to[keep_jump])]

        root = self.tree.root
        for k, sites in self._groups(np.asarray(allocation), selected):
            matrix = matrices[k]
            P = self._transition_matrices(matrix, branch_lengths)
            partials, _ = self._prune(sites, P)

            states = {}
            probs = partials[root] * matrix.stationary[np.newaxis, :]
            states[root] = sample_categorical_rows(rng, probs / probs.sum(axis=1, keepdims=True))
            for node in self._preorder_branches:
                probs = P[node][states[node.parent]] * partials[node]
                states[node] = sample_categorical_rows(rng, probs / probs.sum(axis=1, keepdims=True))
            self.root_states[sites] = states[root]

            sampler = UniformizationSampler(matrix.Q)
            for node in self._branch_nodes:
                t = branch_lengths[node.index]
                starts = states[node.parent]
                ends = states[node]
                for site, a, b in zip(sites, starts, ends):
                    path, times = sampler.sample(int(a), int(b), t, rng)
                    n = len(path)
                    fractions = np.diff(np.concatenate(([0.0], times, [1.0])))
                    segments.append((np.full(n, site), np.full(n, node.index), np.array(path), fractions))
                    changes = [i for i in range(1, n) if path[i] != path[i - 1]]
                    if changes:
                        m = len(changes)
                        jumps.append((
                            np.full(m, site),
                            np.full(m, node.index),
                            np.array([path[i - 1] for i in changes]),
                            np.array([path[i] for i in changes]),
                        ))

        self._set_mapping(segments, jumps)
        self.has_mapping = True

    def add_path_suffstat(self, suffstats, branch_lengths: np.ndarray) -> None:
        """Add per-site root counts, substitution counts and waiting times."""
        suffstats.root_count[np.arange(self.n_sites), self.root_states] += 1
        np.add.at(suffstats.pair_count, (self.jump_site, self.jump_from, self.jump_to), 1)
        np.add.at(
            suffstats.waiting_time,
            (self.seg_site, self.seg_state),
            self.seg_frac * branch_lengths[self.seg_branch],
        )

    def add_length_suffstat(self, suffstats, matrices, allocation: np.ndarray) -> None:
        """
        Add per-branch substitution counts and leaving rates.

        beta[j] is the integral over branch j of the leaving rate of the
        current state, per unit branch length, so that the mapping
        likelihood of length l_j is proportional to l_j^count * exp(-beta l_j).
        """
        np.add.at(suffstats.count, self.jump_branch, 1)
        components = np.asarray(allocation)[self.seg_site]
        diagonals = np.zeros((max(len(matrices), 1), self.n_states))
        for k in np.unique(components):
            diagonals[k] = matrices[k].diagonal
        rates = -diagonals[components, self.seg_state]
        np.add.at(suffstats.beta, self.seg_branch, rates * self.seg_frac)

    def total_substitutions(self) -> int:
        return len(self.jump_site)
