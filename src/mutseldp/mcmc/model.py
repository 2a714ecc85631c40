"""
Codon mutation-selection model with a two-level Dirichlet-process mixture of
amino-acid fitness profiles and a single omega.

Sites are allocated to fitness components (a truncated stick-breaking
mixture); each fitness profile is drawn from a base distribution that is
itself a stick-breaking mixture of Dirichlet distributions. Inference is by
MCMC over a stochastic substitution mapping: the mapping is resampled once
per iteration, and all parameters are then moved many times on its
sufficient statistics.
"""

import time
from typing import Optional

import numpy as np
from scipy.special import gammaln

from ..core.distributions import (
    PROFILE_FLOOR,
    dirichlet_sample,
    entropy,
    log_gamma_density,
)
from ..core.phyloprocess import PhyloProcess
from ..core.suffstat import (
    GammaSuffStat,
    OmegaPathSuffStat,
    PathSuffStatArray,
    PoissonSuffStatArray,
)
from ..errors import InvariantViolationError, check_finite
from ..io.sequences import Alignment, N_AMINO_ACIDS, N_CODONS
from ..io.trees import Tree
from ..mixture import (
    AllocationVector,
    MixtureLevel,
    MixtureView,
    MultiDirichletArray,
    StickBreakingProcess,
)
from ..models.mutsel import CodonMatrixCache
from ..models.nucleotide import GTRNucMatrix, N_NUCLEOTIDES, N_RELATIVE_RATES
from ..simulate.codon import MutSelCodonSimulator
from ..simulate.output import SimulationOutput
from .base_mixture import BaseMixture
from .config import ModelConfig
from .diagnostics import MoveStats
from .moves import profile_move, scaling_move
from .stream import TokenReader, format_ints, format_tokens


class MutSelDPOmegaModel:
    """
    Single-gene mutation-selection model with a nested Dirichlet-process
    mixture of fitness profiles.

    Parameters
    ----------
    alignment : Alignment
        Codon alignment
    tree : Tree
        Rooted tree with leaf names matching the alignment
    config : ModelConfig, optional
        Mixture sizes, estimation modes, hyperparameters and move counts
    seed : int, optional
        Seed of the random generator (ignored if ``rng`` is given)
    rng : numpy.random.Generator, optional
        Random generator shared by every move of the model

    Examples
    --------
    >>> model = MutSelDPOmegaModel(alignment, tree, ModelConfig(ncat=10), seed=1)
    >>> model.update()
    >>> for _ in range(100):
    ...     model.move()
    >>> model.omega
    """

    def __init__(
        self,
        alignment: Alignment,
        tree: Tree,
        config: Optional[ModelConfig] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config if config is not None else ModelConfig()
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        rng = self.rng

        self.alignment = alignment
        self.tree = tree
        self.n_sites = alignment.n_sites
        self.ncat = self.config.resolve_ncat(self.n_sites)
        self.basencat = self.config.resolve_basencat()

        self.phyloprocess = PhyloProcess(tree, alignment)
        self.n_branches = tree.n_branches

        # branch lengths: iid Gamma(1, lambda)
        self.lambda_ = self.config.lambda_
        self.branch_lengths = rng.gamma(1.0, 1.0 / self.lambda_, size=self.n_branches)

        # nucleotide mutation process
        relrates = dirichlet_sample(rng, np.full(N_RELATIVE_RATES, 1.0 / N_RELATIVE_RATES), N_RELATIVE_RATES)
        nucstat = dirichlet_sample(rng, np.full(N_NUCLEOTIDES, 1.0 / N_NUCLEOTIDES), N_NUCLEOTIDES)
        self.nuc_matrix = GTRNucMatrix(relrates, nucstat)

        # base mixture, and allocation of fitness components to its components
        self.base = BaseMixture(self.basencat, self.config, rng, n_units=self.ncat)
        self.component_alloc = self.base.allocation

        # site mixture of fitness profiles
        self.kappa = self.config.kappa
        self.weights = StickBreakingProcess(self.ncat, self.kappa)
        self.weights.prior_resample(rng)
        self.fitness = MultiDirichletArray(self.ncat, N_AMINO_ACIDS)
        self.fitness.prior_resample(rng, self.component_centers, self.component_concentrations)
        self.site_alloc = AllocationVector(self.n_sites, self.ncat)
        self.site_alloc.sample_from_weights(self.weights.weights, rng)

        # omega
        self.omega_hypermean = self.config.omega_hypermean
        self.omega_hyperinvshape = self.config.omega_hyperinvshape
        self.omega = self.config.omega

        self.matrices = CodonMatrixCache(self.nuc_matrix, self.fitness, self.omega)

        self.site_suffstat = PathSuffStatArray(self.n_sites, N_CODONS)
        self.component_suffstat = PathSuffStatArray(self.ncat, N_CODONS)
        self.length_suffstat = PoissonSuffStatArray(self.n_branches)
        self.lambda_suffstat = GammaSuffStat()
        self.omega_suffstat = OmegaPathSuffStat()

        self.mixture = MixtureLevel("site", self.weights, self.site_alloc)
        self.mixture.register(self.fitness, self.component_suffstat, self.matrices, self.component_alloc)

        self.stats = MoveStats()
        self.timers = {"total": 0.0, "aa": 0.0, "base": 0.0}

    # ------------------------------------------------------------------
    # Views and accessors

    @property
    def component_centers(self) -> MixtureView:
        """Base center of each fitness component."""
        return MixtureView(self.base.centers, self.component_alloc)

    @property
    def component_concentrations(self) -> MixtureView:
        return MixtureView(self.base.concentrations, self.component_alloc)

    @property
    def occupancy(self):
        return self.mixture.occupancy

    @property
    def n_cluster(self) -> int:
        return self.mixture.n_occupied

    @property
    def base_n_cluster(self) -> int:
        return self.base.n_cluster

    def get_site_profile(self, i: int) -> np.ndarray:
        return self.fitness[self.site_alloc[i]].copy()

    def site_profiles(self) -> np.ndarray:
        """Fitness profile of every site, shape (n_sites, 20)."""
        return self.fitness.values[self.site_alloc.values].copy()

    def total_length(self) -> float:
        return float(self.branch_lengths.sum())

    # ------------------------------------------------------------------
    # Setting and updating

    def update_nuc_matrix(self) -> None:
        self.nuc_matrix.update()
        self.matrices.corrupt_all()

    def update_codon_matrices(self) -> None:
        self.matrices.set_omega(self.omega)

    def update_matrices(self) -> None:
        self.nuc_matrix.update()
        self.update_codon_matrices()

    def update(self, resample_mapping: bool = True) -> None:
        """
        Bring every derived quantity in line with the parameters, then draw
        a fresh substitution mapping (unless ``resample_mapping`` is False).
        """
        self.weights.set_kappa(self.kappa)
        self.base.set_kappa(self.base.kappa)
        self.weights.compute_weights()
        self.base.weights.compute_weights()
        self.base.level.update_occupancy()
        self.mixture.update_occupancy()
        self.update_matrices()
        if resample_mapping:
            self.resample_sub(1.0)

    def set_branch_lengths(self, lengths: np.ndarray) -> None:
        self.branch_lengths[:] = lengths

    def set_omega(self, omega: float) -> None:
        self.omega = float(omega)
        self.update_codon_matrices()

    def set_omega_hyperparameters(self, mean: float, invshape: float) -> None:
        self.omega_hypermean = float(mean)
        self.omega_hyperinvshape = float(invshape)

    def set_nuc_rates(self, relative_rates: np.ndarray, stationary: np.ndarray) -> None:
        self.nuc_matrix.set_rates(relative_rates, stationary)
        self.update_codon_matrices()

    def set_base_mixture(self, base: BaseMixture, permutation: np.ndarray) -> None:
        """
        Take the base mixture parameters of a coordinator, whose labels were
        permuted by ``permutation`` (``permutation[new] = old``) since the
        allocation of this model was last synchronised.
        """
        self.base.copy_parameters_from(base)
        self.component_alloc.permute(permutation)
        self.base.level.update_occupancy()

    # ------------------------------------------------------------------
    # Priors and likelihood

    def branch_lengths_hyper_log_prior(self, lambda_: Optional[float] = None) -> float:
        if lambda_ is None:
            lambda_ = self.lambda_
        return -lambda_ / 10

    def branch_lengths_log_prior(self) -> float:
        return float(np.sum(log_gamma_density(self.branch_lengths, 1.0, self.lambda_)))

    def omega_log_prior(self) -> float:
        alpha = 1.0 / self.omega_hyperinvshape
        beta = alpha / self.omega_hypermean
        return float(log_gamma_density(self.omega, alpha, beta))

    def kappa_log_prior(self, kappa: Optional[float] = None) -> float:
        if kappa is None:
            kappa = self.kappa
        return -kappa / 10

    def fitness_log_prior(self, k: Optional[int] = None) -> float:
        centers = self.component_centers
        concentrations = self.component_concentrations
        if k is not None:
            return self.fitness.log_prob(k, centers, concentrations)
        return sum(self.fitness.log_prob(i, centers, concentrations) for i in range(self.ncat))

    def log_prior(self) -> float:
        total = 0.0
        if self.config.bl_mode.is_local:
            total += self.branch_lengths_hyper_log_prior()
            total += self.branch_lengths_log_prior()
        if self.config.base_mode.is_local:
            total += self.base.log_prior()
        total += self.kappa_log_prior() + self.weights.log_prob(self.kappa)
        total += self.fitness_log_prior()
        if self.config.omega_mode.is_local:
            total += self.omega_log_prior()
        return check_finite(total, "log_prior")

    def log_likelihood(self) -> float:
        value = self.phyloprocess.log_likelihood(self.matrices, self.site_alloc.values, self.branch_lengths)
        return check_finite(value, "log_likelihood")

    def log_prob(self) -> float:
        return self.log_prior() + self.log_likelihood()

    # ------------------------------------------------------------------
    # Sufficient statistics

    def collect_site_suffstat(self) -> None:
        self.site_suffstat.clear()
        self.phyloprocess.add_path_suffstat(self.site_suffstat, self.branch_lengths)

    def collect_component_suffstat(self) -> None:
        self.component_suffstat.clear()
        self.component_suffstat.add_by_allocation(self.site_suffstat, self.site_alloc.values)

    def collect_length_suffstat(self) -> None:
        self.length_suffstat.clear()
        self.phyloprocess.add_length_suffstat(self.length_suffstat, self.matrices, self.site_alloc.values)

    def collect_omega_suffstat(self) -> None:
        self.omega_suffstat.clear()
        for k in self.occupancy.occupied():
            self.omega_suffstat.add_suffstat(self.matrices[k], self.component_suffstat, k)

    def collect_base_suffstat(self) -> None:
        self.base.collect_suffstat(self.fitness.values, self.component_alloc.values)

    def path_suffstat_log_prob(self, k: Optional[int] = None) -> float:
        """Log-probability of the component path statistics (occupied components only)."""
        if k is not None:
            return self.component_suffstat.log_prob(k, self.matrices[k])
        return sum(
            self.component_suffstat.log_prob(i, self.matrices[i])
            for i in self.occupancy.occupied()
        )

    # ------------------------------------------------------------------
    # Moves

    def move(self) -> float:
        """One MCMC iteration."""
        self.resample_sub(1.0)
        self.move_parameters(self.config.n_param_reps)
        return 1.0

    def resample_sub(self, frac: float) -> None:
        self.phyloprocess.resample_mapping(
            self.matrices, self.site_alloc.values, self.branch_lengths, self.rng, frac
        )

    def move_parameters(self, nrep: int) -> None:
        for _ in range(nrep):
            start = time.perf_counter()
            if self.config.bl_mode.is_local:
                self.resample_branch_lengths()
                self.move_branch_lengths_hyperparameter()

            self.collect_site_suffstat()
            self.collect_component_suffstat()

            if self.config.nuc_mode.is_local:
                self.move_nuc_rates()

            if self.config.omega_mode.is_local:
                self.move_omega()

            aa_start = time.perf_counter()
            self.move_aa_mixture(self.config.n_mixture_reps)
            base_start = time.perf_counter()
            self.timers["aa"] += base_start - aa_start

            if self.config.base_mode.is_local:
                self.move_base(self.config.n_base_reps)
            end = time.perf_counter()
            self.timers["base"] += end - base_start
            self.timers["total"] += end - start

    def resample_branch_lengths(self) -> None:
        self.collect_length_suffstat()
        self.branch_lengths = self.rng.gamma(
            1.0 + self.length_suffstat.count,
            1.0 / (self.lambda_ + self.length_suffstat.beta),
        )

    def move_branch_lengths_hyperparameter(self) -> None:
        self.lambda_suffstat.clear()
        self.lambda_suffstat.add_values(self.branch_lengths)

        def log_prob(lambda_):
            return self.branch_lengths_hyper_log_prior(lambda_) + self.lambda_suffstat.log_prob(1.0, lambda_)

        lambda_ = scaling_move(self.lambda_, log_prob, 1.0, 10, self.rng, self.stats, "lambda")
        self.lambda_ = scaling_move(lambda_, log_prob, 0.3, 10, self.rng, self.stats, "lambda")

    def move_omega(self) -> None:
        """Gibbs update of omega from its Gamma-Poisson conjugate posterior."""
        self.collect_omega_suffstat()
        alpha = 1.0 / self.omega_hyperinvshape
        beta = alpha / self.omega_hypermean
        self.omega = self.rng.gamma(
            alpha + self.omega_suffstat.count,
            1.0 / (beta + self.omega_suffstat.beta),
        )
        self.update_codon_matrices()

    def move_nuc_rates(self) -> None:
        nuc = self.nuc_matrix
        moves = [
            (nuc.relative_rates, 0.1, 1, "relrates"),
            (nuc.relative_rates, 0.03, 3, "relrates"),
            (nuc.relative_rates, 0.01, 3, "relrates"),
            (nuc.stationary, 0.1, 1, "nucstat"),
            (nuc.stationary, 0.01, 1, "nucstat"),
        ]

        def restore(saved):
            nuc.update()
            self.matrices.restore_all(saved)

        for profile, tuning, n, name in moves:
            profile_move(
                profile, self.path_suffstat_log_prob, tuning, n, 3, self.rng,
                update=self.update_nuc_matrix,
                save=self.matrices.backup_all,
                restore=restore,
                stats=self.stats,
                name=f"{name}({tuning},{n})",
            )

    def move_aa_mixture(self, nrep: int) -> None:
        for _ in range(nrep):
            self.move_aa_profiles()
            self.resample_empty_components()
            self.resample_alloc()
            self.label_switching_move()
            self.resample_weights()
            self.move_kappa()
            self.collect_component_suffstat()

    def move_aa_profiles(self) -> None:
        self.move_aa(1.0, 1, 3)
        self.move_aa(0.1, 3, 3)
        self.move_aa_gamma(3.0, 3)
        self.move_aa_gamma(1.0, 3)

    def move_aa(self, tuning: float, n: int, nrep: int) -> None:
        """Compositional moves on the profiles of occupied components."""
        for k in self.occupancy.occupied():
            profile_move(
                self.fitness[k],
                lambda k=k: self.fitness_log_prior(k) + self.path_suffstat_log_prob(k),
                tuning, n, nrep, self.rng,
                update=lambda k=k: self.matrices.corrupt(k),
                save=lambda k=k: self.matrices.backup(k),
                restore=lambda saved, k=k: self.matrices.restore(k, saved),
                stats=self.stats,
                name=f"aa({tuning},{n})",
            )

    @staticmethod
    def gamma_aa_log_prior(x: np.ndarray, center: np.ndarray, concentration: float) -> float:
        """Density of unnormalised profile x as independent Gamma(conc * center_l, 1)."""
        alpha = concentration * center
        return float(np.sum((alpha - 1) * np.log(x) - x - gammaln(alpha)))

    def move_aa_gamma(self, tuning: float, nrep: int) -> None:
        """
        Multiplicative moves on the profiles of occupied components.

        The profile is lifted to unnormalised Gamma variables x = z * profile
        with a fresh total mass z ~ Gamma(concentration); each x_l is then
        scaled by exp(tuning * (U - 0.5)) and the profile renormalised.
        """
        centers = self.component_centers
        concentrations = self.component_concentrations
        for k in self.occupancy.occupied():
            concentration = concentrations[k]
            center = centers[k]
            aa = self.fitness[k]
            x = self.rng.gamma(concentration) * aa
            backup_aa = aa.copy()
            backup_x = x.copy()

            for _ in range(nrep):
                saved = self.matrices.backup(k)
                delta = -self.gamma_aa_log_prior(x, center, concentration) - self.path_suffstat_log_prob(k)

                m = tuning * (self.rng.random(N_AMINO_ACIDS) - 0.5)
                x = x * np.exp(m)
                aa[:] = np.maximum(x / x.sum(), PROFILE_FLOOR)
                aa /= aa.sum()
                self.matrices.corrupt(k)

                delta += m.sum()
                delta += self.gamma_aa_log_prior(x, center, concentration) + self.path_suffstat_log_prob(k)

                accepted = np.log(self.rng.random()) < delta
                if accepted:
                    backup_aa = aa.copy()
                    backup_x = x.copy()
                else:
                    aa[:] = backup_aa
                    x = backup_x.copy()
                    self.matrices.restore(k, saved)
                self.stats.record(f"aagamma({tuning})", accepted)

    def resample_empty_components(self) -> None:
        """Redraw the profiles of empty components from their base component."""
        empty = np.flatnonzero(self.occupancy.counts == 0)
        self.fitness.prior_resample(self.rng, self.component_centers, self.component_concentrations, empty)
        for k in empty:
            self.matrices.corrupt(k)

    def resample_alloc(self) -> None:
        """Gibbs reallocation of every site given its path sufficient statistics."""
        log_likelihoods = self.site_suffstat.log_prob_matrix(self.matrices.matrices())
        self.mixture.resample_allocation(log_likelihoods, self.rng)

    def label_switching_move(self) -> None:
        self.mixture.label_switching_move(self.config.label_switching_factor, self.rng, self.stats)
        self.mixture.check_occupancy()

    def resample_weights(self) -> None:
        self.mixture.resample_weights(self.rng)

    def move_kappa(self) -> None:
        def log_prob(kappa):
            return self.kappa_log_prior(kappa) + self.weights.log_prob(kappa)

        kappa = scaling_move(self.kappa, log_prob, 1.0, 10, self.rng, self.stats, "kappa")
        self.kappa = scaling_move(kappa, log_prob, 0.3, 10, self.rng, self.stats, "kappa")
        self.weights.set_kappa(self.kappa)

    def move_base(self, nrep: int) -> None:
        if self.basencat > 1:
            self.resample_base_alloc()
        self.collect_base_suffstat()
        self.base.move_mixture(nrep, self.rng, self.stats)
        self.base.level.check_occupancy()

    def resample_base_alloc(self) -> None:
        self.base.resample_allocation(self.fitness.values, self.rng)

    # ------------------------------------------------------------------
    # Traces and monitors

    def mean_aa_entropy(self) -> float:
        return float(np.mean([entropy(profile) for profile in self.fitness.values]))

    def trace_header(self) -> str:
        columns = ["#logprior", "lnL", "length", "omega", "ncluster", "kappa"]
        if self.basencat > 1:
            columns += ["basencluster", "basekappa"]
        columns += ["aaent", "meanaaconc", "aacenterent", "statent", "rrent"]
        return "\t".join(columns)

    def trace(self) -> str:
        # length per codon site, not per nucleotide
        values = [
            self.log_prior(),
            self.log_likelihood(),
            3 * self.total_length(),
            self.omega,
            self.n_cluster,
            self.kappa,
        ]
        if self.basencat > 1:
            values += [self.base_n_cluster, self.base.kappa]
        values += [
            self.mean_aa_entropy(),
            self.base.mean_concentration(self.ncat),
            self.base.mean_center_entropy(self.ncat),
            entropy(self.nuc_matrix.stationary),
            entropy(self.nuc_matrix.relative_rates),
        ]
        return "\t".join(str(v) for v in values)

    def monitor(self) -> str:
        total = self.timers["total"]
        lines = [f"{total:.3f}\t{self.timers['aa']:.3f}\t{self.timers['base']:.3f}"]
        if total > 0:
            lines.append(f"prop time in aa moves  : {self.timers['aa'] / total:.4f}")
            lines.append(f"prop time in base moves: {self.timers['base'] / total:.4f}")
        lines.append("move\tacceptance\tproposed")
        lines.extend(self.stats.summary())
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Snapshots

    def stream_size(self) -> int:
        """Number of tokens of a snapshot under the current modes."""
        size = 0
        if self.config.bl_mode.is_local:
            size += 1 + self.n_branches
        if self.config.nuc_mode.is_local:
            size += N_RELATIVE_RATES + N_NUCLEOTIDES
        if self.config.base_mode.is_local:
            size += 1 + self.basencat + self.ncat + self.basencat * N_AMINO_ACIDS + self.basencat
        size += 1 + self.ncat + self.ncat * N_AMINO_ACIDS + self.n_sites
        if self.config.omega_mode.is_local:
            size += 1
        return size

    def to_stream(self) -> str:
        """Tab-separated snapshot of the parameters estimated by this model."""
        tokens = []
        if self.config.bl_mode.is_local:
            tokens += format_tokens([self.lambda_])
            tokens += format_tokens(self.branch_lengths)
        if self.config.nuc_mode.is_local:
            tokens += format_tokens(self.nuc_matrix.relative_rates)
            tokens += format_tokens(self.nuc_matrix.stationary)
        if self.config.base_mode.is_local:
            tokens += format_tokens([self.base.kappa])
            tokens += format_tokens(self.base.weights.v)
            tokens += format_ints(self.component_alloc.values)
            tokens += format_tokens(self.base.centers.values)
            tokens += format_tokens(self.base.concentrations.values)
        tokens += format_tokens([self.kappa])
        tokens += format_tokens(self.weights.v)
        tokens += format_tokens(self.fitness.values)
        tokens += format_ints(self.site_alloc.values)
        if self.config.omega_mode.is_local:
            tokens += format_tokens([self.omega])
        return "\t".join(tokens)

    def from_stream(self, line: str, resample_mapping: bool = True) -> None:
        """Restore a snapshot written by ``to_stream``, then call ``update()``."""
        tokens = line.split()
        expected = self.stream_size()
        if len(tokens) != expected:
            raise InvariantViolationError(
                f"snapshot has {len(tokens)} values, expected {expected}"
            )
        reader = TokenReader(tokens)
        if self.config.bl_mode.is_local:
            self.lambda_ = reader.scalar()
            self.branch_lengths = reader.floats(self.n_branches)
        if self.config.nuc_mode.is_local:
            self.nuc_matrix.relative_rates[:] = reader.floats(N_RELATIVE_RATES)
            self.nuc_matrix.stationary[:] = reader.floats(N_NUCLEOTIDES)
        if self.config.base_mode.is_local:
            self.base.kappa = reader.scalar()
            self.base.weights.v[:] = reader.floats(self.basencat)
            self.component_alloc.values = reader.ints(self.ncat)
            self.component_alloc.validate()
            self.base.centers.values[:] = reader.floats(self.basencat * N_AMINO_ACIDS).reshape(
                self.basencat, N_AMINO_ACIDS
            )
            self.base.concentrations.values[:] = reader.floats(self.basencat)
        self.kappa = reader.scalar()
        self.weights.v[:] = reader.floats(self.ncat)
        self.fitness.values[:] = reader.floats(self.ncat * N_AMINO_ACIDS).reshape(self.ncat, N_AMINO_ACIDS)
        self.site_alloc.values = reader.ints(self.n_sites)
        self.site_alloc.validate()
        if self.config.omega_mode.is_local:
            self.omega = reader.scalar()
        self.update(resample_mapping)

    # ------------------------------------------------------------------
    # Posterior predictive

    def posterior_predictive(self, filepath, seed: Optional[int] = None) -> Alignment:
        """
        Simulate an alignment of the same shape under the current parameters
        and write it to ``filepath`` in FASTA format.
        """
        simulator = MutSelCodonSimulator(
            tree=self.tree,
            branch_lengths=self.branch_lengths,
            nuc_matrix=self.nuc_matrix,
            site_profiles=self.site_profiles(),
            omega=self.omega,
            seed=seed,
        )
        sequences = simulator.simulate()
        SimulationOutput.write_fasta(sequences, filepath)
        return Alignment.from_codon_indices(sequences)
