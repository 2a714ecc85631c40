"""
Several genes sharing branch lengths and a base mixture of fitness profiles.

Each gene is a full ``MutSelDPOmegaModel`` with its own site mixture,
nucleotide rates and omega. The coordinator owns the branch lengths, the
Gamma hyperparameters of the gene omegas and the base mixture; it updates
them from sufficient statistics summed over genes and pushes the new values
back into every gene.
"""

from dataclasses import replace
from typing import Optional, Sequence

import numpy as np

from ..core.distributions import log_gamma_density
from ..core.suffstat import GammaSuffStat, PoissonSuffStatArray
from ..errors import InvariantViolationError, check_finite
from ..io.sequences import Alignment, N_AMINO_ACIDS
from ..io.trees import Tree
from .base_mixture import BaseMixture
from .config import EstimationMode, ModelConfig
from .diagnostics import MoveStats
from .model import MutSelDPOmegaModel
from .moves import scaling_move
from .stream import TokenReader, format_ints, format_tokens


class MultiGeneModel:
    """
    Parameters
    ----------
    alignments : sequence of Alignment
        One codon alignment per gene, all on the same set of taxa
    tree : Tree
        Tree shared by all genes
    config : ModelConfig, optional
        Gene configuration. Branch lengths and the base mixture are always
        shared and nucleotide rates always independent. The omega mode is
        kept: ``shrunken`` moves the Gamma hyperparameters of the gene
        omegas, ``independent`` leaves them at their configured values and
        ``fixed`` keeps every omega at its initial value. ``shared`` is not
        supported.
    seed : int, optional
    gene_names : sequence of str, optional
    """

    def __init__(
        self,
        alignments: Sequence[Alignment],
        tree: Tree,
        config: Optional[ModelConfig] = None,
        seed: Optional[int] = None,
        gene_names: Optional[Sequence[str]] = None,
    ):
        if not alignments:
            raise ValueError("At least one alignment is required")
        config = config if config is not None else ModelConfig()
        if config.omega_mode is EstimationMode.SHARED:
            raise ValueError("omega_mode 'shared' is not supported across genes; use shrunken, independent or fixed")
        self.config = config
        self.shrink_omega = config.omega_mode is EstimationMode.SHRUNKEN
        self.gene_config = replace(
            config,
            bl_mode=EstimationMode.SHARED,
            nuc_mode=EstimationMode.INDEPENDENT,
            base_mode=EstimationMode.SHARED,
        )
        self.rng = np.random.default_rng(seed)
        self.tree = tree
        self.n_genes = len(alignments)
        if gene_names is None:
            gene_names = [f"gene{i}" for i in range(self.n_genes)]
        if len(gene_names) != self.n_genes:
            raise ValueError(f"Got {len(gene_names)} gene names for {self.n_genes} alignments")
        self.gene_names = list(gene_names)

        seeds = self.rng.integers(2**32, size=self.n_genes)
        self.genes = [
            MutSelDPOmegaModel(alignment, tree, self.gene_config, seed=int(s))
            for alignment, s in zip(alignments, seeds)
        ]

        self.n_branches = tree.n_branches
        self.lambda_ = config.lambda_
        self.branch_lengths = self.rng.gamma(1.0, 1.0 / self.lambda_, size=self.n_branches)
        self.length_suffstat = PoissonSuffStatArray(self.n_branches)
        self.lambda_suffstat = GammaSuffStat()

        self.omega_hypermean = config.omega_hypermean
        self.omega_hyperinvshape = config.omega_hyperinvshape
        self.omega_suffstat = GammaSuffStat()

        self.basencat = config.resolve_basencat()
        self.base = BaseMixture(self.basencat, config, self.rng)

        self.stats = MoveStats()

    # ------------------------------------------------------------------
    # Broadcasting

    def push_branch_lengths(self) -> None:
        for gene in self.genes:
            gene.set_branch_lengths(self.branch_lengths)

    def push_omega_hyperparameters(self) -> None:
        for gene in self.genes:
            gene.set_omega_hyperparameters(self.omega_hypermean, self.omega_hyperinvshape)

    def push_base_mixture(self) -> None:
        """Send the base mixture and its label permutation, then reset the permutation."""
        for gene in self.genes:
            gene.set_base_mixture(self.base, self.base.level.permutation)
        self.base.level.reset_permutation()

    def update(self) -> None:
        self.base.level.reset_permutation()
        self.push_branch_lengths()
        self.push_omega_hyperparameters()
        self.push_base_mixture()
        for gene in self.genes:
            gene.update()
        self.gather_base_occupancy()

    # ------------------------------------------------------------------
    # Priors and likelihood

    def omega_hyper_log_prior(self, mean: Optional[float] = None, invshape: Optional[float] = None) -> float:
        mean = self.omega_hypermean if mean is None else mean
        invshape = self.omega_hyperinvshape if invshape is None else invshape
        return -mean - invshape

    def omegas(self) -> np.ndarray:
        return np.array([gene.omega for gene in self.genes])

    def log_prior(self) -> float:
        total = sum(gene.log_prior() for gene in self.genes)
        total += -self.lambda_ / 10
        total += float(np.sum(log_gamma_density(self.branch_lengths, 1.0, self.lambda_)))
        if self.shrink_omega:
            total += self.omega_hyper_log_prior()
        total += self.base.log_prior()
        return check_finite(total, "multigene log_prior")

    def log_likelihood(self) -> float:
        return sum(gene.log_likelihood() for gene in self.genes)

    # ------------------------------------------------------------------
    # Moves

    def move(self) -> float:
        for gene in self.genes:
            gene.resample_sub(1.0)

        for _ in range(self.config.n_param_reps):
            for gene in self.genes:
                gene.collect_site_suffstat()
                gene.collect_component_suffstat()
                gene.move_aa_mixture(self.config.n_mixture_reps)

            self.move_base_mixture()
            if self.config.omega_mode.is_local:
                self.move_omegas()

            for gene in self.genes:
                gene.move_nuc_rates()

            self.resample_branch_lengths()
            self.move_branch_lengths_hyperparameter()
            self.push_branch_lengths()
        return 1.0

    def gather_base_occupancy(self) -> None:
        counts = sum(gene.base.occupancy.counts for gene in self.genes)
        self.base.level.set_occupancy(counts)

    def move_base_mixture(self) -> None:
        self.base.suffstat.clear()
        for gene in self.genes:
            if self.basencat > 1:
                gene.resample_base_alloc()
            gene.collect_base_suffstat()
            self.base.suffstat.add(gene.base.suffstat)
        self.gather_base_occupancy()
        self.base.move_mixture(self.config.n_base_reps, self.rng, self.stats)
        self.push_base_mixture()

    def move_omegas(self) -> None:
        for gene in self.genes:
            gene.move_omega()
        if self.shrink_omega:
            self.move_omega_hyperparameters()
            self.push_omega_hyperparameters()

    def move_omega_hyperparameters(self) -> None:
        self.omega_suffstat.clear()
        self.omega_suffstat.add_values(self.omegas())

        def log_prob_mean(mean):
            alpha = 1.0 / self.omega_hyperinvshape
            return self.omega_hyper_log_prior(mean=mean) + self.omega_suffstat.log_prob(alpha, alpha / mean)

        def log_prob_invshape(invshape):
            alpha = 1.0 / invshape
            return (
                self.omega_hyper_log_prior(invshape=invshape)
                + self.omega_suffstat.log_prob(alpha, alpha / self.omega_hypermean)
            )

        for tuning in (1.0, 0.3):
            self.omega_hypermean = scaling_move(
                self.omega_hypermean, log_prob_mean, tuning, 10, self.rng, self.stats, "omegahypermean"
            )
        for tuning in (1.0, 0.3):
            self.omega_hyperinvshape = scaling_move(
                self.omega_hyperinvshape, log_prob_invshape, tuning, 10, self.rng, self.stats, "omegahyperinvshape"
            )

    def resample_branch_lengths(self) -> None:
        self.length_suffstat.clear()
        for gene in self.genes:
            gene.collect_length_suffstat()
            self.length_suffstat.add(gene.length_suffstat)
        self.branch_lengths = self.rng.gamma(
            1.0 + self.length_suffstat.count,
            1.0 / (self.lambda_ + self.length_suffstat.beta),
        )

    def move_branch_lengths_hyperparameter(self) -> None:
        self.lambda_suffstat.clear()
        self.lambda_suffstat.add_values(self.branch_lengths)

        def log_prob(lambda_):
            return -lambda_ / 10 + self.lambda_suffstat.log_prob(1.0, lambda_)

        for tuning in (1.0, 0.3):
            self.lambda_ = scaling_move(self.lambda_, log_prob, tuning, 10, self.rng, self.stats, "lambda")

    # ------------------------------------------------------------------
    # Traces

    def trace_header(self) -> str:
        return "\t".join([
            "#logprior", "lnL", "length", "meanomega", "varomega",
            "omegahypermean", "omegahyperinvshape", "ncluster", "basencluster", "basekappa",
        ])

    def trace(self) -> str:
        omegas = self.omegas()
        values = [
            self.log_prior(),
            self.log_likelihood(),
            3 * float(self.branch_lengths.sum()),
            float(omegas.mean()),
            float(omegas.var()),
            self.omega_hypermean,
            self.omega_hyperinvshape,
            float(np.mean([gene.n_cluster for gene in self.genes])),
            self.base.n_cluster,
            self.base.kappa,
        ]
        return "\t".join(str(v) for v in values)

    def monitor(self) -> str:
        lines = ["move\tacceptance\tproposed"]
        lines.extend(self.stats.summary())
        for name, gene in zip(self.gene_names, self.genes):
            lines.append(f"# {name}")
            lines.extend(gene.stats.summary())
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Snapshots

    def _master_stream_size(self) -> int:
        n_hyper = 2 if self.shrink_omega else 0
        return 1 + self.n_branches + n_hyper + 1 + self.basencat * (2 + N_AMINO_ACIDS)

    def stream_size(self) -> int:
        return self._master_stream_size() + sum(gene.ncat + gene.stream_size() for gene in self.genes)

    def to_stream(self) -> str:
        """
        Coordinator parameters followed, for each gene, by its allocation of
        fitness components to base components and its own snapshot. The omega
        hyperparameters are included only when omegas are shrunken.
        """
        tokens = format_tokens([self.lambda_])
        tokens += format_tokens(self.branch_lengths)
        if self.shrink_omega:
            tokens += format_tokens([self.omega_hypermean, self.omega_hyperinvshape])
        tokens += format_tokens([self.base.kappa])
        tokens += format_tokens(self.base.weights.v)
        tokens += format_tokens(self.base.centers.values)
        tokens += format_tokens(self.base.concentrations.values)
        for gene in self.genes:
            tokens += format_ints(gene.component_alloc.values)
            tokens.append(gene.to_stream())
        return "\t".join(tokens)

    def from_stream(self, line: str, resample_mapping: bool = True) -> None:
        tokens = line.split()
        expected = self.stream_size()
        if len(tokens) != expected:
            raise InvariantViolationError(f"snapshot has {len(tokens)} values, expected {expected}")
        reader = TokenReader(tokens)
        self.lambda_ = reader.scalar()
        self.branch_lengths = reader.floats(self.n_branches)
        if self.shrink_omega:
            self.omega_hypermean = reader.scalar()
            self.omega_hyperinvshape = reader.scalar()
        self.base.set_kappa(reader.scalar())
        self.base.weights.v[:] = reader.floats(self.basencat)
        self.base.weights.compute_weights()
        self.base.centers.values[:] = reader.floats(self.basencat * N_AMINO_ACIDS).reshape(
            self.basencat, N_AMINO_ACIDS
        )
        self.base.concentrations.values[:] = reader.floats(self.basencat)
        self.base.level.reset_permutation()

        self.push_branch_lengths()
        self.push_omega_hyperparameters()
        for gene in self.genes:
            gene.base.copy_parameters_from(self.base)
            gene.component_alloc.values = reader.ints(gene.ncat)
            gene.component_alloc.validate()
            gene.from_stream("\t".join(reader.take(gene.stream_size())), resample_mapping)
        self.gather_base_occupancy()
