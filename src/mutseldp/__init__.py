"""
mutseldp: Bayesian mutation-selection codon models.

Site-specific amino-acid fitness profiles are modelled as a truncated
stick-breaking Dirichlet process mixture whose components are themselves
drawn from a second stick-breaking mixture of Dirichlet distributions.
Inference is by MCMC with data augmentation over substitution histories.

Quick Start
-----------
Run a chain from Python:

>>> from mutseldp import Chain, ModelConfig
>>> chain = Chain.create("mychain", ["gene.fasta"], "tree.nwk", ModelConfig(ncat=20), until=100, seed=1)
>>> chain.start()

Summarize it:

>>> from mutseldp import ChainReader
>>> reader = ChainReader("mychain")
>>> reader.omega_summary(burnin=50)
"""

__version__ = "0.1.0"

from .analysis import ChainReader
from .io.sequences import Alignment
from .io.trees import Tree
from .mcmc import (
    Chain,
    EstimationMode,
    ModelConfig,
    MultiGeneModel,
    MutSelDPOmegaModel,
)

__all__ = [
    "Chain",
    "ChainReader",
    "ModelConfig",
    "EstimationMode",
    "MutSelDPOmegaModel",
    "MultiGeneModel",
    "Alignment",
    "Tree",
    "__version__",
]
