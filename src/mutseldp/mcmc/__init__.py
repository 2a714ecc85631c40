"""
MCMC sampling: models, moves, configuration and the chain driver.
"""

from .base_mixture import BaseMixture
from .chain import Chain
from .config import EstimationMode, ModelConfig
from .diagnostics import MoveStats
from .model import MutSelDPOmegaModel
from .moves import profile_move, scaling_move
from .multigene import MultiGeneModel

__all__ = [
    "BaseMixture",
    "Chain",
    "EstimationMode",
    "ModelConfig",
    "MoveStats",
    "MutSelDPOmegaModel",
    "MultiGeneModel",
    "profile_move",
    "scaling_move",
]
