"""
Stick-breaking mixtures: weights, allocations, component arrays and label switching.
"""

from .allocation import AllocationVector
from .components import (
    ComponentArray,
    IIDDirichletArray,
    IIDGammaArray,
    MixtureView,
    MultiDirichletArray,
)
from .level import MixtureLevel
from .stickbreaking import StickBreakingProcess

__all__ = [
    'AllocationVector',
    'ComponentArray',
    'IIDDirichletArray',
    'IIDGammaArray',
    'MixtureLevel',
    'MixtureView',
    'MultiDirichletArray',
    'StickBreakingProcess',
]
