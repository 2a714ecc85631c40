"""
Numerical core: matrices, densities, sufficient statistics and the phylogenetic process.
"""

from .matrix import (
    create_reversible_Q,
    eigen_decompose_rev,
    matrix_exponential,
    transition_matrix_from_eigen,
)
from .phyloprocess import PhyloProcess
from .suffstat import (
    DirichletSuffStatArray,
    GammaSuffStat,
    OccupancySuffStat,
    OmegaPathSuffStat,
    PathSuffStatArray,
    PoissonSuffStatArray,
)

__all__ = [
    "create_reversible_Q",
    "eigen_decompose_rev",
    "matrix_exponential",
    "transition_matrix_from_eigen",
    "PhyloProcess",
    "DirichletSuffStatArray",
    "GammaSuffStat",
    "OccupancySuffStat",
    "OmegaPathSuffStat",
    "PathSuffStatArray",
    "PoissonSuffStatArray",
]
