"""
Substitution models: codon state space, GTR mutation, mutation-selection codon matrices.
"""

from .codon import CodonStateSpace, get_codon_state_space
from .mutsel import AAMutSelOmegaMatrix, CodonMatrixCache
from .nucleotide import GTRNucMatrix

__all__ = [
    "CodonStateSpace",
    "get_codon_state_space",
    "AAMutSelOmegaMatrix",
    "CodonMatrixCache",
    "GTRNucMatrix",
]
