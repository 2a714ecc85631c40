"""
Codon state space: single-nucleotide neighbours and synonymy.
"""

from functools import lru_cache

import numpy as np

from ..io.sequences import (
    AA_TO_INDEX,
    CODONS,
    GENETIC_CODE,
    N_CODONS,
    NUCLEOTIDE_TO_INDEX,
)


def is_synonymous(codon1: str, codon2: str) -> bool:
    """Check if two codons code for the same amino acid."""
    return GENETIC_CODE[codon1] == GENETIC_CODE[codon2]


class CodonStateSpace:
    """
    The 61 sense codons and the ordered pairs of codons one mutation apart.

    Pair arrays are parallel: pair p goes from codon ``pair_from[p]`` to
    ``pair_to[p]`` by changing nucleotide ``nuc_from[p]`` into ``nuc_to[p]``,
    which replaces amino acid ``aa_from[p]`` by ``aa_to[p]``.

    Attributes
    ----------
    codon_nucleotides : ndarray, shape (61, 3)
        Nucleotide indices (T=0, C=1, A=2, G=3) of each codon
    codon_aa : ndarray, shape (61,)
        Amino-acid index of each codon
    synonymous : ndarray of bool
        True for pairs coding for the same amino acid
    nonsyn_mask : ndarray, shape (61, 61)
        1.0 at nonsynonymous neighbour pairs, 0.0 elsewhere
    neighbor_mask : ndarray of bool, shape (61, 61)
        True at every pair of neighbour codons
    """

    def __init__(self):
        self.n_states = N_CODONS
        self.codon_nucleotides = np.array(
            [[NUCLEOTIDE_TO_INDEX[n] for n in codon] for codon in CODONS], dtype=int
        )
        self.codon_aa = np.array([AA_TO_INDEX[GENETIC_CODE[codon]] for codon in CODONS], dtype=int)

        pair_from, pair_to, nuc_from, nuc_to = [], [], [], []
        for i, codon_i in enumerate(CODONS):
            for j, codon_j in enumerate(CODONS):
                if i == j:
                    continue
                diff = [k for k in range(3) if codon_i[k] != codon_j[k]]
                if len(diff) != 1:
                    continue
                pos = diff[0]
                pair_from.append(i)
                pair_to.append(j)
                nuc_from.append(NUCLEOTIDE_TO_INDEX[codon_i[pos]])
                nuc_to.append(NUCLEOTIDE_TO_INDEX[codon_j[pos]])

        self.pair_from = np.array(pair_from, dtype=int)
        self.pair_to = np.array(pair_to, dtype=int)
        self.nuc_from = np.array(nuc_from, dtype=int)
        self.nuc_to = np.array(nuc_to, dtype=int)
        self.aa_from = self.codon_aa[self.pair_from]
        self.aa_to = self.codon_aa[self.pair_to]
        self.synonymous = self.aa_from == self.aa_to

        self.neighbor_mask = np.zeros((N_CODONS, N_CODONS), dtype=bool)
        self.neighbor_mask[self.pair_from, self.pair_to] = True
        self.nonsyn_mask = np.zeros((N_CODONS, N_CODONS))
        nonsyn = ~self.synonymous
        self.nonsyn_mask[self.pair_from[nonsyn], self.pair_to[nonsyn]] = 1.0


@lru_cache(maxsize=1)
def get_codon_state_space() -> CodonStateSpace:
    """Shared, read-only codon state space."""
    return CodonStateSpace()
