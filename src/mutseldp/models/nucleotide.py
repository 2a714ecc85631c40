"""
General time-reversible nucleotide mutation matrix.
"""

import numpy as np

from ..core.matrix import create_reversible_Q


N_NUCLEOTIDES = 4
N_RELATIVE_RATES = 6

# Order of the relative exchange rates over nucleotide pairs (T=0, C=1, A=2, G=3)
RATE_PAIRS = [(0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3)]


class GTRNucMatrix:
    """
    GTR mutation process, normalised to one expected substitution per unit time.

    Parameters
    ----------
    relative_rates : np.ndarray, shape (6,)
        Exchangeabilities (a point of the simplex) in RATE_PAIRS order
    stationary : np.ndarray, shape (4,)
        Equilibrium nucleotide frequencies

    The arrays are owned by the matrix and may be modified in place by moves,
    after which ``update()`` must be called.
    """

    def __init__(self, relative_rates: np.ndarray, stationary: np.ndarray):
        relative_rates = np.array(relative_rates, dtype=float)
        stationary = np.array(stationary, dtype=float)
        if relative_rates.shape != (N_RELATIVE_RATES,):
            raise ValueError(f"relative_rates must have length 6, got {relative_rates.shape}")
        if stationary.shape != (N_NUCLEOTIDES,):
            raise ValueError(f"stationary must have length 4, got {stationary.shape}")
        self.relative_rates = relative_rates
        self.stationary = stationary
        self.update()

    def update(self) -> None:
        """Recompute Q from the current rates and stationary frequencies."""
        exchange = np.zeros((N_NUCLEOTIDES, N_NUCLEOTIDES))
        for rate, (i, j) in zip(self.relative_rates, RATE_PAIRS):
            exchange[i, j] = exchange[j, i] = rate
        self.Q = create_reversible_Q(exchange, self.stationary, normalize=True)

    def set_rates(self, relative_rates: np.ndarray, stationary: np.ndarray) -> None:
        self.relative_rates[:] = relative_rates
        self.stationary[:] = stationary
        self.update()
