"""
Generic Metropolis-Hastings kernels.

Each kernel receives the parameter, a log-probability callable and the
random generator; rejected proposals restore the exact previous value.
"""

from typing import Callable, Optional

import numpy as np

from ..core.distributions import profile_propose_move
from .diagnostics import MoveStats


def scaling_move(
    value: float,
    log_prob: Callable[[float], float],
    tuning: float,
    nrep: int,
    rng: np.random.Generator,
    stats: Optional[MoveStats] = None,
    name: str = "scaling",
) -> float:
    """
    Multiplicative random walk on a positive scalar.

    The proposal is x' = x * exp(tuning * (U - 0.5)), with log Hastings ratio
    tuning * (U - 0.5).

    Returns
    -------
    float
        The value after nrep proposals
    """
    current = log_prob(value)
    for _ in range(nrep):
        m = tuning * (rng.random() - 0.5)
        proposed = value * np.exp(m)
        new = log_prob(proposed)
        accepted = np.log(rng.random()) < new - current + m
        if accepted:
            value = proposed
            current = new
        if stats is not None:
            stats.record(name, accepted)
    return value


def profile_move(
    profile: np.ndarray,
    log_prob: Callable[[], float],
    tuning: float,
    n: int,
    nrep: int,
    rng: np.random.Generator,
    update: Optional[Callable[[], None]] = None,
    save: Optional[Callable[[], object]] = None,
    restore: Optional[Callable[[object], None]] = None,
    stats: Optional[MoveStats] = None,
    name: str = "profile",
) -> float:
    """
    Random walk on a simplex vector, modified in place.

    ``log_prob`` is evaluated on the current content of ``profile``;
    ``update`` is called after each modification, and ``save``/``restore``
    let the caller snapshot and roll back derived state (e.g. cached
    matrices) on rejection.

    Returns
    -------
    float
        Acceptance rate
    """
    n_accepted = 0
    for _ in range(nrep):
        backup = profile.copy()
        saved = save() if save is not None else None
        delta = -log_prob()
        delta += profile_propose_move(profile, tuning, n, rng)
        if update is not None:
            update()
        delta += log_prob()
        accepted = np.log(rng.random()) < delta
        if accepted:
            n_accepted += 1
        else:
            profile[:] = backup
            if restore is not None:
                restore(saved)
            elif update is not None:
                update()
        if stats is not None:
            stats.record(name, accepted)
    return n_accepted / nrep if nrep else 0.0
