"""
Probability densities, random draws and proposal kernels.

All sampling goes through an explicit ``numpy.random.Generator`` so that a
chain is reproducible from its seed.
"""

import numpy as np
from scipy.special import gammaln


# Lower bound for profile entries after a draw or a multiplicative move
PROFILE_FLOOR = 1e-50


def log_gamma_density(x, shape: float, rate: float):
    """Log density of Gamma(shape, rate) at x (vectorised over x)."""
    x = np.asarray(x, dtype=float)
    with np.errstate(divide='ignore'):
        return shape * np.log(rate) - gammaln(shape) + (shape - 1) * np.log(x) - rate * x


def log_beta_density(x, a: float, b: float):
    """Log density of Beta(a, b) at x (vectorised over x)."""
    x = np.asarray(x, dtype=float)
    with np.errstate(divide='ignore'):
        return (
            gammaln(a + b) - gammaln(a) - gammaln(b)
            + (a - 1) * np.log(x) + (b - 1) * np.log1p(-x)
        )


def log_dirichlet_density(x: np.ndarray, center: np.ndarray, concentration: float) -> float:
    """
    Log density of Dirichlet(concentration * center) at the simplex point x.

    Returns -inf when x has a non-positive entry.
    """
    alpha = concentration * np.asarray(center)
    if np.any(x <= 0):
        return -np.inf
    return float(gammaln(alpha.sum()) - gammaln(alpha).sum() + np.dot(alpha - 1, np.log(x)))


def entropy(profile: np.ndarray) -> float:
    """Shannon entropy (nats) of a probability vector."""
    p = np.asarray(profile)
    p = p[p > 0]
    return float(-np.dot(p, np.log(p)))


def dirichlet_sample(rng: np.random.Generator, center: np.ndarray, concentration: float) -> np.ndarray:
    """
    Draw from Dirichlet(concentration * center) through normalised gammas.

    Entries are floored at PROFILE_FLOOR so that small concentrations never
    produce exact zeros.
    """
    x = rng.gamma(concentration * np.asarray(center))
    x = np.maximum(x, PROFILE_FLOOR)
    return x / x.sum()


def draw_from_urn(rng: np.random.Generator, k: int, n: int) -> np.ndarray:
    """Draw k distinct indices from range(n)."""
    return rng.choice(n, size=k, replace=False)


def profile_propose_move(profile: np.ndarray, tuning: float, n: int, rng: np.random.Generator) -> float:
    """
    Symmetric move on the simplex, applied in place.

    n disjoint pairs of coordinates are drawn; within each pair, mass is
    shifted by a uniform amount of width ``tuning * (p_i + p_j)``, reflected
    at the pair's bounds so that both entries stay in [0, p_i + p_j].

    Returns
    -------
    float
        Log Hastings ratio (0, the kernel is symmetric)
    """
    dim = len(profile)
    if 2 * n > dim:
        n = dim // 2
    indices = draw_from_urn(rng, 2 * n, dim)
    for i in range(n):
        i1 = indices[2 * i]
        i2 = indices[2 * i + 1]
        tot = profile[i1] + profile[i2]
        x = profile[i1] + tot * tuning * (rng.random() - 0.5)
        while x < 0 or x > tot:
            if x < 0:
                x = -x
            if x > tot:
                x = 2 * tot - x
        profile[i1] = x
        profile[i2] = tot - x
    return 0.0


def sample_categorical_rows(rng: np.random.Generator, probs: np.ndarray) -> np.ndarray:
    """
    Sample one category per row of a (n, K) matrix of normalised probabilities.
    """
    cumulative = np.cumsum(probs, axis=1)
    u = rng.random(probs.shape[0]) * cumulative[:, -1]
    choice = (cumulative < u[:, np.newaxis]).sum(axis=1)
    return np.minimum(choice, probs.shape[1] - 1)


def normalized_posterior(log_weights: np.ndarray, log_likelihoods: np.ndarray) -> np.ndarray:
    """
    Posterior allocation probabilities, one row per data unit.

    log_likelihoods has shape (n, K); the per-row maximum of the log
    posterior is subtracted before exponentiation.
    """
    logp = log_likelihoods + log_weights[np.newaxis, :]
    logp -= logp.max(axis=1, keepdims=True)
    post = np.exp(logp)
    post /= post.sum(axis=1, keepdims=True)
    return post
