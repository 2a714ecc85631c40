"""
Fatal error types raised by the sampler.

Both indicate a chain that can no longer be trusted; they are never caught
inside the library. Ordinary Metropolis-Hastings rejections are not errors.
"""

import numpy as np


class NumericalInstabilityError(ArithmeticError):
    """A log-probability evaluated to a non-finite value."""


class InvariantViolationError(RuntimeError):
    """Inconsistent bookkeeping between allocations, occupancies or arrays."""


def check_finite(value: float, where: str) -> float:
    """Return value, or raise NumericalInstabilityError if it is inf or nan."""
    if not np.isfinite(value):
        raise NumericalInstabilityError(f"in {where}: non-finite log probability ({value})")
    return value
