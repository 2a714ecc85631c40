"""
Tab-separated snapshot tokens.

Floats are written with ``repr`` so that a snapshot read back gives
bit-identical values.
"""

import numpy as np


def format_tokens(values) -> list[str]:
    return [repr(float(v)) for v in np.ravel(values)]


def format_ints(values) -> list[str]:
    return [str(int(v)) for v in np.ravel(values)]


class TokenReader:
    """Sequential reader over the tokens of a snapshot line."""

    def __init__(self, tokens: list[str]):
        self.tokens = tokens
        self.pos = 0

    def take(self, n: int) -> list[str]:
        tokens = self.tokens[self.pos:self.pos + n]
        self.pos += n
        return tokens

    def floats(self, n: int) -> np.ndarray:
        return np.array([float(t) for t in self.take(n)])

    def ints(self, n: int) -> np.ndarray:
        return np.array([int(t) for t in self.take(n)], dtype=int)

    def scalar(self) -> float:
        return float(self.floats(1)[0])
