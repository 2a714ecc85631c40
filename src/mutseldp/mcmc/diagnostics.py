"""
Acceptance-rate bookkeeping for Metropolis-Hastings moves.
"""

from collections import defaultdict


class MoveStats:
    """
    Named (accepted, proposed) counters.

    A single instance is created per chain and passed into every move
    routine; ``reset()`` is called when the chain starts.
    """

    def __init__(self):
        self._accepted = defaultdict(float)
        self._proposed = defaultdict(float)

    def reset(self) -> None:
        self._accepted.clear()
        self._proposed.clear()

    def record(self, name: str, accepted, proposed: int = 1) -> None:
        self._accepted[name] += float(accepted)
        self._proposed[name] += proposed

    def names(self) -> list[str]:
        return sorted(self._proposed)

    def proposed(self, name: str) -> float:
        return self._proposed.get(name, 0.0)

    def rate(self, name: str) -> float:
        """Acceptance rate of a move (0 if it was never proposed)."""
        proposed = self._proposed.get(name, 0.0)
        if proposed == 0:
            return 0.0
        return self._accepted[name] / proposed

    def summary(self) -> list[str]:
        return [
            f"{name}\t{self.rate(name):.4f}\t{int(self._proposed[name])}"
            for name in self.names()
        ]
