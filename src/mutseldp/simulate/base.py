"""
Base class for sequence simulators.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np

from ..io.trees import Tree


class SequenceSimulator(ABC):
    """
    Abstract base class for sequence simulators.

    Parameters
    ----------
    tree : Tree
        Rooted phylogenetic tree
    sequence_length : int
        Number of codons to simulate
    branch_lengths : np.ndarray, optional
        Lengths indexed by branch index; the tree's own lengths are used
        when omitted
    seed : int, optional
        Random seed for reproducibility

    Attributes
    ----------
    rng : numpy.random.Generator
        Random number generator (seeded for reproducibility)
    """

    def __init__(
        self,
        tree: Tree,
        sequence_length: int,
        branch_lengths: Optional[np.ndarray] = None,
        seed: Optional[int] = None,
    ):
        self.tree = tree
        self.sequence_length = sequence_length
        self.rng = np.random.default_rng(seed)

        self._validate_tree()
        if branch_lengths is None:
            branch_lengths = tree.get_branch_lengths()
        branch_lengths = np.asarray(branch_lengths, dtype=float)
        if branch_lengths.shape != (tree.n_branches,):
            raise ValueError(
                f"Expected {tree.n_branches} branch lengths, got {branch_lengths.shape}"
            )
        if np.any(branch_lengths < 0):
            raise ValueError("Branch lengths must be non-negative")
        self.branch_lengths = branch_lengths

    def _validate_tree(self):
        """Ensure tree is suitable for simulation."""
        if self.tree.root is None:
            raise ValueError("Tree must be rooted for simulation")

        for node in self.tree.postorder():
            if node.parent is not None and node.branch_length is None:
                raise ValueError(
                    f"Node {node.name if node.name else 'unnamed'} missing branch length"
                )

    @abstractmethod
    def _generate_ancestral_sequence(self) -> np.ndarray:
        """Sequence at the root node (array of state indices)."""

    @abstractmethod
    def _evolve_sequence(self, parent_seq: np.ndarray, branch_length: float) -> np.ndarray:
        """Evolve a sequence along a branch of the given length."""

    def simulate(self) -> Dict[str, np.ndarray]:
        """
        Simulate sequences on the tree, from the root to the tips.

        Returns
        -------
        dict
            Mapping from leaf name to array of state indices
        """
        sequences = {self.tree.root: self._generate_ancestral_sequence()}

        for node in self.tree.preorder():
            if node.is_root:
                continue
            sequences[node] = self._evolve_sequence(
                sequences[node.parent], self.branch_lengths[node.index]
            )

        return {
            node.name: sequences[node]
            for node in self.tree.postorder()
            if node.is_leaf
        }

    @abstractmethod
    def get_parameters(self) -> Dict:
        """Simulation parameters for output metadata."""
