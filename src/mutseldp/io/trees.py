"""
Phylogenetic tree parsing and branch indexing.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass(eq=False)
class TreeNode:
    """
    Phylogenetic tree node.

    Attributes
    ----------
    id : int
        Node identifier (order of appearance in the Newick string)
    name : Optional[str]
        Node name (for leaves)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes
    branch_length : float
        Length of the branch to the parent
    index : int
        Branch index of the branch above this node (-1 for the root)
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)
    branch_length: float = 0.0
    index: int = -1

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent is None


@dataclass
class Tree:
    """
    Rooted phylogenetic tree.

    Branches are indexed 0..n_branches-1 following a post-order traversal of
    the non-root nodes; arrays of per-branch quantities (lengths, sufficient
    statistics) use this indexing.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes
    leaf_names : list[str]
        Names of leaf nodes
    """

    root: TreeNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]

    def __post_init__(self):
        self._postorder = self._traverse()
        self._branch_nodes = [node for node in self._postorder if not node.is_root]
        for i, node in enumerate(self._branch_nodes):
            node.index = i

    @classmethod
    def from_newick(cls, newick_string: str) -> "Tree":
        """
        Parse Newick format tree string.

        Internal node names are accepted and kept; '#' branch labels and
        bracketed comments are skipped.

        Parameters
        ----------
        newick_string : str
            Newick format tree

        Returns
        -------
        Tree
            Parsed tree
        """
        newick = re.sub(r'\[[^\]]*\]', '', newick_string)
        newick = newick.strip()

        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")

        tree_line = newick[:newick.index(';')]
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
        if not tree_line.strip():
            raise ValueError("Invalid Newick format: no tree found")

        node_id_counter = [0]

        def skip_whitespace(s: str, pos: int) -> int:
            while pos < len(s) and s[pos] == ' ':
                pos += 1
            return pos

        def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
            """Parse a node from position start in string s."""
            node = TreeNode(id=node_id_counter[0], parent=parent)
            node_id_counter[0] += 1
            pos = skip_whitespace(s, start)

            if pos < len(s) and s[pos] == '(':
                pos = skip_whitespace(s, pos + 1)
                while True:
                    child, pos = parse_node(s, pos, node)
                    node.children.append(child)
                    pos = skip_whitespace(s, pos)

                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        continue
                    elif pos < len(s) and s[pos] == ')':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

            name_start = pos
            while pos < len(s) and s[pos] not in ',:();# ':
                pos += 1
            if pos > name_start:
                node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)

            # branch label, e.g. #1: ignored
            if pos < len(s) and s[pos] == '#':
                pos += 1
                while pos < len(s) and s[pos] not in ',:(); ':
                    pos += 1
                pos = skip_whitespace(s, pos)

            if pos < len(s) and s[pos] == ':':
                pos = skip_whitespace(s, pos + 1)
                length_start = pos
                while pos < len(s) and s[pos] not in ',(); ':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")

            return node, pos

        root, pos = parse_node(tree_line, 0, None)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise ValueError(f"Unexpected characters after tree at position {pos}")

        n_nodes = 0
        leaf_names = []
        stack = [root]
        while stack:
            node = stack.pop()
            n_nodes += 1
            if node.is_leaf:
                if not node.name:
                    raise ValueError("All leaves must be named")
                leaf_names.append(node.name)
            stack.extend(reversed(node.children))

        if len(set(leaf_names)) != len(leaf_names):
            raise ValueError("Duplicate leaf names in tree")

        return cls(
            root=root,
            n_nodes=n_nodes,
            n_leaves=len(leaf_names),
            leaf_names=leaf_names,
        )

    @classmethod
    def from_file(cls, filepath) -> "Tree":
        with open(filepath, 'r') as f:
            return cls.from_newick(f.read())

    def _traverse(self) -> list[TreeNode]:
        result = []

        def traverse(node: TreeNode) -> None:
            for child in node.children:
                traverse(child)
            result.append(node)

        traverse(self.root)
        return result

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).
        """
        return list(self._postorder)

    def preorder(self) -> list[TreeNode]:
        """Return nodes in pre-order traversal (root to leaves)."""
        return list(reversed(self._postorder))

    @property
    def n_branches(self) -> int:
        return len(self._branch_nodes)

    def branch_nodes(self) -> list[TreeNode]:
        """Non-root nodes, ordered by branch index."""
        return list(self._branch_nodes)

    def get_branch_lengths(self) -> np.ndarray:
        """Branch lengths as an array indexed by branch index."""
        return np.array([node.branch_length for node in self._branch_nodes], dtype=float)

    def set_branch_lengths(self, lengths) -> None:
        if len(lengths) != self.n_branches:
            raise ValueError(
                f"Expected {self.n_branches} branch lengths, got {len(lengths)}"
            )
        for node, length in zip(self._branch_nodes, lengths):
            node.branch_length = float(length)

    def to_newick(self) -> str:
        """Write the tree back to Newick with current branch lengths."""

        def write(node: TreeNode) -> str:
            s = ''
            if node.children:
                s = '(' + ','.join(write(child) for child in node.children) + ')'
            if node.name:
                s += node.name
            if not node.is_root:
                s += f":{node.branch_length:.6g}"
            return s

        return write(self.root) + ';'
