"""
Input/Output modules for codon alignments and phylogenetic trees.

- **Codon alignments**: FASTA and sequential PHYLIP formats
- **Phylogenetic trees**: Newick format, with per-branch indexing
"""

from mutseldp.io.sequences import Alignment
from mutseldp.io.trees import Tree, TreeNode

__all__ = ["Alignment", "Tree", "TreeNode"]
