"""
Output formatting for simulated sequences.
"""

import json
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from ..io.sequences import AMINO_ACIDS, INDEX_TO_CODON


class SimulationOutput:
    """
    Write simulated sequences, parameters and true site profiles.
    """

    @staticmethod
    def indices_to_codons(seq_indices: np.ndarray) -> str:
        """Concatenate the codons of an array of codon indices (0-60)."""
        return ''.join(INDEX_TO_CODON[int(i)] for i in seq_indices)

    @staticmethod
    def write_fasta(
        sequences: Dict[str, np.ndarray],
        output_path: Path,
        replicate_id: Optional[int] = None,
        line_width: int = 60,
    ):
        """
        Write sequences to FASTA format.

        Parameters
        ----------
        sequences : dict
            Mapping from species name to sequence array (codon indices)
        output_path : Path
            Output file path
        replicate_id : int, optional
            Replicate number (added to header if provided)
        line_width : int
            Number of nucleotides per line (default 60)
        """
        output_path = Path(output_path)

        with open(output_path, 'w') as f:
            for species, seq_indices in sequences.items():
                codon_seq = SimulationOutput.indices_to_codons(seq_indices)

                header = f">{species}"
                if replicate_id is not None:
                    header += f" replicate={replicate_id}"
                f.write(header + '\n')

                for i in range(0, len(codon_seq), line_width):
                    f.write(codon_seq[i:i+line_width] + '\n')

    @staticmethod
    def write_parameters(params: Dict, output_path: Path, indent: int = 2):
        """Write simulation parameters to a JSON file."""
        with open(Path(output_path), 'w') as f:
            json.dump(params, f, indent=indent)

    @staticmethod
    def write_site_profiles(profiles: np.ndarray, output_path: Path):
        """
        Write one fitness profile per site.

        Output Format
        -------------
        site  A       R       ...  V
        1     0.0412  0.0133  ...  0.0970
        """
        with open(Path(output_path), 'w') as f:
            f.write("site\t" + "\t".join(AMINO_ACIDS) + "\n")
            for i, profile in enumerate(profiles):
                f.write(f"{i+1}\t" + "\t".join(f"{p:.6f}" for p in profile) + "\n")
