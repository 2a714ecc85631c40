"""
Codon alignment parsing and the genetic code tables.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import numpy as np


# Genetic code tables (standard code)
GENETIC_CODE = {
    'TTT': 'F', 'TTC': 'F', 'TTA': 'L', 'TTG': 'L',
    'TCT': 'S', 'TCC': 'S', 'TCA': 'S', 'TCG': 'S',
    'TAT': 'Y', 'TAC': 'Y', 'TAA': '*', 'TAG': '*',
    'TGT': 'C', 'TGC': 'C', 'TGA': '*', 'TGG': 'W',
    'CTT': 'L', 'CTC': 'L', 'CTA': 'L', 'CTG': 'L',
    'CCT': 'P', 'CCC': 'P', 'CCA': 'P', 'CCG': 'P',
    'CAT': 'H', 'CAC': 'H', 'CAA': 'Q', 'CAG': 'Q',
    'CGT': 'R', 'CGC': 'R', 'CGA': 'R', 'CGG': 'R',
    'ATT': 'I', 'ATC': 'I', 'ATA': 'I', 'ATG': 'M',
    'ACT': 'T', 'ACC': 'T', 'ACA': 'T', 'ACG': 'T',
    'AAT': 'N', 'AAC': 'N', 'AAA': 'K', 'AAG': 'K',
    'AGT': 'S', 'AGC': 'S', 'AGA': 'R', 'AGG': 'R',
    'GTT': 'V', 'GTC': 'V', 'GTA': 'V', 'GTG': 'V',
    'GCT': 'A', 'GCC': 'A', 'GCA': 'A', 'GCG': 'A',
    'GAT': 'D', 'GAC': 'D', 'GAA': 'E', 'GAG': 'E',
    'GGT': 'G', 'GGC': 'G', 'GGA': 'G', 'GGG': 'G',
}

# Nucleotide encoding (T=0, C=1, A=2, G=3)
NUCLEOTIDES = 'TCAG'
NUCLEOTIDE_TO_INDEX = {nuc: i for i, nuc in enumerate(NUCLEOTIDES)}
INDEX_TO_NUCLEOTIDE = {i: nuc for i, nuc in enumerate(NUCLEOTIDES)}

# Sense codons in TCAG order; stop codons are excluded from the state space
CODONS = [
    a + b + c
    for a in NUCLEOTIDES
    for b in NUCLEOTIDES
    for c in NUCLEOTIDES
    if GENETIC_CODE[a + b + c] != '*'
]
N_CODONS = len(CODONS)

CODON_TO_INDEX = {codon: i for i, codon in enumerate(CODONS)}
INDEX_TO_CODON = {i: codon for i, codon in enumerate(CODONS)}

# Special codes for missing/ambiguous data
GAP_CODE = 64  # Gap codon (---)
UNKNOWN_CODE = -1  # Unknown/stop codon

# Amino acid encoding
AMINO_ACIDS = 'ARNDCQEGHILKMFPSTWYV'
N_AMINO_ACIDS = len(AMINO_ACIDS)
AA_TO_INDEX = {aa: i for i, aa in enumerate(AMINO_ACIDS)}
INDEX_TO_AA = {i: aa for i, aa in enumerate(AMINO_ACIDS)}


def is_missing(code: int) -> bool:
    """True for gap or unknown codon codes."""
    return code < 0 or code >= N_CODONS


@dataclass
class Alignment:
    """
    Codon multiple sequence alignment.

    Attributes
    ----------
    names : list[str]
        Sequence names/labels
    sequences : ndarray, shape (n_species, n_sites)
        Codon indices (0-60), GAP_CODE for gaps or UNKNOWN_CODE for
        stop/ambiguous codons
    n_species : int
        Number of sequences
    n_sites : int
        Number of codon sites
    """

    names: list[str]
    sequences: np.ndarray
    n_species: int
    n_sites: int

    @classmethod
    def from_file(cls, filepath: Path | str) -> "Alignment":
        """
        Parse an alignment, trying sequential PHYLIP first and then FASTA.
        """
        filepath = Path(filepath)
        with open(filepath, 'r') as f:
            first = f.readline().strip()
        if first.startswith('>'):
            return cls.from_fasta(filepath)
        return cls.from_phylip(filepath)

    @classmethod
    def from_phylip(cls, filepath: Path | str) -> "Alignment":
        """
        Parse sequential PHYLIP format alignment file.

        The first line contains n_sequences and sequence_length (in
        nucleotides). Each sequence starts with a name, either alone on its
        line or followed by the sequence data on the same line.

        Parameters
        ----------
        filepath : Path or str
            Path to PHYLIP format file

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        with open(filepath, 'r') as f:
            lines = [line.rstrip() for line in f.readlines()]

        header = lines[0].strip().split()
        if len(header) < 2:
            raise ValueError(f"Invalid PHYLIP header: {lines[0]!r}")
        n_species = int(header[0])
        n_chars = int(header[1])

        if n_chars % 3 != 0:
            raise ValueError(f"Codon sequence length {n_chars} not divisible by 3")

        names = []
        sequences_raw = []

        i = 1
        while i < len(lines) and len(names) < n_species:
            line = lines[i].strip()
            i += 1

            if not line:
                continue

            # Name alone on a line, or name followed by sequence data
            fields = line.split(None, 1)
            names.append(fields[0])
            seq_data = re.sub(r'\s', '', fields[1]).upper() if len(fields) > 1 else ""

            while len(seq_data) < n_chars and i < len(lines):
                line = lines[i].strip()
                i += 1
                if not line:
                    continue
                seq_data += re.sub(r'\s', '', line).upper()

            sequences_raw.append(seq_data)

        if len(names) != n_species:
            raise ValueError(f"Expected {n_species} sequences, found {len(names)}")

        for name, seq in zip(names, sequences_raw):
            if len(seq) != n_chars:
                raise ValueError(
                    f"Sequence {name} has length {len(seq)}, expected {n_chars}"
                )

        return cls(
            names=names,
            sequences=cls._encode_codons(sequences_raw),
            n_species=n_species,
            n_sites=n_chars // 3,
        )

    @classmethod
    def from_fasta(cls, filepath: Path | str) -> "Alignment":
        """
        Parse FASTA format alignment file.

        Parameters
        ----------
        filepath : Path or str
            Path to FASTA format file

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        names = []
        sequences_raw = []

        with open(filepath, 'r') as f:
            current_name = None
            current_seq = []

            for line in f:
                line = line.strip()

                if not line:
                    continue

                if line.startswith('>'):
                    if current_name is not None:
                        names.append(current_name)
                        sequences_raw.append(''.join(current_seq))

                    current_name = line[1:].split()[0] if line[1:].strip() else ""
                    current_seq = []
                else:
                    current_seq.append(line.upper())

            if current_name is not None:
                names.append(current_name)
                sequences_raw.append(''.join(current_seq))

        if not names:
            raise ValueError("No sequences found in FASTA file")

        sequences_clean = [re.sub(r'\s', '', seq) for seq in sequences_raw]

        seq_lengths = {len(seq) for seq in sequences_clean}
        if len(seq_lengths) > 1:
            raise ValueError(f"Sequences have different lengths: {seq_lengths}")

        n_chars = len(sequences_clean[0])
        if n_chars % 3 != 0:
            raise ValueError(f"Codon sequence length {n_chars} not divisible by 3")

        return cls(
            names=names,
            sequences=cls._encode_codons(sequences_clean),
            n_species=len(names),
            n_sites=n_chars // 3,
        )

    @classmethod
    def from_codon_indices(cls, sequences: Dict[str, np.ndarray]) -> "Alignment":
        """
        Build an alignment from a mapping of names to codon index arrays.

        This is the form returned by the sequence simulators.
        """
        names = list(sequences)
        if not names:
            raise ValueError("No sequences given")
        encoded = np.array([np.asarray(sequences[name]) for name in names], dtype=np.int16)
        return cls(
            names=names,
            sequences=encoded,
            n_species=len(names),
            n_sites=encoded.shape[1],
        )

    @staticmethod
    def _encode_codons(sequences: list[str]) -> np.ndarray:
        """
        Encode codon sequences as integer arrays.

        Returns
        -------
        encoded : ndarray, shape (n_sequences, n_codons)
            Codon indices (0-60), GAP_CODE for gaps (---) and UNKNOWN_CODE
            for stop codons or codons with ambiguous nucleotides
        """
        n_sequences = len(sequences)
        n_codons = len(sequences[0]) // 3

        encoded = np.zeros((n_sequences, n_codons), dtype=np.int16)

        for i, seq in enumerate(sequences):
            for j in range(n_codons):
                codon = seq[j * 3 : j * 3 + 3].replace('U', 'T')
                if codon == '---':
                    encoded[i, j] = GAP_CODE
                elif codon in CODON_TO_INDEX:
                    encoded[i, j] = CODON_TO_INDEX[codon]
                else:
                    encoded[i, j] = UNKNOWN_CODE

        return encoded

    def decode(self, row: int) -> str:
        """Decode one sequence back to nucleotides (missing codons as ---/NNN)."""
        out = []
        for idx in self.sequences[row]:
            idx = int(idx)
            if idx == GAP_CODE:
                out.append('---')
            elif is_missing(idx):
                out.append('NNN')
            else:
                out.append(INDEX_TO_CODON[idx])
        return ''.join(out)

    def to_fasta(self, filepath: Path | str, line_width: int = 60) -> None:
        """
        Write alignment to FASTA format file.
        """
        filepath = Path(filepath)

        with open(filepath, 'w') as f:
            for row, name in enumerate(self.names):
                f.write(f">{name}\n")
                seq = self.decode(row)
                for i in range(0, len(seq), line_width):
                    f.write(seq[i:i+line_width] + '\n')

    def __repr__(self) -> str:
        return f"Alignment(n_species={self.n_species}, n_sites={self.n_sites})"
