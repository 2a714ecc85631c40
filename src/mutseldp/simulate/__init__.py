"""
Sequence simulation under mutation-selection codon models.

Used to generate synthetic test data and posterior predictive alignments.
"""

from .base import SequenceSimulator
from .codon import MutSelCodonSimulator, random_site_profiles
from .output import SimulationOutput

__all__ = [
    'SequenceSimulator',
    'MutSelCodonSimulator',
    'SimulationOutput',
    'random_site_profiles',
]
