"""
Pytest configuration and shared fixtures.
"""

import numpy as np
import pytest
from typer.testing import CliRunner

from mutseldp.io.sequences import Alignment
from mutseldp.io.trees import Tree
from mutseldp.mcmc.config import ModelConfig
from mutseldp.models.nucleotide import GTRNucMatrix
from mutseldp.simulate.codon import MutSelCodonSimulator, random_site_profiles
from mutseldp.simulate.output import SimulationOutput


TREE_NEWICK = "((A:0.1,B:0.2):0.15,(C:0.3,D:0.1):0.05);"


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def simple_tree():
    """Four-taxon rooted tree."""
    return Tree.from_newick(TREE_NEWICK)


@pytest.fixture
def nuc_matrix():
    """Uneven GTR mutation matrix."""
    return GTRNucMatrix(
        np.array([0.25, 0.1, 0.15, 0.2, 0.1, 0.2]),
        np.array([0.3, 0.2, 0.3, 0.2]),
    )


def simulate_alignment(tree, n_sites, seed, omega=0.5, n_profiles=3):
    profiles = random_site_profiles(n_sites, n_profiles, concentration=2.0, seed=seed)
    nuc = GTRNucMatrix(np.full(6, 1.0 / 6), np.full(4, 0.25))
    simulator = MutSelCodonSimulator(tree, profiles, nuc, omega=omega, seed=seed)
    return simulator.simulate()


@pytest.fixture
def small_alignment(simple_tree):
    """Ten simulated codon sites on the four-taxon tree."""
    return Alignment.from_codon_indices(simulate_alignment(simple_tree, 10, seed=1))


@pytest.fixture
def second_alignment(simple_tree):
    """Another gene of eight sites on the same tree."""
    return Alignment.from_codon_indices(simulate_alignment(simple_tree, 8, seed=2))


@pytest.fixture
def small_config():
    """Small mixtures and few repetitions so that a sweep is fast."""
    return ModelConfig(
        ncat=4,
        basencat=2,
        n_param_reps=2,
        n_mixture_reps=1,
        n_base_reps=1,
        n_base_component_reps=1,
    )


@pytest.fixture
def data_files(tmp_path, simple_tree):
    """Alignment and tree written to disk."""
    alignment_file = tmp_path / "gene.fasta"
    SimulationOutput.write_fasta(simulate_alignment(simple_tree, 10, seed=3), alignment_file)
    tree_file = tmp_path / "tree.nwk"
    tree_file.write_text(TREE_NEWICK + "\n")
    return {"alignment": alignment_file, "tree": tree_file}


@pytest.fixture
def second_alignment_file(tmp_path, simple_tree):
    path = tmp_path / "gene2.fasta"
    SimulationOutput.write_fasta(simulate_alignment(simple_tree, 6, seed=4), path)
    return path
