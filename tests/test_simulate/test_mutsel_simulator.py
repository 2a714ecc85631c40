"""Tests for the mutation-selection codon simulator."""

import json

import numpy as np
import pytest

from mutseldp.io.sequences import N_AMINO_ACIDS, N_CODONS, Alignment
from mutseldp.models.codon import get_codon_state_space
from mutseldp.simulate.codon import MutSelCodonSimulator, random_site_profiles
from mutseldp.simulate.output import SimulationOutput


class TestRandomSiteProfiles:

    def test_shape_and_sharing(self):
        profiles = random_site_profiles(50, 3, seed=1)
        assert profiles.shape == (50, N_AMINO_ACIDS)
        np.testing.assert_allclose(profiles.sum(axis=1), 1.0)
        assert len(np.unique(profiles, axis=0)) <= 3

    def test_reproducible(self):
        np.testing.assert_array_equal(random_site_profiles(10, 2, seed=4), random_site_profiles(10, 2, seed=4))


class TestMutSelSimulator:
    """Test suite for MutSelCodonSimulator."""

    def test_simulate(self, simple_tree, nuc_matrix):
        profiles = random_site_profiles(30, 2, seed=2)
        sim = MutSelCodonSimulator(simple_tree, profiles, nuc_matrix, omega=0.5, seed=42)
        sequences = sim.simulate()

        assert set(sequences) == {"A", "B", "C", "D"}
        for seq in sequences.values():
            assert seq.shape == (30,)
            assert np.all((seq >= 0) & (seq < N_CODONS))

    def test_reproducible(self, simple_tree, nuc_matrix):
        profiles = random_site_profiles(20, 2, seed=2)
        a = MutSelCodonSimulator(simple_tree, profiles, nuc_matrix, seed=7).simulate()
        b = MutSelCodonSimulator(simple_tree, profiles, nuc_matrix, seed=7).simulate()
        for name in a:
            np.testing.assert_array_equal(a[name], b[name])

    def test_zero_branch_lengths_copy_root(self, simple_tree, nuc_matrix):
        profiles = random_site_profiles(15, 2, seed=3)
        sim = MutSelCodonSimulator(simple_tree, profiles, nuc_matrix,
                                   branch_lengths=np.zeros(6), seed=1)
        sequences = sim.simulate()
        first = sequences["A"]
        for seq in sequences.values():
            np.testing.assert_array_equal(seq, first)

    def test_selection_favours_fit_amino_acids(self, simple_tree, nuc_matrix):
        """Sequences follow the stationary distribution, dominated by the fittest amino acid."""
        profile = np.full(N_AMINO_ACIDS, 0.001)
        profile[9] = 1.0 - 0.001 * (N_AMINO_ACIDS - 1)
        sim = MutSelCodonSimulator(simple_tree, np.tile(profile, (200, 1)), nuc_matrix,
                                   branch_lengths=np.full(6, 5.0), seed=5)
        sequences = sim.simulate()
        codon_aa = get_codon_state_space().codon_aa
        assert np.mean(codon_aa[sequences["A"]] == 9) > 0.8

    def test_invalid_profiles(self, simple_tree, nuc_matrix):
        with pytest.raises(ValueError, match="shape"):
            MutSelCodonSimulator(simple_tree, np.ones((5, 4)), nuc_matrix)
        with pytest.raises(ValueError, match="positive"):
            MutSelCodonSimulator(simple_tree, np.zeros((5, N_AMINO_ACIDS)), nuc_matrix)

    def test_invalid_omega(self, simple_tree, nuc_matrix):
        with pytest.raises(ValueError, match="omega"):
            MutSelCodonSimulator(simple_tree, random_site_profiles(5, 1, seed=1), nuc_matrix, omega=0.0)

    def test_wrong_branch_lengths(self, simple_tree, nuc_matrix):
        with pytest.raises(ValueError):
            MutSelCodonSimulator(simple_tree, random_site_profiles(5, 1, seed=1), nuc_matrix,
                                 branch_lengths=np.ones(3))


class TestSimulationOutput:

    def test_fasta_readable(self, simple_tree, nuc_matrix, tmp_path):
        sequences = MutSelCodonSimulator(
            simple_tree, random_site_profiles(12, 2, seed=1), nuc_matrix, seed=1
        ).simulate()
        path = tmp_path / "sim.fasta"
        SimulationOutput.write_fasta(sequences, path, replicate_id=3)
        aln = Alignment.from_file(path)
        assert aln.n_sites == 12
        np.testing.assert_array_equal(aln.sequences[aln.names.index("C")], sequences["C"])

    def test_parameters_and_profiles(self, tmp_path):
        SimulationOutput.write_parameters({"omega": 0.2}, tmp_path / "p.json")
        assert json.loads((tmp_path / "p.json").read_text()) == {"omega": 0.2}

        profiles = random_site_profiles(3, 1, seed=1)
        SimulationOutput.write_site_profiles(profiles, tmp_path / "prof.tsv")
        lines = (tmp_path / "prof.tsv").read_text().splitlines()
        assert lines[0].startswith("site\tA\tR")
        assert len(lines) == 4
