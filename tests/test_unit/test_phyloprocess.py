"""
Unit tests for the pruning likelihood and the substitution mapping.
"""

import numpy as np
import pytest

from mutseldp.core.phyloprocess import PhyloProcess, UniformizationSampler
from mutseldp.core.suffstat import PathSuffStatArray, PoissonSuffStatArray
from mutseldp.io.sequences import CODON_TO_INDEX, GAP_CODE, N_AMINO_ACIDS, N_CODONS, Alignment
from mutseldp.io.trees import Tree
from mutseldp.models.codon import get_codon_state_space
from mutseldp.models.mutsel import AAMutSelOmegaMatrix


@pytest.fixture
def matrices(nuc_matrix):
    rng = np.random.default_rng(11)
    return [AAMutSelOmegaMatrix(nuc_matrix, rng.dirichlet(np.ones(N_AMINO_ACIDS)), 0.6) for _ in range(2)]


class TestPruning:

    def test_two_taxa_closed_form(self, matrices):
        tree = Tree.from_newick("(A:0.1,B:0.2);")
        x, y = CODON_TO_INDEX['ATG'], CODON_TO_INDEX['ATA']
        aln = Alignment.from_codon_indices({"A": np.array([x]), "B": np.array([y])})
        process = PhyloProcess(tree, aln)
        lengths = tree.get_branch_lengths()
        m = matrices[0]

        lnL = process.log_likelihood(matrices, np.array([0]), lengths)
        # reversibility: the root can be moved to leaf A
        expected = np.log(m.stationary[x] * m.transition_matrix(0.3)[x, y])
        assert lnL == pytest.approx(expected, rel=1e-8)

    def test_site_likelihoods_sum(self, simple_tree, small_alignment, matrices):
        process = PhyloProcess(simple_tree, small_alignment)
        allocation = np.arange(small_alignment.n_sites) % 2
        lengths = simple_tree.get_branch_lengths()
        per_site = process.site_log_likelihoods(matrices, allocation, lengths)
        assert per_site.shape == (small_alignment.n_sites,)
        assert np.all(np.isfinite(per_site))
        assert np.all(per_site < 0)
        assert process.log_likelihood(matrices, allocation, lengths) == pytest.approx(per_site.sum())

    def test_missing_data_is_flat(self, matrices):
        tree = Tree.from_newick("((A:0.1,B:0.2):0.1,C:0.3);")
        x = CODON_TO_INDEX['GCT']
        with_gap = Alignment.from_codon_indices(
            {"A": np.array([x]), "B": np.array([x]), "C": np.array([GAP_CODE])}
        )
        two = Alignment.from_codon_indices({"A": np.array([x]), "B": np.array([x])})
        lengths = tree.get_branch_lengths()
        lnL3 = PhyloProcess(tree, with_gap).log_likelihood(matrices, np.array([0]), lengths)
        lnL2 = PhyloProcess(Tree.from_newick("(A:0.1,B:0.2);"), two).log_likelihood(
            matrices, np.array([0]), np.array([0.1, 0.2])
        )
        assert lnL3 == pytest.approx(lnL2, rel=1e-8)

    def test_name_mismatch(self, simple_tree):
        aln = Alignment.from_codon_indices({"A": np.array([0]), "B": np.array([0]), "Z": np.array([0])})
        with pytest.raises(ValueError, match="not found"):
            PhyloProcess(simple_tree, aln)


class TestMapping:

    @pytest.fixture
    def mapped(self, simple_tree, small_alignment, matrices):
        process = PhyloProcess(simple_tree, small_alignment)
        allocation = np.arange(small_alignment.n_sites) % 2
        lengths = np.array([0.3, 0.5, 0.2, 0.4, 0.6, 0.1])
        process.resample_mapping(matrices, allocation, lengths, np.random.default_rng(0))
        return process, allocation, lengths

    def test_segments_cover_branches(self, mapped, small_alignment):
        process, _, _ = mapped
        for site in range(small_alignment.n_sites):
            for branch in range(6):
                sel = (process.seg_site == site) & (process.seg_branch == branch)
                assert process.seg_frac[sel].sum() == pytest.approx(1.0)

    def test_leaf_states_match_alignment(self, mapped, simple_tree, small_alignment):
        process, _, _ = mapped
        rows = {name: i for i, name in enumerate(small_alignment.names)}
        for node in simple_tree.branch_nodes():
            if not node.is_leaf:
                continue
            for site in range(small_alignment.n_sites):
                sel = np.flatnonzero((process.seg_site == site) & (process.seg_branch == node.index))
                assert process.seg_state[sel[-1]] == small_alignment.sequences[rows[node.name], site]

    def test_jumps_are_single_nucleotide(self, mapped):
        process, _, _ = mapped
        ss = get_codon_state_space()
        assert np.all(ss.neighbor_mask[process.jump_from, process.jump_to])

    def test_path_suffstat(self, mapped, small_alignment):
        process, _, lengths = mapped
        ss = PathSuffStatArray(small_alignment.n_sites, N_CODONS)
        process.add_path_suffstat(ss, lengths)
        np.testing.assert_array_equal(ss.root_count.sum(axis=1), 1)
        np.testing.assert_allclose(ss.waiting_time.sum(axis=1), lengths.sum())
        assert ss.total_substitutions() == process.total_substitutions()

    def test_length_suffstat(self, mapped, matrices):
        process, allocation, _ = mapped
        ss = PoissonSuffStatArray(6)
        process.add_length_suffstat(ss, matrices, allocation)
        assert ss.count.sum() == process.total_substitutions()
        assert np.all(ss.beta > 0)

    def test_partial_resampling_keeps_shape(self, mapped, small_alignment, matrices):
        process, allocation, lengths = mapped
        process.resample_mapping(matrices, allocation, lengths, np.random.default_rng(1), frac=0.5)
        ss = PathSuffStatArray(small_alignment.n_sites, N_CODONS)
        process.add_path_suffstat(ss, lengths)
        np.testing.assert_allclose(ss.waiting_time.sum(axis=1), lengths.sum())


class TestUniformization:

    def test_endpoints(self, matrices):
        sampler = UniformizationSampler(matrices[0].Q)
        rng = np.random.default_rng(3)
        a, b = CODON_TO_INDEX['AAA'], CODON_TO_INDEX['AAG']
        for _ in range(20):
            states, times = sampler.sample(a, b, 0.5, rng)
            assert states[0] == a
            assert states[-1] == b
            assert len(times) == len(states) - 1
            assert np.all(np.diff(times) >= 0)

    def test_expected_substitutions(self, nuc_matrix):
        # unconditioned on the end state, the number of real jumps from a
        # stationary start has mean -t * sum(pi * diag)
        m = AAMutSelOmegaMatrix(nuc_matrix, np.full(N_AMINO_ACIDS, 0.05), 1.0)
        sampler = UniformizationSampler(m.Q)
        rng = np.random.default_rng(4)
        t = 0.4
        P = m.transition_matrix(t)
        n_jumps = []
        for _ in range(3000):
            a = int(rng.choice(N_CODONS, p=m.stationary))
            b = int(rng.choice(N_CODONS, p=P[a]))
            states, _ = sampler.sample(a, b, t, rng)
            n_jumps.append(sum(1 for i in range(1, len(states)) if states[i] != states[i - 1]))
        expected = -t * np.dot(m.stationary, m.diagonal)
        assert np.mean(n_jumps) == pytest.approx(expected, rel=0.1)
