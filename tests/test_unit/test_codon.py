"""
Unit tests for the codon state space and mutation-selection matrices.
"""

import numpy as np
import pytest

from mutseldp.core.matrix import check_detailed_balance, matrix_exponential
from mutseldp.io.sequences import CODON_TO_INDEX, N_AMINO_ACIDS, N_CODONS
from mutseldp.models.codon import get_codon_state_space, is_synonymous
from mutseldp.models.mutsel import AAMutSelOmegaMatrix, CodonMatrixCache, fixation_factor
from mutseldp.models.nucleotide import GTRNucMatrix


def random_profile(seed):
    return np.random.default_rng(seed).dirichlet(np.ones(N_AMINO_ACIDS))


class TestCodonStateSpace:
    """Test neighbour pairs and synonymy."""

    def test_is_synonymous(self):
        assert is_synonymous('TTT', 'TTC')
        assert is_synonymous('CTA', 'CTG')
        assert not is_synonymous('ATG', 'ATT')

    def test_neighbour_pairs(self):
        ss = get_codon_state_space()
        assert ss.n_states == N_CODONS
        # every pair differs at exactly one position
        for a, b in zip(ss.pair_from, ss.pair_to):
            diff = np.sum(ss.codon_nucleotides[a] != ss.codon_nucleotides[b])
            assert diff == 1
        # neighbour relation is symmetric
        assert np.array_equal(ss.neighbor_mask, ss.neighbor_mask.T)

    def test_nonsyn_mask(self):
        ss = get_codon_state_space()
        ttt = CODON_TO_INDEX['TTT']
        ttc = CODON_TO_INDEX['TTC']
        tta = CODON_TO_INDEX['TTA']
        assert ss.nonsyn_mask[ttt, ttc] == 0.0
        assert ss.nonsyn_mask[ttt, tta] == 1.0

    def test_shared_instance(self):
        assert get_codon_state_space() is get_codon_state_space()


class TestFixationFactor:

    def test_neutral(self):
        assert fixation_factor(np.array([0.0]))[0] == pytest.approx(1.0)

    def test_small_values_continuous(self):
        S = np.array([1e-9, 1e-7, -1e-7])
        np.testing.assert_allclose(fixation_factor(S), 1 + S / 2, rtol=1e-6)

    def test_large_values(self):
        assert fixation_factor(np.array([10.0]))[0] == pytest.approx(10.0 / (1 - np.exp(-10.0)))
        assert fixation_factor(np.array([-50.0]))[0] == pytest.approx(50.0 * np.exp(-50.0), rel=1e-6)


class TestAAMutSelOmegaMatrix:
    """Test mutation-selection rate matrices."""

    def test_rows_sum_to_zero(self, nuc_matrix):
        m = AAMutSelOmegaMatrix(nuc_matrix, random_profile(1), omega=0.7)
        np.testing.assert_allclose(m.Q.sum(axis=1), 0.0, atol=1e-12)

    def test_only_neighbours_have_rates(self, nuc_matrix):
        m = AAMutSelOmegaMatrix(nuc_matrix, random_profile(2), omega=0.7)
        off = m.Q.copy()
        np.fill_diagonal(off, 0.0)
        ss = get_codon_state_space()
        assert np.all(off[~ss.neighbor_mask] == 0.0)
        assert np.all(off[ss.neighbor_mask] > 0.0)

    def test_detailed_balance(self, nuc_matrix):
        m = AAMutSelOmegaMatrix(nuc_matrix, random_profile(3), omega=0.4)
        assert m.stationary.sum() == pytest.approx(1.0)
        assert check_detailed_balance(m.Q, m.stationary, rtol=1e-8)

    def test_nonsynonymous_rates_linear_in_omega(self, nuc_matrix):
        profile = random_profile(4)
        m1 = AAMutSelOmegaMatrix(nuc_matrix, profile, omega=1.0)
        m2 = AAMutSelOmegaMatrix(nuc_matrix, profile, omega=2.5)
        ss = get_codon_state_space()
        nonsyn = ss.nonsyn_mask > 0
        np.testing.assert_allclose(m2.Q[nonsyn], 2.5 * m1.Q[nonsyn])
        syn = ss.neighbor_mask & ~nonsyn
        np.testing.assert_allclose(m2.Q[syn], m1.Q[syn])
        np.testing.assert_allclose(m2.nonsyn_rate_per_state, 2.5 * m1.nonsyn_rate_per_state)

    def test_flat_profile_reduces_to_mutation(self):
        nuc = GTRNucMatrix(np.full(6, 1 / 6), np.full(4, 0.25))
        m = AAMutSelOmegaMatrix(nuc, np.full(N_AMINO_ACIDS, 1 / N_AMINO_ACIDS), omega=1.0)
        ss = get_codon_state_space()
        rates = m.Q[ss.pair_from, ss.pair_to]
        np.testing.assert_allclose(rates, rates[0])

    def test_transition_matrix_matches_expm(self, nuc_matrix):
        m = AAMutSelOmegaMatrix(nuc_matrix, random_profile(5), omega=0.8)
        P = m.transition_matrix(0.3)
        np.testing.assert_allclose(P, matrix_exponential(m.Q, 0.3), atol=1e-8)
        np.testing.assert_allclose(P.sum(axis=1), 1.0)


class TestCodonMatrixCache:
    """Test lazy rebuilding and swapping of cached matrices."""

    @pytest.fixture
    def cache(self, nuc_matrix):
        fitness = np.array([random_profile(s) for s in range(3)])
        return CodonMatrixCache(nuc_matrix, fitness, omega=0.5)

    def test_lazy_build(self, cache):
        assert len(cache) == 3
        assert cache.is_dirty(0)
        m = cache[0]
        assert cache[0] is m
        assert cache.n_builds == 1
        assert not cache.is_dirty(0)

    def test_corrupt_rebuilds_from_current_profile(self, cache):
        old = cache[1]
        cache.fitness[1] = random_profile(10)
        assert cache[1] is old
        cache.corrupt(1)
        new = cache[1]
        assert new is not old
        np.testing.assert_allclose(new.fitness, cache.fitness[1])

    def test_swap(self, cache):
        m0, m2 = cache[0], cache[2]
        cache.swap(0, 2)
        assert cache[0] is m2
        assert cache[2] is m0

    def test_set_omega_corrupts_all(self, cache):
        cache.matrices()
        cache.set_omega(2.0)
        assert all(cache.is_dirty(k) for k in range(3))
        assert cache[0].omega == 2.0

    def test_backup_restore(self, cache):
        m = cache[1]
        assert cache.backup(1) is m
        cache.corrupt(1)
        cache.restore(1, m)
        assert cache[1] is m
        saved = cache.backup_all()
        cache.corrupt_all()
        cache.restore_all(saved)
        assert [cache.backup(k) for k in range(3)] == saved
