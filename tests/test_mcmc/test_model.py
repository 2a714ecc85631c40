"""
Tests of the single-gene two-level Dirichlet-process model.
"""

import numpy as np
import pytest
from scipy import stats

from mutseldp.core.distributions import PROFILE_FLOOR
from mutseldp.errors import InvariantViolationError
from mutseldp.io.sequences import Alignment, N_AMINO_ACIDS
from mutseldp.mcmc.config import ModelConfig
from mutseldp.mcmc.model import MutSelDPOmegaModel
from mutseldp.models.mutsel import AAMutSelOmegaMatrix


def assert_cache_consistent(model):
    """Every built matrix must match the current profile, omega and mutation rates."""
    for k in range(model.ncat):
        if model.matrices.is_dirty(k):
            continue
        cached = model.matrices[k]
        fresh = AAMutSelOmegaMatrix(model.nuc_matrix, model.fitness[k], model.omega)
        np.testing.assert_allclose(cached.fitness, model.fitness[k])
        np.testing.assert_allclose(cached.Q, fresh.Q, rtol=1e-10, atol=1e-14)


class TestConstruction:

    def test_shapes(self, model, small_alignment):
        assert model.ncat == 4
        assert model.basencat == 2
        assert model.fitness.values.shape == (4, N_AMINO_ACIDS)
        assert len(model.site_alloc) == small_alignment.n_sites
        assert len(model.component_alloc) == model.ncat
        np.testing.assert_allclose(model.fitness.values.sum(axis=1), 1.0)
        assert model.weights.weights.sum() == pytest.approx(1.0)

    def test_default_ncat_follows_sites(self, small_alignment, simple_tree):
        m = MutSelDPOmegaModel(small_alignment, simple_tree, ModelConfig(basencat=3), seed=1)
        assert m.ncat == small_alignment.n_sites

    def test_finite_log_probabilities(self, model):
        assert np.isfinite(model.log_prior())
        assert np.isfinite(model.log_likelihood())
        assert model.log_likelihood() < 0

    def test_occupancy_matches_allocation(self, model):
        model.mixture.check_occupancy()
        model.base.level.check_occupancy()
        assert 1 <= model.n_cluster <= model.ncat
        assert model.occupancy.total == model.n_sites
        assert model.base.occupancy.total == model.ncat

    def test_site_profiles(self, model):
        profiles = model.site_profiles()
        assert profiles.shape == (model.n_sites, N_AMINO_ACIDS)
        np.testing.assert_array_equal(profiles[3], model.get_site_profile(3))


class TestSuffStats:

    def test_component_suffstat_sums_sites(self, swept_model):
        m = swept_model
        np.testing.assert_allclose(
            m.component_suffstat.waiting_time.sum(), m.site_suffstat.waiting_time.sum()
        )
        for k in range(m.ncat):
            sites = m.site_alloc.values == k
            np.testing.assert_allclose(
                m.component_suffstat.root_count[k], m.site_suffstat.root_count[sites].sum(axis=0)
            )

    def test_omega_suffstat_gives_path_likelihood_in_omega(self, swept_model):
        m = swept_model
        m.collect_omega_suffstat()
        omega1 = m.omega
        lp1 = m.path_suffstat_log_prob()
        omega2 = 2.5 * omega1
        m.set_omega(omega2)
        lp2 = m.path_suffstat_log_prob()
        expected = m.omega_suffstat.log_prob(omega2) - m.omega_suffstat.log_prob(omega1)
        assert lp2 - lp1 == pytest.approx(expected, rel=1e-8, abs=1e-8)


class TestMoves:

    def test_profile_moves_keep_cache_consistent(self, swept_model):
        m = swept_model
        m.move_aa(1.0, 1, 3)
        assert_cache_consistent(m)
        m.move_aa_gamma(3.0, 3)
        assert_cache_consistent(m)
        np.testing.assert_allclose(m.fitness.values.sum(axis=1), 1.0)

    @staticmethod
    def _single_flat_component(m, monkeypatch):
        """One occupied component with a Dirichlet(1, ..., 1) prior and no data."""
        m.site_alloc.values[:] = 0
        m.mixture.update_occupancy()
        m.base.centers.values[:] = 1.0 / N_AMINO_ACIDS
        m.base.concentrations.values[:] = float(N_AMINO_ACIDS)
        monkeypatch.setattr(m, "path_suffstat_log_prob", lambda k=None: 0.0)

    def test_gamma_move_samples_dirichlet_prior(self, swept_model, monkeypatch):
        """Without data every profile entry is Beta(1, 19) under the flat Dirichlet."""
        m = swept_model
        self._single_flat_component(m, monkeypatch)
        for _ in range(100):
            m.move_aa_gamma(1.0, 50)
        samples = []
        for _ in range(2000):
            m.move_aa_gamma(1.0, 50)
            samples.append(m.fitness[0][0])
        samples = np.array(samples)

        assert samples.mean() == pytest.approx(1.0 / N_AMINO_ACIDS, abs=0.006)
        target = stats.beta(1.0, N_AMINO_ACIDS - 1.0)
        assert stats.kstest(samples, target.cdf).pvalue > 0.01

    def test_gamma_move_keeps_clamped_profile_on_simplex(self, swept_model, monkeypatch):
        m = swept_model
        self._single_flat_component(m, monkeypatch)
        m.fitness[0][:] = 1e-300
        m.fitness[0][-1] = 1.0
        m.move_aa_gamma(0.1, 20)

        assert m.stats.rate("aagamma(0.1)") > 0
        profile = m.fitness[0]
        assert np.all(profile >= PROFILE_FLOOR * (1 - 1e-12))
        assert profile.sum() == pytest.approx(1.0, abs=1e-15)

    def test_nuc_moves_keep_cache_consistent(self, swept_model):
        m = swept_model
        m.move_nuc_rates()
        assert_cache_consistent(m)
        assert m.nuc_matrix.relative_rates.sum() == pytest.approx(1.0)
        assert m.nuc_matrix.stationary.sum() == pytest.approx(1.0)

    def test_omega_gibbs(self, swept_model):
        m = swept_model
        m.move_omega()
        assert m.omega > 0
        assert m.matrices.omega == m.omega
        assert_cache_consistent(m)

    def test_branch_lengths_gibbs(self, swept_model):
        m = swept_model
        m.resample_branch_lengths()
        assert m.branch_lengths.shape == (m.n_branches,)
        assert np.all(m.branch_lengths > 0)
        m.move_branch_lengths_hyperparameter()
        assert m.lambda_ > 0

    def test_empty_components_redrawn(self, swept_model):
        m = swept_model
        m.site_alloc.values[:] = 0
        m.mixture.update_occupancy()
        m.matrices.matrices()
        before = m.fitness.values.copy()
        m.resample_empty_components()
        np.testing.assert_array_equal(m.fitness.values[0], before[0])
        assert not m.matrices.is_dirty(0)
        for k in range(1, m.ncat):
            assert not np.array_equal(m.fitness.values[k], before[k])
            assert m.matrices.is_dirty(k)

    def test_resample_alloc_updates_occupancy(self, swept_model):
        m = swept_model
        m.resample_alloc()
        m.mixture.check_occupancy()
        assert m.occupancy.total == m.n_sites

    def test_kappa_moves(self, swept_model):
        m = swept_model
        m.move_kappa()
        assert m.kappa > 0
        assert m.weights.kappa == m.kappa

    def test_base_moves(self, swept_model):
        m = swept_model
        m.move_base(2)
        m.base.level.check_occupancy()
        np.testing.assert_allclose(m.base.centers.values.sum(axis=1), 1.0)
        assert np.all(m.base.concentrations.values > 0)

    def test_full_iteration(self, model):
        model.move()
        assert np.isfinite(model.log_prob())
        assert model.stats.proposed("kappa") > 0
        assert model.stats.proposed("aa(1.0,1)") > 0


class TestLabelSwitching:

    def test_likelihood_invariant(self, swept_model):
        m = swept_model
        m.config.label_switching_factor = 20.0
        profiles = m.site_profiles()
        site_centers = np.array([m.component_centers[k] for k in m.site_alloc.values])
        lnL = m.log_likelihood()
        path_lp = m.path_suffstat_log_prob()

        for _ in range(10):
            m.label_switching_move()

        np.testing.assert_array_equal(m.site_profiles(), profiles)
        np.testing.assert_array_equal(
            np.array([m.component_centers[k] for k in m.site_alloc.values]), site_centers
        )
        assert m.log_likelihood() == pytest.approx(lnL, rel=1e-10)
        assert m.path_suffstat_log_prob() == pytest.approx(path_lp, rel=1e-10)
        assert_cache_consistent(m)

    def test_swap_carries_every_component_array(self, swept_model):
        m = swept_model
        m.matrices.matrices()
        fitness = m.fitness.values.copy()
        suff = m.component_suffstat.waiting_time.copy()
        base_alloc = m.component_alloc.values.copy()
        counts = m.occupancy.counts.copy()
        matrices = m.matrices.backup_all()

        m.mixture.swap_components(0, 3)

        order = [3, 1, 2, 0]
        np.testing.assert_array_equal(m.fitness.values, fitness[order])
        np.testing.assert_array_equal(m.component_suffstat.waiting_time, suff[order])
        np.testing.assert_array_equal(m.component_alloc.values, base_alloc[order])
        np.testing.assert_array_equal(m.occupancy.counts, counts[order])
        assert m.matrices.backup_all() == [matrices[i] for i in order]
        m.mixture.check_occupancy()


class TestSnapshots:

    def test_round_trip(self, swept_model, small_alignment, simple_tree, small_config):
        line = swept_model.to_stream()
        assert len(line.split("\t")) == swept_model.stream_size()

        other = MutSelDPOmegaModel(small_alignment, simple_tree, small_config, seed=99)
        other.from_stream(line, resample_mapping=False)
        assert other.to_stream() == line
        assert other.omega == swept_model.omega
        np.testing.assert_array_equal(other.site_alloc.values, swept_model.site_alloc.values)
        assert other.log_prior() == pytest.approx(swept_model.log_prior())

    def test_wrong_size(self, model):
        line = model.to_stream()
        with pytest.raises(InvariantViolationError):
            model.from_stream(line + "\t1.0")

    def test_modes_change_stream(self, small_alignment, simple_tree):
        local = MutSelDPOmegaModel(small_alignment, simple_tree, ModelConfig(ncat=3, basencat=2), seed=1)
        shared = MutSelDPOmegaModel(
            small_alignment, simple_tree,
            ModelConfig(ncat=3, basencat=2, bl_mode="shared", omega_mode="fixed"), seed=1,
        )
        assert local.stream_size() - shared.stream_size() == 1 + simple_tree.n_branches + 1


class TestSharedParameters:

    def test_fixed_omega_not_moved(self, small_alignment, simple_tree, small_config):
        config = ModelConfig(**{**small_config.to_dict(), "omega_mode": "fixed", "omega": 0.3})
        m = MutSelDPOmegaModel(small_alignment, simple_tree, config, seed=3)
        m.update()
        m.move()
        assert m.omega == 0.3

    def test_set_base_mixture_applies_permutation(self, model):
        values = model.component_alloc.values.copy()
        permutation = np.array([1, 0])
        model.set_base_mixture(model.base, permutation)
        np.testing.assert_array_equal(model.component_alloc.values, 1 - values)
        model.base.level.check_occupancy()


class TestPosteriorPredictive:

    def test_writes_alignment(self, model, tmp_path):
        path = tmp_path / "ppred.fasta"
        aln = model.posterior_predictive(path, seed=1)
        assert path.exists()
        again = Alignment.from_file(path)
        assert again.n_sites == model.n_sites
        assert sorted(again.names) == sorted(aln.names)
