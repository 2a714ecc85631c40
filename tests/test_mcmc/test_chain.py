"""
Tests of the chain driver and the chain reader.
"""

import json

import numpy as np
import pytest

from mutseldp.analysis.reader import ChainReader
from mutseldp.errors import NumericalInstabilityError, check_finite
from mutseldp.mcmc.chain import MULTI_GENE, SINGLE_GENE, Chain, read_chain_lines
from mutseldp.mcmc.config import ModelConfig


@pytest.fixture
def config():
    return ModelConfig(ncat=3, basencat=2, n_param_reps=1, n_mixture_reps=1,
                       n_base_reps=1, n_base_component_reps=1)


@pytest.fixture
def chain_name(tmp_path):
    return str(tmp_path / "chain")


class TestChain:

    def test_files_written(self, data_files, config, chain_name):
        chain = Chain.create(chain_name, [data_files["alignment"]], data_files["tree"],
                             config, until=3, seed=1, verbose=False)
        chain.start()

        assert chain.size == 3
        lines = read_chain_lines(chain_name)
        assert len(lines) == 3
        with open(f"{chain_name}.trace") as f:
            trace = f.read().splitlines()
        assert trace[0].startswith("#logprior")
        assert len(trace) == 4
        with open(f"{chain_name}.param") as f:
            params = json.load(f)
        assert params["model"] == SINGLE_GENE
        assert params["size"] == 3
        assert params["state"] == lines[-1]
        with open(f"{chain_name}.run") as f:
            assert f.read().strip() == "0"
        with open(f"{chain_name}.monitor") as f:
            assert "size\t3" in f.read()

    def test_resume(self, data_files, config, chain_name):
        chain = Chain.create(chain_name, [data_files["alignment"]], data_files["tree"],
                             config, until=2, seed=1, verbose=False)
        chain.start()

        reopened = Chain.open(chain_name, verbose=False)
        assert reopened.size == 2
        assert reopened.model.to_stream() == read_chain_lines(chain_name)[-1]
        reopened.until = 4
        reopened.resume()
        assert len(read_chain_lines(chain_name)) == 4

    def test_same_seed_same_chain(self, data_files, config, tmp_path):
        streams = []
        for name in ("a", "b"):
            chain = Chain.create(str(tmp_path / name), [data_files["alignment"]], data_files["tree"],
                                 config, until=2, seed=42, verbose=False)
            chain.start()
            streams.append(read_chain_lines(str(tmp_path / name)))
        assert streams[0] == streams[1]

    def test_stopped_by_run_file(self, data_files, config, chain_name):
        chain = Chain.create(chain_name, [data_files["alignment"]], data_files["tree"],
                             config, until=-1, seed=1, verbose=False)
        chain.set_running(False)
        chain.run()
        assert chain.size == 0

    def test_multigene_chain(self, data_files, second_alignment_file, config, chain_name):
        chain = Chain.create(chain_name, [data_files["alignment"], second_alignment_file],
                             data_files["tree"], config, until=1, seed=1, verbose=False)
        assert chain.model_type == MULTI_GENE
        chain.start()
        reopened = Chain.open(chain_name, verbose=False)
        assert reopened.model.to_stream() == read_chain_lines(chain_name)[-1]

    def test_missing_param_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Chain.open(str(tmp_path / "nothing"))

    def test_invalid_every(self, data_files, config, chain_name):
        with pytest.raises(ValueError):
            Chain.create(chain_name, [data_files["alignment"]], data_files["tree"],
                         config, every=0, verbose=False)

    def test_failing_move_clears_run_file(self, data_files, config, chain_name, monkeypatch):
        chain = Chain.create(chain_name, [data_files["alignment"]], data_files["tree"],
                             config, until=3, seed=1, verbose=False)

        def failing_move():
            check_finite(float("nan"), "move")

        monkeypatch.setattr(chain.model, "move", failing_move)
        with pytest.raises(NumericalInstabilityError):
            chain.start()
        with open(f"{chain_name}.run") as f:
            assert f.read().strip() == "0"
        assert chain.size == 0


class TestChainReader:

    @pytest.fixture
    def finished(self, data_files, config, chain_name):
        chain = Chain.create(chain_name, [data_files["alignment"]], data_files["tree"],
                             config, until=4, seed=3, verbose=False)
        chain.start()
        return chain_name

    def test_mean_site_profiles(self, finished):
        reader = ChainReader(finished)
        assert reader.n_points == 4
        profiles = reader.mean_site_profiles(burnin=1)
        assert profiles.shape == (reader.model.n_sites, 20)
        np.testing.assert_allclose(profiles.sum(axis=1), 1.0)

    def test_write_site_profiles(self, finished):
        reader = ChainReader(finished)
        path = reader.write_site_profiles(reader.mean_site_profiles())
        lines = path.read_text().splitlines()
        assert lines[0] == str(reader.model.n_sites)
        assert lines[1].split("\t")[0] == "1"
        assert len(lines[1].split("\t")) == 21

    def test_omega_summary(self, finished):
        summary = ChainReader(finished).omega_summary(burnin=0, every=2)
        assert summary["n_points"] == 2
        assert summary["lower"] <= summary["median"] <= summary["upper"]
        assert 0.0 <= summary["pp_greater_than_one"] <= 1.0

    def test_posterior_predictive(self, finished):
        paths = ChainReader(finished).posterior_predictive(burnin=2, seed=1)
        assert len(paths) == 2
        assert all(p.exists() for p in paths)

    def test_no_points(self, finished):
        with pytest.raises(ValueError, match="No points"):
            ChainReader(finished).omega_summary(burnin=10)

    def test_multigene_rejected(self, data_files, second_alignment_file, config, chain_name):
        chain = Chain.create(chain_name, [data_files["alignment"], second_alignment_file],
                             data_files["tree"], config, until=1, seed=1, verbose=False)
        chain.start()
        with pytest.raises(ValueError):
            ChainReader(chain_name)
