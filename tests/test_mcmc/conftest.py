"""
Fixtures for the sampler tests.
"""

import pytest

from mutseldp.mcmc.model import MutSelDPOmegaModel


@pytest.fixture
def model(small_alignment, simple_tree, small_config):
    """Single-gene model with a fresh substitution mapping."""
    m = MutSelDPOmegaModel(small_alignment, simple_tree, small_config, seed=7)
    m.update()
    return m


@pytest.fixture
def swept_model(model):
    """Model after suffstat collection and a couple of parameter sweeps."""
    model.move_parameters(2)
    model.collect_site_suffstat()
    model.collect_component_suffstat()
    return model
