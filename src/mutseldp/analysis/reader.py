"""
Posterior summaries from a saved chain.
"""

import json
import sys
from pathlib import Path
from typing import Dict, Iterator, Optional

import numpy as np

from ..mcmc.chain import SINGLE_GENE, build_model, read_chain_lines
from ..mcmc.config import ModelConfig
from ..mcmc.model import MutSelDPOmegaModel


class ChainReader:
    """
    Replay the saved points of a single-gene chain.

    Parameters
    ----------
    name : str
        Base path of the chain files
    verbose : bool
        Print progress to stderr

    Examples
    --------
    >>> reader = ChainReader("mychain")
    >>> profiles = reader.mean_site_profiles(burnin=100, every=10)
    >>> reader.write_site_profiles(profiles)
    """

    def __init__(self, name: str, verbose: bool = False):
        self.name = str(name)
        self.verbose = verbose
        param_path = Path(f"{self.name}.param")
        if not param_path.exists():
            raise FileNotFoundError(f"No parameter file for chain '{self.name}': {param_path}")
        with open(param_path) as f:
            self.params = json.load(f)
        if self.params["model"] != SINGLE_GENE:
            raise ValueError(f"Chain '{self.name}' is a {self.params['model']} chain; expected {SINGLE_GENE}")

        config = ModelConfig.from_dict(self.params["config"])
        self.model: MutSelDPOmegaModel = build_model(
            self.params["model"], self.params["alignments"], self.params["tree"], config, self.params.get("seed")
        )
        self.lines = read_chain_lines(self.name)

    @property
    def n_points(self) -> int:
        return len(self.lines)

    def points(self, burnin: int = 0, every: int = 1, size: Optional[int] = None) -> Iterator[MutSelDPOmegaModel]:
        """
        Load every ``every``-th saved point after ``burnin``, at most ``size`` of them.

        The same model instance is yielded each time, set to the point's state.
        """
        if burnin < 0 or every < 1:
            raise ValueError(f"Invalid burnin={burnin} / every={every}")
        selected = self.lines[burnin::every]
        if size is not None and size >= 0:
            selected = selected[:size]
        if not selected:
            raise ValueError(
                f"No points to read: chain has {self.n_points} points, burnin={burnin}, every={every}"
            )
        if self.verbose:
            print(f"{len(selected)} points to read", file=sys.stderr)
        for line in selected:
            self.model.from_stream(line, resample_mapping=False)
            if self.verbose:
                print('.', end='', file=sys.stderr, flush=True)
            yield self.model
        if self.verbose:
            print(file=sys.stderr)

    def mean_site_profiles(self, burnin: int = 0, every: int = 1, size: Optional[int] = None) -> np.ndarray:
        """Posterior mean fitness profile of every site, shape (n_sites, 20)."""
        total = np.zeros((self.model.n_sites, self.model.fitness.values.shape[1]))
        n = 0
        for model in self.points(burnin, every, size):
            total += model.site_profiles()
            n += 1
        return total / n

    def omega_summary(self, burnin: int = 0, every: int = 1, size: Optional[int] = None) -> Dict[str, float]:
        """Posterior mean, median, 95% credible interval and P(omega > 1)."""
        omegas = np.array([model.omega for model in self.points(burnin, every, size)])
        lower, upper = np.percentile(omegas, [2.5, 97.5])
        return {
            'mean': float(omegas.mean()),
            'median': float(np.median(omegas)),
            'lower': float(lower),
            'upper': float(upper),
            'pp_greater_than_one': float(np.mean(omegas > 1.0)),
            'n_points': int(len(omegas)),
        }

    def write_site_profiles(self, profiles: np.ndarray, path: Optional[Path] = None) -> Path:
        """
        Write mean profiles to ``name.siteprofiles``: the number of sites,
        then one line per site (1-based index followed by 20 frequencies).
        """
        path = Path(path) if path is not None else Path(f"{self.name}.siteprofiles")
        with open(path, 'w') as f:
            f.write(f"{len(profiles)}\n")
            for i, profile in enumerate(profiles):
                f.write(f"{i + 1}\t" + "\t".join(repr(float(p)) for p in profile) + "\n")
        return path

    def posterior_predictive(self, burnin: int = 0, every: int = 1, size: Optional[int] = None,
                             seed: Optional[int] = None) -> list[Path]:
        """Simulate one alignment per point, written to ``ppred_<name>_<i>.fasta``."""
        rng = np.random.default_rng(seed)
        chain_path = Path(self.name)
        paths = []
        for i, model in enumerate(self.points(burnin, every, size)):
            path = chain_path.with_name(f"ppred_{chain_path.name}_{i}.fasta")
            model.posterior_predictive(path, seed=int(rng.integers(2**32)))
            paths.append(path)
        return paths
