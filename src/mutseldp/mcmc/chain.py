"""
Chain driver: runs a model and keeps its files on disk.

A chain called ``name`` owns the files

- ``name.param``: JSON with the model type, data paths, configuration,
  saving frequency, target size, current size and current state
- ``name.chain``: one snapshot line per saved point
- ``name.trace``: header plus one line of summary statistics per point
- ``name.monitor``: acceptance rates and timing, rewritten at each point
- ``name.run``: ``1`` while the chain should keep running; writing ``0``
  stops it after the current point
"""

import json
import sys
import time
from pathlib import Path
from typing import Optional, Sequence, Union

from ..io.sequences import Alignment
from ..io.trees import Tree
from .config import ModelConfig
from .model import MutSelDPOmegaModel
from .multigene import MultiGeneModel


SINGLE_GENE = "mutseldp"
MULTI_GENE = "multigene"


def build_model(model_type: str, alignment_paths: Sequence[str], tree_path: str,
                config: ModelConfig, seed: Optional[int] = None):
    """Instantiate a model from data files."""
    tree = Tree.from_file(tree_path)
    if model_type == SINGLE_GENE:
        if len(alignment_paths) != 1:
            raise ValueError(f"{SINGLE_GENE} model takes one alignment, got {len(alignment_paths)}")
        return MutSelDPOmegaModel(Alignment.from_file(alignment_paths[0]), tree, config, seed=seed)
    if model_type == MULTI_GENE:
        alignments = [Alignment.from_file(path) for path in alignment_paths]
        names = [Path(path).stem for path in alignment_paths]
        return MultiGeneModel(alignments, tree, config, seed=seed, gene_names=names)
    raise ValueError(f"Unknown model type '{model_type}'")


class Chain:
    """
    Parameters
    ----------
    model : MutSelDPOmegaModel or MultiGeneModel
    name : str
        Base path of the chain files
    every : int
        Number of iterations between saved points
    until : int
        Number of points after which the chain stops (-1: run until stopped)
    model_type : str
        Model type recorded in the parameter file
    alignment_paths, tree_path : paths of the data, recorded for resuming
    seed : int, optional
        Seed recorded for resuming
    verbose : bool
        Print progress to stderr
    """

    def __init__(
        self,
        model: Union[MutSelDPOmegaModel, MultiGeneModel],
        name: str,
        every: int = 1,
        until: int = -1,
        model_type: str = SINGLE_GENE,
        alignment_paths: Sequence[str] = (),
        tree_path: str = "",
        seed: Optional[int] = None,
        verbose: bool = True,
    ):
        if every < 1:
            raise ValueError(f"every must be at least 1, got {every}")
        self.model = model
        self.name = str(name)
        self.every = every
        self.until = until
        self.model_type = model_type
        self.alignment_paths = [str(p) for p in alignment_paths]
        self.tree_path = str(tree_path)
        self.seed = seed
        self.verbose = verbose
        self.size = 0
        self._start_time = None

    @classmethod
    def create(
        cls,
        name: str,
        alignment_paths: Sequence[str],
        tree_path: str,
        config: Optional[ModelConfig] = None,
        every: int = 1,
        until: int = -1,
        seed: Optional[int] = None,
        verbose: bool = True,
    ) -> "Chain":
        """Build a new chain (single gene for one alignment, multi-gene otherwise)."""
        config = config if config is not None else ModelConfig()
        alignment_paths = [str(Path(p).resolve()) for p in alignment_paths]
        tree_path = str(Path(tree_path).resolve())
        model_type = SINGLE_GENE if len(alignment_paths) == 1 else MULTI_GENE
        model = build_model(model_type, alignment_paths, tree_path, config, seed)
        return cls(model, name, every, until, model_type, alignment_paths, tree_path, seed, verbose)

    @classmethod
    def open(cls, name: str, verbose: bool = True) -> "Chain":
        """Reopen an existing chain from its parameter file, restoring its last state."""
        param_path = Path(f"{name}.param")
        if not param_path.exists():
            raise FileNotFoundError(f"No parameter file for chain '{name}': {param_path}")
        with open(param_path) as f:
            params = json.load(f)

        config = ModelConfig.from_dict(params["config"])
        seed = params.get("seed")
        size = params["size"]
        # continue with a generator derived from the seed and the chain size
        resume_seed = None if seed is None else [seed, size]
        model = build_model(params["model"], params["alignments"], params["tree"], config, resume_seed)
        chain = cls(
            model, name, params["every"], params["until"], params["model"],
            params["alignments"], params["tree"], seed, verbose,
        )
        chain.size = size
        model.from_stream(params["state"])
        return chain

    # ------------------------------------------------------------------
    # Files

    def _path(self, extension: str) -> Path:
        return Path(f"{self.name}.{extension}")

    def save_param(self) -> None:
        params = {
            "model": self.model_type,
            "alignments": self.alignment_paths,
            "tree": self.tree_path,
            "config": self.model.config.to_dict(),
            "every": self.every,
            "until": self.until,
            "seed": self.seed,
            "size": self.size,
            "state": self.model.to_stream(),
        }
        with open(self._path("param"), "w") as f:
            json.dump(params, f, indent=2)

    def set_running(self, running: bool) -> None:
        with open(self._path("run"), "w") as f:
            f.write("1\n" if running else "0\n")

    def is_running(self) -> bool:
        try:
            with open(self._path("run")) as f:
                return f.read().strip() == "1"
        except FileNotFoundError:
            return False

    def save_point(self) -> None:
        with open(self._path("chain"), "a") as f:
            f.write(self.model.to_stream() + "\n")
        with open(self._path("trace"), "a") as f:
            f.write(self.model.trace() + "\n")
        with open(self._path("monitor"), "w") as f:
            f.write(f"size\t{self.size}\n")
            if self._start_time is not None:
                f.write(f"time\t{time.perf_counter() - self._start_time:.2f}\n")
            f.write(self.model.monitor())

    # ------------------------------------------------------------------
    # Running

    def start(self) -> None:
        """Initialise the model, write fresh chain files and run."""
        self.model.stats.reset()
        self.model.update()
        self.size = 0
        with open(self._path("trace"), "w") as f:
            f.write(self.model.trace_header() + "\n")
        open(self._path("chain"), "w").close()
        self.set_running(True)
        self.save_param()
        if self.verbose:
            print(f"Starting chain {self.name}", file=sys.stderr)
        self.run()

    def resume(self) -> None:
        self.set_running(True)
        if self.verbose:
            print(f"Resuming chain {self.name} at point {self.size}", file=sys.stderr)
        self.run()

    def run(self) -> None:
        """
        Run until the target size is reached or the run file is set to 0.

        The run file is reset to 0 on exit, including when a move raises.
        """
        self._start_time = time.perf_counter()
        try:
            while self.is_running() and (self.until == -1 or self.size < self.until):
                start = time.perf_counter()
                for _ in range(self.every):
                    self.model.move()
                self.size += 1
                self.save_point()
                self.save_param()
                if self.verbose:
                    elapsed = time.perf_counter() - start
                    print(
                        f"  point {self.size}: {elapsed:.2f}s  logprior={self.model.log_prior():.3f}",
                        file=sys.stderr,
                    )
        finally:
            self.set_running(False)
        if self.verbose:
            print(f"Chain {self.name} stopped at {self.size} points", file=sys.stderr)


def read_chain_lines(name: str) -> list[str]:
    """All snapshot lines of a chain."""
    with open(f"{name}.chain") as f:
        return [line.rstrip("\n") for line in f if line.strip()]

