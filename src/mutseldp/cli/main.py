"""Main CLI application for mutseldp."""

import sys
from pathlib import Path
from typing import List, Optional

import numpy as np
import typer

from ..analysis.reader import ChainReader
from ..errors import InvariantViolationError, NumericalInstabilityError
from ..io.trees import Tree
from ..mcmc.chain import Chain
from ..mcmc.config import EstimationMode, ModelConfig
from ..models.nucleotide import GTRNucMatrix, N_NUCLEOTIDES, N_RELATIVE_RATES
from ..simulate.codon import MutSelCodonSimulator, random_site_profiles
from ..simulate.output import SimulationOutput

app = typer.Typer(
    name="mutseldp",
    help="Bayesian mutation-selection codon models with Dirichlet process mixtures of fitness profiles",
    no_args_is_help=True,
)


def _fail(message: str, error: Exception) -> None:
    print(f"Error: {message}", file=sys.stderr)
    print(f"Details: {error}", file=sys.stderr)
    sys.exit(1)


@app.command()
def run(
    name: str = typer.Argument(..., help="Chain name (base path of the output files)"),
    data: List[Path] = typer.Option(
        ...,
        "--data", "-d",
        help="Codon alignment (FASTA or PHYLIP); repeat for a multi-gene analysis",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Tree file (Newick format)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    ncat: int = typer.Option(-1, "--ncat", help="Truncation of the site mixture (-1: min(sites, 100))"),
    basencat: int = typer.Option(-1, "--basencat", help="Truncation of the base mixture (-1: 100)"),
    every: int = typer.Option(1, "--every", help="Iterations between saved points", min=1),
    until: int = typer.Option(-1, "--until", help="Number of points to save (-1: run until stopped)"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for reproducibility"),
    bl_mode: EstimationMode = typer.Option(EstimationMode.INDEPENDENT, "--bl-mode", help="Branch length estimation"),
    nuc_mode: EstimationMode = typer.Option(EstimationMode.INDEPENDENT, "--nuc-mode", help="Nucleotide rate estimation"),
    base_mode: EstimationMode = typer.Option(EstimationMode.INDEPENDENT, "--base-mode", help="Base mixture estimation"),
    omega_mode: Optional[EstimationMode] = typer.Option(
        None, "--omega-mode",
        help="Omega estimation (default: independent for one alignment, shrunken for several)",
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress progress messages"),
):
    """
    Start a new chain.

    One alignment runs the single-gene model; several alignments run the
    multi-gene model with shared branch lengths and base mixture.

    Example:
        mutseldp run -d gene.fasta -t tree.nwk --ncat 50 --until 1000 mychain
    """
    if omega_mode is None:
        omega_mode = EstimationMode.SHRUNKEN if len(data) > 1 else EstimationMode.INDEPENDENT
    try:
        config = ModelConfig(
            ncat=ncat,
            basencat=basencat,
            bl_mode=bl_mode,
            nuc_mode=nuc_mode,
            base_mode=base_mode,
            omega_mode=omega_mode,
        )
    except ValueError as e:
        _fail("Invalid model settings", e)

    try:
        chain = Chain.create(
            name, [str(p) for p in data], str(tree), config,
            every=every, until=until, seed=seed, verbose=not quiet,
        )
    except (OSError, ValueError) as e:
        _fail("Could not set up the model", e)

    if not quiet:
        print(f"Chain:      {name}", file=sys.stderr)
        print(f"Alignments: {', '.join(str(p) for p in data)}", file=sys.stderr)
        print(f"Tree:       {tree}", file=sys.stderr)
        print(file=sys.stderr)
    try:
        chain.start()
    except (NumericalInstabilityError, InvariantViolationError) as e:
        _fail(f"Sampler failed in chain '{name}'", e)


@app.command()
def resume(
    name: str = typer.Argument(..., help="Chain name"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress progress messages"),
):
    """Continue an existing chain from its last saved state."""
    try:
        chain = Chain.open(name, verbose=not quiet)
    except (OSError, ValueError, InvariantViolationError) as e:
        _fail(f"Could not reopen chain '{name}'", e)
    try:
        chain.resume()
    except (NumericalInstabilityError, InvariantViolationError) as e:
        _fail(f"Sampler failed in chain '{name}'", e)


@app.command()
def stop(name: str = typer.Argument(..., help="Chain name")):
    """Ask a running chain to stop after its current point."""
    run_path = Path(f"{name}.run")
    if not run_path.exists():
        print(f"Error: No running chain '{name}'", file=sys.stderr)
        sys.exit(1)
    run_path.write_text("0\n")


@app.command()
def read(
    name: str = typer.Argument(..., help="Chain name"),
    burnin: int = typer.Option(0, "--burnin", "-x", help="Number of points to discard", min=0),
    every: int = typer.Option(1, "--every", help="Thinning of the saved points", min=1),
    size: int = typer.Option(-1, "--size", help="Maximum number of points to read (-1: all)"),
    profiles: bool = typer.Option(False, "--profiles", help="Write posterior mean site profiles"),
    ppred: bool = typer.Option(False, "--ppred", help="Simulate posterior predictive alignments"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for posterior predictive simulation"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress progress messages"),
):
    """
    Summarize a single-gene chain.

    Without flags, prints the posterior summary of omega.

    Example:
        mutseldp read mychain --burnin 100 --every 10 --profiles
    """
    try:
        reader = ChainReader(name, verbose=not quiet)
    except (OSError, ValueError) as e:
        _fail(f"Could not read chain '{name}'", e)

    size_limit = None if size < 0 else size
    try:
        if profiles:
            path = reader.write_site_profiles(reader.mean_site_profiles(burnin, every, size_limit))
            print(f"Site profiles -> {path}")
        elif ppred:
            paths = reader.posterior_predictive(burnin, every, size_limit, seed=seed)
            print(f"{len(paths)} posterior predictive alignments written")
        else:
            summary = reader.omega_summary(burnin, every, size_limit)
            print(f"points\t{summary['n_points']}")
            print(f"omega\t{summary['mean']:.4f}\t({summary['lower']:.4f}, {summary['upper']:.4f})")
            print(f"median\t{summary['median']:.4f}")
            print(f"pp(omega>1)\t{summary['pp_greater_than_one']:.3f}")
    except (ValueError, NumericalInstabilityError, InvariantViolationError) as e:
        _fail("Could not summarize the chain", e)


@app.command()
def simulate(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Tree file (Newick format with branch lengths)",
        exists=True,
    ),
    output: Path = typer.Option(..., "--output", "-o", help="Output FASTA file"),
    sites: int = typer.Option(..., "--sites", "-n", help="Number of codon sites", min=1),
    nprofiles: int = typer.Option(5, "--nprofiles", help="Number of distinct fitness profiles", min=1),
    concentration: float = typer.Option(5.0, "--concentration", help="Dirichlet concentration of the profiles"),
    omega: float = typer.Option(1.0, "--omega", help="Nonsynonymous rate multiplier"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for reproducibility"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress progress messages"),
):
    """
    Simulate a codon alignment under a mutation-selection model.

    Writes the alignment, a JSON file of parameters and the true site profiles.

    Example:
        mutseldp simulate -t tree.nwk -n 200 --nprofiles 10 --omega 0.5 -o sim.fasta
    """
    try:
        tree_obj = Tree.from_file(tree)
    except (OSError, ValueError) as e:
        _fail(f"Could not load tree from {tree}", e)

    try:
        profiles = random_site_profiles(sites, nprofiles, concentration, seed=seed)
        nuc = GTRNucMatrix(
            np.full(N_RELATIVE_RATES, 1.0 / N_RELATIVE_RATES),
            np.full(N_NUCLEOTIDES, 1.0 / N_NUCLEOTIDES),
        )
        simulator = MutSelCodonSimulator(tree_obj, profiles, nuc, omega=omega, seed=seed)
        sequences = simulator.simulate()
    except ValueError as e:
        _fail("Simulation failed", e)

    SimulationOutput.write_fasta(sequences, output)
    params = simulator.get_parameters()
    params['seed'] = seed
    params_path = output.parent / f"{output.stem}.params.json"
    SimulationOutput.write_parameters(params, params_path)
    profiles_path = output.parent / f"{output.stem}.profiles.tsv"
    SimulationOutput.write_site_profiles(profiles, profiles_path)

    if not quiet:
        print(f"Alignment  -> {output}", file=sys.stderr)
        print(f"Parameters -> {params_path}", file=sys.stderr)
        print(f"Profiles   -> {profiles_path}", file=sys.stderr)


if __name__ == "__main__":
    app()
