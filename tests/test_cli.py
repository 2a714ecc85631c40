"""
Unit tests for CLI commands.
"""

import json

from mutseldp.cli.main import app
from mutseldp.errors import InvariantViolationError, NumericalInstabilityError, check_finite
from mutseldp.mcmc.chain import read_chain_lines
from mutseldp.mcmc.model import MutSelDPOmegaModel


class TestCLIHelp:
    """Test help messages and basic CLI functionality."""

    def test_main_help(self, cli_runner):
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "resume", "read", "simulate", "stop"):
            assert command in result.stdout

    def test_run_help(self, cli_runner):
        result = cli_runner.invoke(app, ["run", "--help"])
        assert result.exit_code == 0
        assert "--data" in result.stdout
        assert "--omega-mode" in result.stdout


class TestCLIRun:

    def test_run_and_read(self, cli_runner, data_files, tmp_path):
        name = str(tmp_path / "cli_chain")
        result = cli_runner.invoke(app, [
            "run",
            "-d", str(data_files["alignment"]),
            "-t", str(data_files["tree"]),
            "--ncat", "3",
            "--basencat", "2",
            "--until", "2",
            "--seed", "5",
            "--quiet",
            name,
        ])
        assert result.exit_code == 0, result.output
        assert len(read_chain_lines(name)) == 2

        result = cli_runner.invoke(app, ["read", name, "--quiet"])
        assert result.exit_code == 0, result.output
        assert "omega" in result.stdout
        assert "points\t2" in result.stdout

        result = cli_runner.invoke(app, ["read", name, "--profiles", "--quiet"])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "cli_chain.siteprofiles").exists()

    def test_run_with_modes(self, cli_runner, data_files, tmp_path):
        name = str(tmp_path / "fixed")
        result = cli_runner.invoke(app, [
            "run", "-d", str(data_files["alignment"]), "-t", str(data_files["tree"]),
            "--ncat", "2", "--basencat", "1", "--until", "1", "--omega-mode", "fixed",
            "--quiet", name,
        ])
        assert result.exit_code == 0, result.output
        with open(f"{name}.param") as f:
            assert json.load(f)["config"]["omega_mode"] == "fixed"

    def test_invalid_ncat(self, cli_runner, data_files, tmp_path):
        result = cli_runner.invoke(app, [
            "run", "-d", str(data_files["alignment"]), "-t", str(data_files["tree"]),
            "--ncat", "0", str(tmp_path / "bad"),
        ])
        assert result.exit_code == 1

    def test_resume_missing_chain(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, ["resume", str(tmp_path / "missing"), "--quiet"])
        assert result.exit_code == 1

    def test_stop(self, cli_runner, tmp_path):
        name = tmp_path / "running"
        (tmp_path / "running.run").write_text("1\n")
        result = cli_runner.invoke(app, ["stop", str(name)])
        assert result.exit_code == 0
        assert (tmp_path / "running.run").read_text().strip() == "0"


class TestCLISimulate:

    def test_simulate(self, cli_runner, data_files, tmp_path):
        output = tmp_path / "sim.fasta"
        result = cli_runner.invoke(app, [
            "simulate", "-t", str(data_files["tree"]), "-n", "12",
            "--nprofiles", "3", "--omega", "0.4", "--seed", "1", "-o", str(output), "--quiet",
        ])
        assert result.exit_code == 0, result.output
        assert output.exists()
        params = json.loads((tmp_path / "sim.params.json").read_text())
        assert params["omega"] == 0.4
        assert params["sequence_length"] == 12
        assert (tmp_path / "sim.profiles.tsv").exists()

    def test_simulate_bad_omega(self, cli_runner, data_files, tmp_path):
        result = cli_runner.invoke(app, [
            "simulate", "-t", str(data_files["tree"]), "-n", "5",
            "--omega", "-1", "-o", str(tmp_path / "x.fasta"),
        ])
        assert result.exit_code == 1


class TestCLISamplerFailures:

    def _run(self, cli_runner, data_files, name, until="1"):
        return cli_runner.invoke(app, [
            "run", "-d", str(data_files["alignment"]), "-t", str(data_files["tree"]),
            "--ncat", "2", "--basencat", "1", "--until", until, "--seed", "1", "--quiet", name,
        ])

    def test_non_finite_move_reported(self, cli_runner, data_files, tmp_path, monkeypatch):
        def failing_move(self):
            check_finite(float("nan"), "move")

        monkeypatch.setattr(MutSelDPOmegaModel, "move", failing_move)
        name = str(tmp_path / "unstable")
        result = self._run(cli_runner, data_files, name, until="2")
        assert result.exit_code == 1
        assert not isinstance(result.exception, NumericalInstabilityError)
        assert "Error:" in result.output
        assert "non-finite" in result.output
        assert (tmp_path / "unstable.run").read_text().strip() == "0"

    def test_corrupt_snapshot_on_resume(self, cli_runner, data_files, tmp_path):
        name = str(tmp_path / "corrupt")
        result = self._run(cli_runner, data_files, name)
        assert result.exit_code == 0, result.output

        param_path = tmp_path / "corrupt.param"
        params = json.loads(param_path.read_text())
        params["state"] += "\t0.5"
        param_path.write_text(json.dumps(params))

        result = cli_runner.invoke(app, ["resume", name, "--quiet"])
        assert result.exit_code == 1
        assert not isinstance(result.exception, InvariantViolationError)
        assert "Error:" in result.output
        assert "expected" in result.output
