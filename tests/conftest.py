"""Pytest configuration and shared fixtures."""

import io
import subprocess
from pathlib import Path

import pytest
from hypothesis import Verbosity, settings
from rich.console import Console

from kubeadm_bootstrap.exceptions import CommandError
from kubeadm_bootstrap.models.config import BootstrapConfig
from kubeadm_bootstrap.procedure import BootstrapContext
from kubeadm_bootstrap.shell import CommandRunner

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


class FakeRunner(CommandRunner):
    """Runner that records commands instead of executing them.

    File writes still happen, below a temporary root. ``responses`` maps a
    command prefix to ``(returncode, stdout)``; the longest matching prefix wins.
    """

    def __init__(self, root: Path, responses: dict[tuple[str, ...], tuple[int, str]] | None = None):
        super().__init__(root=root, console=Console(file=io.StringIO(), width=200))
        self.responses = dict(responses or {})
        self.inputs: list[str | None] = []

    def run(self, cmd, input=None, capture=False, check=True, timeout=None):
        argv = list(cmd)
        self.history.append(argv)
        self.inputs.append(input)

        matches = [k for k in self.responses if tuple(argv[: len(k)]) == k]
        returncode, stdout = self.responses[max(matches, key=len)] if matches else (0, "")
        if check and returncode != 0:
            raise CommandError(
                f"Command failed with exit code {returncode}: {' '.join(argv)}",
                command=argv,
                returncode=returncode,
            )
        return subprocess.CompletedProcess(argv, returncode, stdout=stdout, stderr="")

    def commands(self, program: str) -> list[list[str]]:
        """All recorded invocations of a program."""
        return [c for c in self.history if c and c[0] == program]

    def input_for(self, prefix: list[str]) -> str | None:
        """stdin passed to the last command starting with ``prefix``."""
        for argv, stdin in reversed(list(zip(self.history, self.inputs))):
            if argv[: len(prefix)] == prefix:
                return stdin
        return None


@pytest.fixture
def fake_runner(tmp_path):
    """A recording runner whose interface lookup yields 10.0.0.5 and has no crontab."""
    return FakeRunner(
        tmp_path / "host",
        responses={
            ("ip", "--json", "addr", "show"): (
                0,
                '[{"ifname": "ens33", "addr_info": [{"family": "inet", "local": "10.0.0.5"}]}]',
            ),
            ("jq",): (0, "10.0.0.5\n"),
            ("crontab", "-l"): (1, ""),
        },
    )


@pytest.fixture
def config(tmp_path):
    """Default configuration with a fixed node name and a temporary state dir."""
    return BootstrapConfig(node_name="k8s-master", state_dir=tmp_path / "state")


@pytest.fixture
def ctx(config, fake_runner):
    return BootstrapContext(config=config, runner=fake_runner)
