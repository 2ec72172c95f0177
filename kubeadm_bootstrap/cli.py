"""Main CLI entry point for bootstrapping kubeadm nodes."""

import os
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kubeadm_bootstrap.exceptions import BootstrapError, ConfigurationError
from kubeadm_bootstrap.logging_config import get_logger, setup_logging
from kubeadm_bootstrap.models.config import BootstrapConfig, NodeRole
from kubeadm_bootstrap.procedure import BootstrapContext, Procedure, StateStore

app = typer.Typer(
    name="kube-bootstrap",
    help="Bootstrap kubeadm control-plane and worker nodes",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

DEFAULT_CONFIG = "bootstrap.yml"
PROCEDURE_NAMES = ["node-setup", "control-plane"]
RENDER_KINDS = ["metallb", "ingress", "sysctl", "modules", "kubelet", "apt-sources"]


def get_procedure(name: str) -> Procedure:
    """Look up a procedure by its CLI name."""
    from kubeadm_bootstrap.control_plane import control_plane_procedure
    from kubeadm_bootstrap.node_setup import node_setup_procedure

    if name == "node-setup":
        return node_setup_procedure()
    if name == "control-plane":
        return control_plane_procedure()
    raise ConfigurationError(
        f"Unknown procedure '{name}'", f"Valid procedures: {', '.join(PROCEDURE_NAMES)}"
    )


def load_config(config_path: str) -> BootstrapConfig:
    """Load the configuration file, falling back to defaults if it is missing."""
    path = Path(config_path)
    if not path.exists():
        logger.info(f"Configuration file {path} not found, using defaults")
        console.print(f"[yellow]Note:[/yellow] {escape(str(path))} not found, using default settings")
        return BootstrapConfig()
    return BootstrapConfig.load(path)


def print_error(e: BootstrapError, label: str = "Error") -> None:
    console.print(f"[red]{label}:[/red] {escape(e.message)}")
    if e.details:
        console.print(f"\n{escape(e.details)}")


def run_procedures(
    names: list[str],
    config_path: str,
    dry_run: bool,
    from_step: str | None,
    resume: bool,
    sudo: bool,
) -> None:
    """Run procedures in order and exit non-zero at the first failure."""
    from kubeadm_bootstrap.shell import CommandRunner

    try:
        config = load_config(config_path)
        if from_step and resume:
            raise ConfigurationError("--from-step and --resume cannot be combined")

        use_sudo = sudo or config.use_sudo
        if not dry_run and not use_sudo and os.geteuid() != 0:
            raise ConfigurationError(
                "Bootstrapping must run as root",
                "Re-run with sudo, pass --sudo, or use --dry-run to preview the commands",
            )

        runner = CommandRunner(sudo=use_sudo, dry_run=dry_run, console=console)
        ctx = BootstrapContext(config=config, runner=runner)
        store = None if dry_run else StateStore(config.state_dir)

        for name in names:
            procedure = get_procedure(name)
            start_at = from_step
            if resume and store:
                start_at = store.next_step(procedure)
                saved = store.load(procedure.name)
                if saved is not None and saved.finished:
                    console.print(f"[green]✓[/green] {name} already completed, skipping")
                    continue
                if start_at:
                    console.print(f"Resuming {name} at step '{start_at}'")

            if dry_run:
                console.print(f"\n[bold cyan]Plan for {name}[/bold cyan] [dim](dry run)[/dim]")
            result = procedure.run(ctx, start_at=start_at, store=store)

            if not result.success:
                error = result.error
                print_error(error, "Failed")
                console.print(f"\n[red]✗ {name} stopped at step '{result.failed_step}'[/red]")
                if store:
                    console.print(
                        f"Fix the cause, then resume with: kube-bootstrap {name} --resume"
                    )
                raise typer.Exit(code=1)

            console.print(f"\n[green]✓ {name} completed successfully[/green]")
            # A step name only applies to the first procedure of a chain
            from_step = None

        if dry_run:
            console.print(f"\n[bold]Commands planned:[/bold] {len(runner.history)}")

    except ConfigurationError as e:
        print_error(e, "Configuration Error")
        raise typer.Exit(code=1)
    except BootstrapError as e:
        print_error(e)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(code=130)
    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        console.print("\nRun with --verbose --log-file debug.log for more details")
        raise typer.Exit(code=1)


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from kubeadm_bootstrap import __version__

    typer.echo(f"kube-bootstrap version {__version__}")


@app.command()
def init_config(
    path: str = typer.Argument(DEFAULT_CONFIG, help="Where to write the configuration file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a configuration file populated with the default settings."""
    target = Path(path)
    if target.exists() and not force:
        console.print(f"[red]Error:[/red] {escape(str(target))} already exists (use --force)")
        raise typer.Exit(code=1)

    try:
        BootstrapConfig().save(target)
    except OSError as e:
        console.print(f"[red]Error:[/red] Failed to write {escape(str(target))}: {escape(str(e))}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Wrote default configuration to {escape(str(target))}")


def _config_option():
    return typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to the configuration file")


def _dry_run_option():
    return typer.Option(False, "--dry-run", help="Print the commands without running them")


def _from_step_option():
    return typer.Option(None, "--from-step", help="Start at this step instead of the first")


def _resume_option():
    return typer.Option(False, "--resume", help="Continue from the last failed or pending step")


def _sudo_option():
    return typer.Option(False, "--sudo", help="Run commands and file writes through sudo")


@app.command()
def node_setup(
    config: str = _config_option(),
    dry_run: bool = _dry_run_option(),
    from_step: str | None = _from_step_option(),
    resume: bool = _resume_option(),
    sudo: bool = _sudo_option(),
) -> None:
    """
    Prepare this machine to run cluster software.

    Disables swap, loads kernel modules, sets sysctl parameters, installs
    CRI-O and pinned kubelet/kubeadm/kubectl, and configures the kubelet
    node IP. Run on every control-plane and worker machine.
    """
    run_procedures(["node-setup"], config, dry_run, from_step, resume, sudo)


@app.command()
def control_plane(
    config: str = _config_option(),
    dry_run: bool = _dry_run_option(),
    from_step: str | None = _from_step_option(),
    resume: bool = _resume_option(),
    sudo: bool = _sudo_option(),
) -> None:
    """
    Initialize the control plane and install cluster add-ons.

    Runs kubeadm init, installs the admin kubeconfig for the invoking user,
    and applies Calico, MetalLB, ingress-nginx and an example ingress.
    Requires node-setup to have completed on this machine.
    """
    run_procedures(["control-plane"], config, dry_run, from_step, resume, sudo)


@app.command()
def bootstrap(
    config: str = _config_option(),
    dry_run: bool = _dry_run_option(),
    resume: bool = _resume_option(),
    sudo: bool = _sudo_option(),
) -> None:
    """
    Run every procedure for this machine's role.

    Workers run node-setup only; control-plane machines run node-setup
    followed by control-plane.
    """
    try:
        role = load_config(config).role
    except ConfigurationError as e:
        print_error(e, "Configuration Error")
        raise typer.Exit(code=1)

    names = ["node-setup"]
    if role == NodeRole.CONTROL_PLANE:
        names.append("control-plane")
    run_procedures(names, config, dry_run, None, resume, sudo)


@app.command()
def plan(
    procedure: str = typer.Argument(..., help="Procedure: node-setup or control-plane"),
    config: str = _config_option(),
) -> None:
    """Show every command a procedure would run, without running anything."""
    if procedure not in PROCEDURE_NAMES:
        console.print(
            f"[red]Error:[/red] Invalid procedure '{escape(procedure)}'. "
            f"Must be one of: {', '.join(PROCEDURE_NAMES)}"
        )
        raise typer.Exit(code=1)
    run_procedures([procedure], config, True, None, False, False)


@app.command()
def steps(
    procedure: str = typer.Argument(..., help="Procedure: node-setup or control-plane"),
    config: str = _config_option(),
) -> None:
    """List the steps of a procedure and their last recorded status."""
    try:
        proc = get_procedure(procedure)
        cfg = load_config(config)
        saved = StateStore(cfg.state_dir).load(proc.name)
    except BootstrapError as e:
        print_error(e)
        raise typer.Exit(code=1)

    completed = set(saved.completed) if saved else set()
    failed = saved.failed_step if saved else None

    table = Table(title=f"{proc.name} steps")
    table.add_column("#", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Description")
    table.add_column("Status", style="green")

    for index, step in enumerate(proc.steps, start=1):
        if step.name == failed:
            status = "[red]✗ failed[/red]"
        elif step.name in completed:
            status = "✓ done"
        else:
            status = "pending"
        table.add_row(str(index), step.name, step.description, status)

    console.print(table)


@app.command()
def render(
    kind: str = typer.Argument(..., help=f"What to render: {', '.join(RENDER_KINDS)}"),
    config: str = _config_option(),
    node_ip: str = typer.Option("10.0.0.1", "--node-ip", help="Node IP for the kubelet file"),
) -> None:
    """Print a rendered host file or manifest."""
    from kubeadm_bootstrap import templates
    from kubeadm_bootstrap.node_setup import CRIO_KEYRING, KUBERNETES_KEYRING

    try:
        cfg = load_config(config)
    except ConfigurationError as e:
        print_error(e, "Configuration Error")
        raise typer.Exit(code=1)

    if kind == "metallb":
        text = templates.render_metallb_config(cfg.address_pools)
    elif kind == "ingress":
        text = templates.render_ingress(cfg.example_ingress)
    elif kind == "sysctl":
        text = templates.render_sysctl()
    elif kind == "modules":
        text = templates.render_modules_load()
    elif kind == "kubelet":
        text = templates.render_kubelet_defaults(node_ip)
    elif kind == "apt-sources":
        text = templates.render_apt_source(
            templates.crio_repo_url(cfg.versions.crio), CRIO_KEYRING
        ) + templates.render_apt_source(
            templates.kubernetes_repo_url(cfg.versions.kubernetes), KUBERNETES_KEYRING
        )
    else:
        console.print(
            f"[red]Error:[/red] Invalid kind '{escape(kind)}'. Must be one of: {', '.join(RENDER_KINDS)}"
        )
        raise typer.Exit(code=1)

    typer.echo(text, nl=False)


if __name__ == "__main__":
    app()
