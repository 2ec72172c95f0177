"""Control-plane initialization.

Runs on a host where node setup already succeeded. Initializes the control
plane with kubeadm, installs the admin kubeconfig for the invoking user, and
applies the pod network, the MetalLB address pool, the ingress-nginx
controller and an example ingress.
"""

import getpass
import os
import pwd
from dataclasses import dataclass
from pathlib import Path

from kubeadm_bootstrap import templates
from kubeadm_bootstrap.exceptions import ConfigurationError
from kubeadm_bootstrap.logging_config import get_logger
from kubeadm_bootstrap.models.config import AdvertiseMode, BootstrapConfig
from kubeadm_bootstrap.netinfo import resolve_advertise_address
from kubeadm_bootstrap.procedure import BootstrapContext, Procedure, Step
from kubeadm_bootstrap.readiness import load_core_api, wait_for_ready_pods
from kubeadm_bootstrap.shell import CommandRunner

logger = get_logger(__name__)

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"


@dataclass(frozen=True)
class KubeconfigOwner:
    """The user who receives the admin kubeconfig."""

    name: str
    uid: int
    gid: int
    home: Path

    @property
    def kubeconfig(self) -> Path:
        return self.home / ".kube" / "config"


def resolve_kubeconfig_owner(user: str | None = None) -> KubeconfigOwner:
    """Find the invoking user: the configured one, else SUDO_USER, else the current user.

    Raises:
        ConfigurationError: If the user does not exist
    """
    name = user or os.environ.get("SUDO_USER") or getpass.getuser()
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        raise ConfigurationError(
            f"kubeconfig_user '{name}' does not exist on this host",
            "Set kubeconfig_user to an existing account",
        )
    return KubeconfigOwner(name=name, uid=entry.pw_uid, gid=entry.pw_gid, home=Path(entry.pw_dir))


def kubectl(runner: CommandRunner, *args: str, input: str | None = None) -> None:
    runner.run(["kubectl", f"--kubeconfig={ADMIN_KUBECONFIG}", *args], input=input)


def kubeadm_init_command(config: BootstrapConfig, address: str) -> list[str]:
    """Build the kubeadm init invocation for the resolved advertise address."""
    network = config.network
    if network.advertise_mode == AdvertiseMode.PUBLIC:
        cmd = ["kubeadm", "init", f"--control-plane-endpoint={address}"]
    else:
        cmd = ["kubeadm", "init", f"--apiserver-advertise-address={address}"]
    cmd += [
        f"--apiserver-cert-extra-sans={address}",
        f"--pod-network-cidr={network.pod_cidr}",
        "--node-name",
        config.node_name,
    ]
    if config.ignore_preflight_errors:
        cmd += ["--ignore-preflight-errors", ",".join(config.ignore_preflight_errors)]
    return cmd


def check_advertise_mode(ctx: BootstrapContext) -> None:
    """Reject an unknown advertise mode before anything is pulled or initialized."""
    mode = ctx.config.network.advertise_mode
    allowed = [m.value for m in AdvertiseMode]
    if mode not in allowed:
        value = getattr(mode, "value", mode)
        logger.error(f"advertise_mode has an invalid value: {value}")
        raise ConfigurationError(
            f"advertise_mode has an invalid value: '{value}'",
            f"Expected one of {allowed}",
        )


def pull_images(ctx: BootstrapContext) -> None:
    ctx.runner.run(["kubeadm", "config", "images", "pull"])


def init_control_plane(ctx: BootstrapContext) -> None:
    address = resolve_advertise_address(ctx.config.network, ctx.runner)
    ctx.facts["advertise_address"] = address
    logger.info(f"Initializing control plane advertising {address}")
    ctx.runner.run(kubeadm_init_command(ctx.config, address))


def install_kubeconfig(ctx: BootstrapContext) -> None:
    owner = resolve_kubeconfig_owner(ctx.config.kubeconfig_user)
    ctx.runner.ensure_dir(owner.kubeconfig.parent, uid=owner.uid, gid=owner.gid)
    ctx.runner.copy_file(ADMIN_KUBECONFIG, owner.kubeconfig, uid=owner.uid, gid=owner.gid)
    ctx.facts["kubeconfig"] = str(owner.kubeconfig)
    logger.info(f"Installed kubeconfig for {owner.name} at {owner.kubeconfig}")


def apply_pod_network(ctx: BootstrapContext) -> None:
    kubectl(ctx.runner, "apply", "-f", ctx.config.addons.pod_network)


def apply_load_balancer(ctx: BootstrapContext) -> None:
    addons = ctx.config.addons
    kubectl(ctx.runner, "apply", "-f", addons.load_balancer_namespace)
    kubectl(ctx.runner, "apply", "-f", addons.load_balancer)
    kubectl(
        ctx.runner,
        "apply",
        "-f",
        "-",
        input=templates.render_metallb_config(ctx.config.address_pools),
    )


def apply_ingress_controller(ctx: BootstrapContext) -> None:
    kubectl(ctx.runner, "apply", "-f", ctx.config.addons.ingress_controller)


def wait_ingress_controller(ctx: BootstrapContext) -> None:
    addons = ctx.config.addons
    ctx.runner.console.print("Waiting for the ingress controller to be fully deployed...")
    if ctx.runner.dry_run:
        logger.info("Dry run: skipping ingress controller readiness wait")
        return

    kubeconfig = ctx.facts.get("kubeconfig") or str(
        resolve_kubeconfig_owner(ctx.config.kubeconfig_user).kubeconfig
    )
    api = load_core_api(ctx.runner.host_path(kubeconfig))
    wait_for_ready_pods(
        api,
        addons.ingress_namespace,
        addons.ingress_selector,
        timeout=addons.ingress_ready_timeout,
    )


def apply_example_ingress(ctx: BootstrapContext) -> None:
    kubectl(
        ctx.runner,
        "apply",
        "-f",
        "-",
        input=templates.render_ingress(ctx.config.example_ingress),
    )


def control_plane_procedure() -> Procedure:
    """Build the control-plane initialization procedure."""
    return Procedure(
        "control-plane",
        [
            Step("pull-images", pull_images, "kubeadm config images pull"),
            Step("init-control-plane", init_control_plane, "kubeadm init"),
            Step("install-kubeconfig", install_kubeconfig, "copy admin.conf for the invoking user"),
            Step("apply-pod-network", apply_pod_network, "Calico"),
            Step("apply-load-balancer", apply_load_balancer, "MetalLB with a layer-2 pool"),
            Step("apply-ingress-controller", apply_ingress_controller, "ingress-nginx"),
            Step("wait-ingress-controller", wait_ingress_controller, "wait for a ready controller pod"),
            Step("apply-example-ingress", apply_example_ingress, "example ingress resource"),
        ],
        preflight=check_advertise_mode,
    )
