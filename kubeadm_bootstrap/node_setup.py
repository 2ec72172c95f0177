"""Common node setup, run on every control-plane and worker machine.

Leaves the machine with swap disabled (now and after reboot), the kernel
prepared for pod networking, CRI-O running, and kubelet/kubeadm/kubectl
installed at pinned versions and held against upgrades.
"""

from kubeadm_bootstrap import templates
from kubeadm_bootstrap.logging_config import get_logger
from kubeadm_bootstrap.netinfo import interface_ipv4
from kubeadm_bootstrap.procedure import BootstrapContext, Procedure, Step
from kubeadm_bootstrap.shell import CommandRunner

logger = get_logger(__name__)

MODULES_LOAD_PATH = "/etc/modules-load.d/k8s.conf"
SYSCTL_PATH = "/etc/sysctl.d/k8s.conf"
KEYRING_DIR = "/etc/apt/keyrings"
CRIO_KEYRING = f"{KEYRING_DIR}/cri-o-apt-keyring.gpg"
CRIO_SOURCE_LIST = "/etc/apt/sources.list.d/cri-o.list"
KUBERNETES_KEYRING = f"{KEYRING_DIR}/kubernetes-apt-keyring.gpg"
KUBERNETES_SOURCE_LIST = "/etc/apt/sources.list.d/kubernetes.list"
KUBELET_DEFAULTS_PATH = "/etc/default/kubelet"

PREREQUISITE_PACKAGES = [
    "apt-transport-https",
    "ca-certificates",
    "curl",
    "gpg",
    "software-properties-common",
]
HELD_PACKAGES = ["kubelet", "kubeadm", "kubectl"]


def apt_get(runner: CommandRunner, *args: str) -> None:
    runner.run(["apt-get", *args])


def add_apt_repository(runner: CommandRunner, repo_url: str, keyring: str, source_list: str) -> None:
    """Register a signed apt repository, replacing any previous key and source file."""
    runner.ensure_dir(KEYRING_DIR)
    key = runner.run(["curl", "-fsSL", f"{repo_url}Release.key"], capture=True)
    runner.run(
        ["gpg", "--dearmor", "--batch", "--yes", "-o", str(runner.host_path(keyring))],
        input=key.stdout,
        capture=True,
    )
    runner.write_file(source_list, templates.render_apt_source(repo_url, keyring))


def disable_swap(ctx: BootstrapContext) -> None:
    runner = ctx.runner
    runner.run(["swapoff", "-a"])

    # No crontab yet makes `crontab -l` exit non-zero
    current = runner.run(["crontab", "-l"], capture=True, check=False)
    existing = current.stdout if current.returncode == 0 else ""
    updated = templates.render_swap_cron(existing)
    if updated == existing:
        logger.info("Swap-off boot hook already installed")
        return
    runner.run(["crontab", "-"], input=updated, capture=True)


def refresh_package_index(ctx: BootstrapContext) -> None:
    apt_get(ctx.runner, "update", "-y")


def load_kernel_modules(ctx: BootstrapContext) -> None:
    runner = ctx.runner
    runner.write_file(MODULES_LOAD_PATH, templates.render_modules_load())
    for module in templates.KERNEL_MODULES:
        runner.run(["modprobe", module])


def configure_sysctl(ctx: BootstrapContext) -> None:
    ctx.runner.write_file(SYSCTL_PATH, templates.render_sysctl())
    ctx.runner.run(["sysctl", "--system"], capture=True)


def install_prerequisites(ctx: BootstrapContext) -> None:
    runner = ctx.runner
    # Finish any dpkg run interrupted by an earlier failure
    runner.run(["dpkg", "--configure", "-a"])
    apt_get(runner, "install", "-y", *PREREQUISITE_PACKAGES)


def install_container_runtime(ctx: BootstrapContext) -> None:
    runner = ctx.runner
    repo = templates.crio_repo_url(ctx.config.versions.crio)
    add_apt_repository(runner, repo, CRIO_KEYRING, CRIO_SOURCE_LIST)
    apt_get(runner, "update", "-y")
    apt_get(runner, "install", "-y", "cri-o")
    runner.run(["systemctl", "daemon-reload"])
    runner.run(["systemctl", "enable", "crio", "--now"])
    logger.info("CRI runtime installed successfully")


def install_kubernetes_tools(ctx: BootstrapContext) -> None:
    runner = ctx.runner
    versions = ctx.config.versions
    repo = templates.kubernetes_repo_url(versions.kubernetes)
    add_apt_repository(runner, repo, KUBERNETES_KEYRING, KUBERNETES_SOURCE_LIST)
    apt_get(runner, "update", "-y")
    apt_get(
        runner,
        "install",
        "-y",
        *(f"{package}={version}" for package, version in versions.package_pins().items()),
    )
    runner.run(["apt-mark", "hold", *HELD_PACKAGES])


def install_jq(ctx: BootstrapContext) -> None:
    apt_get(ctx.runner, "install", "-y", "jq")


def configure_kubelet_node_ip(ctx: BootstrapContext) -> None:
    node_ip = interface_ipv4(ctx.runner, ctx.config.network.interface_name)
    ctx.facts["node_ip"] = node_ip
    content = templates.render_kubelet_defaults(node_ip)
    previous = ctx.runner.read_file(KUBELET_DEFAULTS_PATH)
    if previous is not None and previous != content:
        logger.warning(f"Replacing existing {KUBELET_DEFAULTS_PATH}: {previous.strip()}")
    ctx.runner.write_file(KUBELET_DEFAULTS_PATH, content)


def node_setup_procedure() -> Procedure:
    """Build the common node setup procedure."""
    return Procedure(
        "node-setup",
        [
            Step("disable-swap", disable_swap, "turn swap off now and at every boot"),
            Step("refresh-package-index", refresh_package_index, "apt-get update"),
            Step("load-kernel-modules", load_kernel_modules, "overlay and br_netfilter"),
            Step("configure-sysctl", configure_sysctl, "forwarding and bridged traffic filtering"),
            Step("install-prerequisites", install_prerequisites, "packages for signed repositories"),
            Step("install-container-runtime", install_container_runtime, "CRI-O"),
            Step("install-kubernetes-tools", install_kubernetes_tools, "kubelet, kubeadm, kubectl"),
            Step("install-jq", install_jq),
            Step("configure-kubelet-node-ip", configure_kubelet_node_ip, "advertise the node IP"),
        ],
    )
