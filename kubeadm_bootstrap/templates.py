"""Rendering of host configuration files and cluster manifests.

All functions here are pure: they take configuration values and return the
exact text written to disk or piped into ``kubectl apply -f -``.
"""

from typing import Any

import yaml

from kubeadm_bootstrap.models.config import AddressPool, IngressSpec

KERNEL_MODULES = ("overlay", "br_netfilter")

SYSCTL_PARAMS = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}

SWAP_CRON_ENTRY = "@reboot /sbin/swapoff -a"

PKGS_K8S_IO = "https://pkgs.k8s.io"


class _BlockDumper(yaml.SafeDumper):
    """Safe dumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_BlockDumper.add_representer(str, _represent_str)


def dump_manifest(obj: dict[str, Any]) -> str:
    """Serialize a manifest in block style, keeping key order."""
    return yaml.dump(obj, Dumper=_BlockDumper, default_flow_style=False, sort_keys=False)


def render_modules_load(modules: tuple[str, ...] | list[str] = KERNEL_MODULES) -> str:
    """Render a modules-load.d file listing one module per line."""
    return "".join(f"{m}\n" for m in modules)


def render_sysctl(params: dict[str, str] = SYSCTL_PARAMS) -> str:
    """Render a sysctl.d file with aligned ``key = value`` lines."""
    width = max((len(k) for k in params), default=0)
    return "".join(f"{k.ljust(width)} = {v}\n" for k, v in params.items())


def crio_repo_url(release: str) -> str:
    """URL of the CRI-O apt repository for a release line."""
    return f"{PKGS_K8S_IO}/addons:/cri-o:/stable:/{release}/deb/"


def kubernetes_repo_url(release: str) -> str:
    """URL of the Kubernetes apt repository for a release line."""
    return f"{PKGS_K8S_IO}/core:/stable:/{release}/deb/"


def render_apt_source(repo_url: str, keyring: str) -> str:
    """Render a one-line apt source pinned to a signing keyring."""
    return f"deb [signed-by={keyring}] {repo_url} /\n"


def render_kubelet_defaults(node_ip: str) -> str:
    """Render /etc/default/kubelet advertising the node IP."""
    return f"KUBELET_EXTRA_ARGS=--node-ip={node_ip}\n"


def render_swap_cron(existing: str) -> str:
    """Return the crontab with the swap-off boot hook present exactly once."""
    lines = existing.splitlines()
    if SWAP_CRON_ENTRY not in (line.strip() for line in lines):
        lines.append(SWAP_CRON_ENTRY)
    return "\n".join(lines) + "\n"


def render_metallb_config(pools: list[AddressPool]) -> str:
    """Render the MetalLB ConfigMap carrying the layer-2 address pools."""
    config = {
        "address-pools": [
            {"name": p.name, "protocol": p.protocol, "addresses": list(p.addresses)}
            for p in pools
        ]
    }
    manifest = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"namespace": "metallb-system", "name": "config"},
        "data": {"config": dump_manifest(config)},
    }
    return dump_manifest(manifest)


def render_ingress(spec: IngressSpec) -> str:
    """Render a networking.k8s.io/v1 Ingress from routing rules.

    Rules sharing a host are grouped under one ``http.paths`` list. Order is
    preserved and conflicts are left to the ingress controller.
    """
    grouped: dict[str | None, list[dict[str, Any]]] = {}
    for rule in spec.rules:
        grouped.setdefault(rule.host, []).append(
            {
                "path": rule.path,
                "pathType": "Prefix",
                "backend": {"service": {"name": rule.service, "port": {"number": rule.port}}},
            }
        )

    rules = []
    for host, paths in grouped.items():
        entry: dict[str, Any] = {}
        if host:
            entry["host"] = host
        entry["http"] = {"paths": paths}
        rules.append(entry)

    metadata: dict[str, Any] = {"name": spec.name, "namespace": spec.namespace}
    if spec.annotations:
        metadata["annotations"] = dict(spec.annotations)

    body: dict[str, Any] = {}
    if spec.ingress_class:
        body["ingressClassName"] = spec.ingress_class
    body["rules"] = rules

    return dump_manifest(
        {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "Ingress",
            "metadata": metadata,
            "spec": body,
        }
    )
