"""Data models for bootstrap configuration."""

import ipaddress
import re
import socket
from enum import Enum
from ipaddress import IPv4Network
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kubeadm_bootstrap.exceptions import ConfigurationError

# Release lines land in repository URLs, package versions on the apt command line
RELEASE_LINE_PATTERN = re.compile(r"v[0-9]+\.[0-9]+")
PACKAGE_VERSION_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+-[0-9A-Za-z.]+")


class NodeRole(str, Enum):
    """Role of the machine being bootstrapped."""

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class AdvertiseMode(str, Enum):
    """Which address the API server advertises."""

    PRIVATE = "private"
    PUBLIC = "public"


def _short_hostname() -> str:
    return socket.gethostname().split(".")[0]


class VersionPins(BaseModel):
    """Pinned versions of the container runtime and cluster tooling.

    The kubelet, kubeadm and kubectl versions must share a compatible
    major.minor line with the kubernetes release line. That is not checked.
    """

    model_config = ConfigDict(frozen=True)

    crio: str = "v1.32"
    kubernetes: str = "v1.32"
    kubelet: str = "1.32.2-1.1"
    kubeadm: str = "1.32.2-1.1"
    kubectl: str = "1.32.2-1.1"

    @field_validator("crio", "kubernetes")
    @classmethod
    def validate_release_line(cls, v: str) -> str:
        """Validate a repository release line such as v1.32."""
        if not RELEASE_LINE_PATTERN.fullmatch(v):
            raise ValueError(f"release line '{v}' must look like v<major>.<minor> (e.g., v1.32)")
        return v

    @field_validator("kubelet", "kubeadm", "kubectl")
    @classmethod
    def validate_package_version(cls, v: str) -> str:
        """Validate an exact apt package version such as 1.32.2-1.1."""
        if not PACKAGE_VERSION_PATTERN.fullmatch(v):
            raise ValueError(
                f"package version '{v}' must look like <major>.<minor>.<patch>-<revision> "
                "(e.g., 1.32.2-1.1)"
            )
        return v

    def package_pins(self) -> dict[str, str]:
        """Map each cluster tooling package to its pinned version."""
        return {"kubelet": self.kubelet, "kubectl": self.kubectl, "kubeadm": self.kubeadm}


class NetworkConfig(BaseModel):
    """Network settings used when initializing the control plane."""

    model_config = ConfigDict(frozen=True)

    pod_cidr: IPv4Network = IPv4Network("192.168.0.0/16")
    advertise_mode: AdvertiseMode = AdvertiseMode.PRIVATE
    interface_name: str = "ens33"
    public_ip_url: str = "https://ifconfig.me/ip"

    @field_validator("advertise_mode", mode="before")
    @classmethod
    def validate_advertise_mode(cls, v):
        """Accept 'private' or 'public' in any case.

        Anything else is rejected, including YAML booleans such as ``yes``
        or ``off`` that PyYAML loads from an unquoted word.
        """
        if isinstance(v, AdvertiseMode):
            return v
        allowed = [m.value for m in AdvertiseMode]
        if not isinstance(v, str) or v.lower() not in allowed:
            raise ValueError(f"advertise_mode has an invalid value: '{v}' (expected one of {allowed})")
        return AdvertiseMode(v.lower())

    @field_validator("interface_name")
    @classmethod
    def validate_interface_name(cls, v: str) -> str:
        """Validate the interface name is a plausible Linux interface name."""
        if not v or len(v) > 15 or not re.fullmatch(r"[A-Za-z0-9_.:@-]+", v):
            raise ValueError(f"interface_name '{v}' is not a valid network interface name")
        return v


class AddressPool(BaseModel):
    """Layer-2 address pool handed to the load-balancer add-on."""

    model_config = ConfigDict(frozen=True)

    name: str = "default"
    protocol: str = "layer2"
    addresses: list[str] = Field(default_factory=lambda: ["192.168.1.240-192.168.1.250"])

    @field_validator("addresses")
    @classmethod
    def validate_addresses(cls, v: list[str]) -> list[str]:
        """Validate each entry is an IP range or a CIDR block."""
        if not v:
            raise ValueError("addresses cannot be empty")
        for entry in v:
            try:
                if "-" in entry:
                    start, end = (ipaddress.ip_address(p.strip()) for p in entry.split("-", 1))
                    if start.version != end.version or start > end:
                        raise ValueError(f"range '{entry}' is reversed or mixes address families")
                else:
                    ipaddress.ip_network(entry)
            except ValueError as e:
                raise ValueError(f"invalid address pool entry '{entry}': {e}")
        return v


class IngressRule(BaseModel):
    """One host/path routing rule of the example ingress."""

    model_config = ConfigDict(frozen=True)

    host: str | None = None
    path: str = "/"
    service: str
    port: int = 80

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate the path prefix is absolute."""
        if not v.startswith("/"):
            raise ValueError(f"path '{v}' must start with '/'")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate the backend port range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {v}")
        return v


class IngressSpec(BaseModel):
    """Ingress resource applied once the ingress controller is ready."""

    model_config = ConfigDict(frozen=True)

    name: str = "example-ingress"
    namespace: str = "default"
    ingress_class: str | None = None
    annotations: dict[str, str] = Field(
        default_factory=lambda: {"nginx.ingress.kubernetes.io/rewrite-target": "/"}
    )
    rules: list[IngressRule] = Field(
        default_factory=lambda: [
            IngressRule(host="localhost", path="/", service="nginx-service", port=80)
        ]
    )


class AddonManifests(BaseModel):
    """Upstream manifests applied after the control plane is up."""

    model_config = ConfigDict(frozen=True)

    pod_network: str = "https://docs.projectcalico.org/manifests/calico.yaml"
    load_balancer_namespace: str = (
        "https://raw.githubusercontent.com/metallb/metallb/v0.9.3/manifests/namespace.yaml"
    )
    load_balancer: str = (
        "https://raw.githubusercontent.com/metallb/metallb/v0.9.3/manifests/metallb.yaml"
    )
    ingress_controller: str = (
        "https://raw.githubusercontent.com/kubernetes/ingress-nginx/main/deploy/static/"
        "provider/cloud/deploy.yaml"
    )
    ingress_namespace: str = "ingress-nginx"
    ingress_selector: str = "app.kubernetes.io/component=controller"
    ingress_ready_timeout: int = 90

    @field_validator("ingress_ready_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate the readiness timeout is positive."""
        if v <= 0:
            raise ValueError("ingress_ready_timeout must be positive")
        return v


class BootstrapConfig(BaseModel):
    """Complete, immutable configuration for both procedures."""

    model_config = ConfigDict(frozen=True)

    role: NodeRole = NodeRole.CONTROL_PLANE
    node_name: str = Field(default_factory=_short_hostname)
    versions: VersionPins = Field(default_factory=VersionPins)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    address_pools: list[AddressPool] = Field(default_factory=lambda: [AddressPool()])
    example_ingress: IngressSpec = Field(default_factory=IngressSpec)
    addons: AddonManifests = Field(default_factory=AddonManifests)
    # Swap is disabled by node setup, but kubeadm's swap preflight check can still
    # fire on a freshly rebooted host, so it is overridden by default.
    ignore_preflight_errors: list[str] = Field(default_factory=lambda: ["Swap"])
    use_sudo: bool = False
    kubeconfig_user: str | None = None
    state_dir: Path = Path("/var/lib/kube-bootstrap")

    @field_validator("node_name")
    @classmethod
    def validate_node_name(cls, v: str) -> str:
        """Validate node name follows DNS naming conventions."""
        if not v:
            raise ValueError("node_name cannot be empty")
        if not re.fullmatch(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?", v, re.IGNORECASE):
            raise ValueError(
                f"node_name '{v}' must contain only alphanumeric characters and hyphens, "
                "and cannot start or end with a hyphen"
            )
        return v.lower()

    @field_validator("address_pools")
    @classmethod
    def validate_address_pools(cls, v: list[AddressPool]) -> list[AddressPool]:
        """Validate pool names are unique."""
        names = [p.name for p in v]
        if len(names) != len(set(names)):
            raise ValueError(f"address pool names must be unique, got {names}")
        return v

    def save(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: str | Path) -> "BootstrapConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is unreadable or fails validation
        """
        import yaml

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {path}", str(e))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Configuration file is not valid YAML: {path}", str(e))

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
                f"Found a YAML {type(data).__name__} at the top level",
            )

        try:
            return cls(**data)
        except ValidationError as e:
            problems = "\n".join(
                f"  - {'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration in {path}", problems)
