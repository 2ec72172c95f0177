"""Data models for bootstrap configuration and procedure state."""

from kubeadm_bootstrap.models.config import (
    AddonManifests,
    AddressPool,
    AdvertiseMode,
    BootstrapConfig,
    IngressRule,
    IngressSpec,
    NetworkConfig,
    NodeRole,
    VersionPins,
)
from kubeadm_bootstrap.models.state import ProcedureState, StepRecord

__all__ = [
    "AddonManifests",
    "AddressPool",
    "AdvertiseMode",
    "BootstrapConfig",
    "IngressRule",
    "IngressSpec",
    "NetworkConfig",
    "NodeRole",
    "VersionPins",
    "ProcedureState",
    "StepRecord",
]
