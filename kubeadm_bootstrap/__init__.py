"""Kubeadm cluster bootstrap: node preparation and control-plane initialization."""

__version__ = "0.1.0"
