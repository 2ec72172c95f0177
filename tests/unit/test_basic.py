"""Basic tests to verify project setup."""


def test_import_kubeadm_bootstrap():
    """Test that kubeadm_bootstrap package can be imported."""
    import kubeadm_bootstrap

    assert kubeadm_bootstrap.__version__ == "0.1.0"


def test_import_cli():
    """Test that CLI module can be imported."""
    from kubeadm_bootstrap import cli

    assert cli.app is not None


def test_import_procedures():
    """Test that both procedures can be built."""
    from kubeadm_bootstrap.control_plane import control_plane_procedure
    from kubeadm_bootstrap.node_setup import node_setup_procedure

    assert node_setup_procedure().name == "node-setup"
    assert control_plane_procedure().name == "control-plane"


def test_import_models():
    """Test that models module can be imported."""
    from kubeadm_bootstrap import models

    assert models.BootstrapConfig is not None


def test_example_config_loads():
    """Test that the shipped example configuration is valid."""
    from pathlib import Path

    from kubeadm_bootstrap.models import BootstrapConfig

    config = BootstrapConfig.load(Path(__file__).parent.parent.parent / "bootstrap.example.yml")

    assert config.node_name == "k8s-master"
    assert config.example_ingress.name == "demo-ingress"
    assert [r.path for r in config.example_ingress.rules] == ["/app", "/app1", "/app2"]
