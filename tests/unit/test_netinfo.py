"""Tests for advertise address discovery."""

from unittest.mock import Mock, patch

import pytest
import requests

from kubeadm_bootstrap.exceptions import CommandError, ConfigurationError, NetworkLookupError
from kubeadm_bootstrap.models.config import NetworkConfig
from kubeadm_bootstrap.netinfo import (
    INET_FILTER,
    interface_ipv4,
    public_ipv4,
    resolve_advertise_address,
)


def test_interface_address_piped_through_jq(fake_runner):
    assert interface_ipv4(fake_runner, "ens33") == "10.0.0.5"

    assert fake_runner.history == [
        ["ip", "--json", "addr", "show", "ens33"],
        ["jq", "-r", INET_FILTER],
    ]
    assert '"local": "10.0.0.5"' in fake_runner.input_for(["jq"])


def test_interface_uses_first_ipv4(fake_runner):
    fake_runner.responses[("jq",)] = (0, "10.0.0.5\n10.0.0.6\n")

    assert interface_ipv4(fake_runner, "ens33") == "10.0.0.5"


def test_interface_without_ipv4(fake_runner):
    fake_runner.responses[("jq",)] = (0, "")

    with pytest.raises(NetworkLookupError) as exc_info:
        interface_ipv4(fake_runner, "eth9")

    assert "eth9" in exc_info.value.message


def test_missing_interface_is_command_failure(fake_runner):
    fake_runner.responses[("ip", "--json", "addr", "show", "eth9")] = (1, "")

    with pytest.raises(CommandError) as exc_info:
        interface_ipv4(fake_runner, "eth9")

    assert exc_info.value.returncode == 1
    assert fake_runner.commands("jq") == []


@patch("kubeadm_bootstrap.netinfo.requests.get")
def test_public_address(mock_get):
    response = Mock()
    response.text = "203.0.113.9\n"
    mock_get.return_value = response

    assert public_ipv4("https://ifconfig.me") == "203.0.113.9"
    mock_get.assert_called_once_with("https://ifconfig.me", timeout=10)


@patch("kubeadm_bootstrap.netinfo.requests.get")
def test_public_address_unreachable(mock_get):
    mock_get.side_effect = requests.ConnectionError("no route to host")

    with pytest.raises(NetworkLookupError) as exc_info:
        public_ipv4("https://ifconfig.me")

    assert "ifconfig.me" in exc_info.value.message
    assert "no route to host" in exc_info.value.details


@patch("kubeadm_bootstrap.netinfo.requests.get")
def test_public_address_garbage(mock_get):
    response = Mock()
    response.text = "<html>rate limited</html>"
    mock_get.return_value = response

    with pytest.raises(NetworkLookupError):
        public_ipv4("https://ifconfig.me")


def test_private_mode_resolves_interface(fake_runner):
    network = NetworkConfig(advertise_mode="private", interface_name="ens33")

    assert resolve_advertise_address(network, fake_runner) == "10.0.0.5"


@patch("kubeadm_bootstrap.netinfo.requests.get")
def test_public_mode_never_touches_interface(mock_get, fake_runner):
    response = Mock()
    response.text = "198.51.100.7"
    mock_get.return_value = response

    address = resolve_advertise_address(NetworkConfig(advertise_mode="public"), fake_runner)

    assert address == "198.51.100.7"
    assert fake_runner.history == []
    mock_get.assert_called_once_with("https://ifconfig.me/ip", timeout=10)


def test_unknown_mode_rejected(fake_runner):
    network = NetworkConfig.model_construct(advertise_mode="maybe", interface_name="ens33")

    with pytest.raises(ConfigurationError) as exc_info:
        resolve_advertise_address(network, fake_runner)

    assert "'maybe'" in exc_info.value.message
    assert fake_runner.history == []


def test_dry_run_placeholders(tmp_path):
    from kubeadm_bootstrap.shell import CommandRunner

    runner = CommandRunner(dry_run=True, root=tmp_path, console=Mock())

    assert resolve_advertise_address(NetworkConfig(), runner) == "<ens33-ipv4>"
    assert resolve_advertise_address(NetworkConfig(advertise_mode="public"), runner) == (
        "<public-ipv4>"
    )
