"""Discovery of the addresses a node advertises."""

import ipaddress

import requests

from kubeadm_bootstrap.exceptions import ConfigurationError, NetworkLookupError
from kubeadm_bootstrap.logging_config import get_logger
from kubeadm_bootstrap.models.config import AdvertiseMode, NetworkConfig
from kubeadm_bootstrap.shell import CommandRunner

logger = get_logger(__name__)

INET_FILTER = '.[0].addr_info[] | select(.family == "inet") | .local'


def _parse_ipv4(raw: str, source: str) -> str:
    candidate = raw.strip().splitlines()[0].strip() if raw.strip() else ""
    try:
        return str(ipaddress.IPv4Address(candidate))
    except ValueError:
        raise NetworkLookupError(
            f"No IPv4 address found from {source}",
            f"Lookup returned: {raw.strip() or '<empty>'}",
        )


def interface_ipv4(runner: CommandRunner, interface: str) -> str:
    """Return the first IPv4 address bound to a network interface.

    Raises:
        NetworkLookupError: If the interface has no IPv4 address
    """
    if runner.dry_run:
        runner.run(["ip", "--json", "addr", "show", interface], capture=True)
        return f"<{interface}-ipv4>"

    addr = runner.run(["ip", "--json", "addr", "show", interface], capture=True)
    result = runner.run(["jq", "-r", INET_FILTER], input=addr.stdout, capture=True)
    ip = _parse_ipv4(result.stdout, f"interface {interface}")
    logger.info(f"Interface {interface} has address {ip}")
    return ip


def public_ipv4(url: str, timeout: float = 10) -> str:
    """Return this machine's public IPv4 address as seen by a discovery service.

    Raises:
        NetworkLookupError: If the service is unreachable or returns garbage
    """
    logger.debug(f"Querying public address from {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Public address lookup failed: {e}")
        raise NetworkLookupError(
            f"Failed to determine public IP address from {url}",
            f"{e}\nCheck outbound connectivity or use advertise_mode: private",
        )
    ip = _parse_ipv4(response.text, url)
    logger.info(f"Public address is {ip}")
    return ip


def resolve_advertise_address(network: NetworkConfig, runner: CommandRunner) -> str:
    """Resolve the address the API server advertises.

    Raises:
        ConfigurationError: If the advertise mode is not recognized
        NetworkLookupError: If the address cannot be determined
    """
    mode = network.advertise_mode
    if mode == AdvertiseMode.PRIVATE:
        return interface_ipv4(runner, network.interface_name)
    if mode == AdvertiseMode.PUBLIC:
        if runner.dry_run:
            return "<public-ipv4>"
        return public_ipv4(network.public_ip_url)
    raise ConfigurationError(
        f"advertise_mode has an invalid value: '{getattr(mode, 'value', mode)}'",
        "Use 'private' to advertise the interface address or 'public' for the public address",
    )
