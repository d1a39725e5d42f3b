"""
Network utility functions for address handling and target expansion.

This module provides helper functions for IP address validation and sorting,
MAC address normalisation, and the expansion of user target syntax into the
flat address list the probe steps consume.
"""

import ipaddress
import re
from typing import List, Optional

from .error_handler import ValidationError

MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")


def is_valid_ip(ip_address: str) -> bool:
    """
    Check if a string represents a valid IPv4 address.

    Args:
        ip_address: String to validate as IPv4 address

    Returns:
        bool: True if valid IPv4 address, False otherwise
    """
    try:
        ipaddress.IPv4Address(ip_address)
        return True
    except (ipaddress.AddressValueError, ValueError):
        return False


def is_valid_mac(mac: str) -> bool:
    """Check if string is a MAC address in colon or dash notation."""
    return bool(mac) and bool(MAC_PATTERN.match(mac))


def normalize_mac(mac: str) -> str:
    """Convert a MAC address to upper-case colon-separated form."""
    return mac.strip().replace("-", ":").upper()


def ip_sort_key(ip_address: str) -> tuple:
    """
    Generate sort key for IP address to enable proper sorting.

    Args:
        ip_address: IP address string

    Returns:
        tuple: Sort key for IP address
    """
    try:
        return tuple(int(part) for part in ip_address.split("."))
    except (ValueError, AttributeError):
        # Invalid addresses sort last
        return (999, 999, 999, 999)


def generate_ip_range(start_ip: str, end_ip: str) -> List[str]:
    """
    Generate a list of IP addresses between start and end (inclusive).

    Args:
        start_ip: Starting IP address
        end_ip: Ending IP address

    Returns:
        List[str]: List of IP addresses in the range

    Raises:
        ValidationError: If IP addresses are invalid or start > end
    """
    try:
        start = ipaddress.IPv4Address(start_ip)
        end = ipaddress.IPv4Address(end_ip)
    except (ipaddress.AddressValueError, ValueError) as e:
        raise ValidationError(f"Invalid IP address: {e}") from e

    if start > end:
        raise ValidationError(f"Start IP {start_ip} is greater than end IP {end_ip}")

    return [str(ipaddress.IPv4Address(value)) for value in range(int(start), int(end) + 1)]


def get_network_hosts(network: str, exclude_addresses: Optional[List[str]] = None) -> List[str]:
    """
    Get all host addresses in a network, optionally excluding specific addresses.

    Args:
        network: Network in CIDR notation (e.g., "192.168.1.0/24")
        exclude_addresses: List of IP addresses to exclude from the result

    Returns:
        List[str]: List of host IP addresses

    Raises:
        ValidationError: If network is invalid
    """
    try:
        net = ipaddress.IPv4Network(network, strict=False)
    except ValueError as e:
        raise ValidationError(f"Invalid network: {network}") from e

    exclude_set = set(exclude_addresses or [])
    return [str(ip) for ip in net.hosts() if str(ip) not in exclude_set]


def _expand_wildcard(entry: str) -> List[str]:
    """Expand every ``x`` octet of an entry to 1..254."""
    octets = entry.split(".")
    if len(octets) != 4:
        raise ValidationError(f"Invalid wildcard target: {entry}")

    addresses = [""]
    for octet in octets:
        if octet.lower() == "x":
            choices = [str(value) for value in range(1, 255)]
        else:
            choices = [octet]
        addresses = [f"{prefix}.{choice}" if prefix else choice
                     for prefix in addresses for choice in choices]

    for address in addresses:
        if not is_valid_ip(address):
            raise ValidationError(f"Invalid wildcard target: {entry}")
    return addresses


def _expand_range(entry: str) -> List[str]:
    """
    Expand a ``start-endSuffix`` range.

    The end part shares the start's leading octets, so ``10.0.0.5-20`` covers
    10.0.0.5 to 10.0.0.20 and ``10.0.0.5-1.7`` covers 10.0.0.5 to 10.0.1.7.
    """
    start, _, end_suffix = entry.partition("-")
    start = start.strip()
    end_suffix = end_suffix.strip()
    start_octets = start.split(".")
    suffix_octets = end_suffix.split(".")

    if len(start_octets) != 4 or not 1 <= len(suffix_octets) <= 4:
        raise ValidationError(f"Invalid range target: {entry}")

    end = ".".join(start_octets[: 4 - len(suffix_octets)] + suffix_octets)
    return generate_ip_range(start, end)


def expand_targets(text: str) -> List[str]:
    """
    Expand user target syntax into a flat, ordered address list.

    Entries are separated by commas. Each entry is a literal address, an
    address with ``x`` as a wildcard octet (expanded to 1..254), a
    ``start-endSuffix`` range, or a network in CIDR notation. Duplicates are
    dropped while keeping first-seen order.

    Args:
        text: Target specification as typed by the user

    Returns:
        List of IPv4 address strings

    Raises:
        ValidationError: If any entry cannot be parsed
    """
    targets: List[str] = []
    seen = set()

    for raw_entry in text.split(","):
        entry = raw_entry.strip()
        if not entry:
            continue

        if "/" in entry:
            addresses = get_network_hosts(entry)
        elif "x" in entry.lower():
            addresses = _expand_wildcard(entry)
        elif "-" in entry:
            addresses = _expand_range(entry)
        elif is_valid_ip(entry):
            addresses = [entry]
        else:
            raise ValidationError(f"Invalid target: {entry}")

        for address in addresses:
            if address not in seen:
                seen.add(address)
                targets.append(address)

    return targets
