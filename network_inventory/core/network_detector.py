"""
Network detection functionality for automatically detecting host network configuration.

This module provides the NetworkDetector class which finds the address and
netmask of the interface used for outbound traffic and derives the default
target list: every host address of that network except the scanner's own.
"""

import ipaddress
import socket
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import psutil

from ..utils.error_handler import ErrorContext, ErrorSeverity, ErrorType, NetworkInventoryError
from ..utils.logger import Logger, get_logger

DEFAULT_NETMASK = "255.255.255.0"
# Routing probe target; the UDP connect sends no packet
ROUTE_PROBE_ADDRESS = ("8.8.8.8", 80)


@dataclass
class NetworkInfo:
    """
    Information about the host network configuration.

    Attributes:
        host_ip: IP address of the scanning host
        netmask: Network subnet mask
        network_address: Network address (e.g., 192.168.1.0)
        broadcast_address: Broadcast address (e.g., 192.168.1.255)
        interface_name: Name of the network interface used
        scan_range: List of IP addresses to be scanned
    """
    host_ip: str
    netmask: str
    network_address: str
    broadcast_address: str
    interface_name: str
    scan_range: List[str] = field(default_factory=list)

    @property
    def cidr(self) -> str:
        network = ipaddress.IPv4Network(f"{self.host_ip}/{self.netmask}", strict=False)
        return str(network)


class NetworkDetector:
    """Detects host network configuration and calculates scan ranges."""

    def __init__(self, logger: Optional[Logger] = None):
        self.logger = logger or get_logger(__name__)

    def get_host_network_info(self) -> NetworkInfo:
        """
        Detect and return the host's network configuration.

        Returns:
            NetworkInfo: Complete network configuration including scan range

        Raises:
            NetworkInventoryError: If no usable IPv4 interface is found
        """
        interface_name, host_ip, netmask = self._find_interface()
        self.logger.debug(f"Detected interface {interface_name}: {host_ip}/{netmask}")

        network = ipaddress.IPv4Network(f"{host_ip}/{netmask}", strict=False)
        return NetworkInfo(
            host_ip=host_ip,
            netmask=netmask,
            network_address=str(network.network_address),
            broadcast_address=str(network.broadcast_address),
            interface_name=interface_name,
            scan_range=self.calculate_scan_range(host_ip, netmask),
        )

    def calculate_scan_range(self, host_ip: str, netmask: str) -> List[str]:
        """
        Calculate the IP range to scan, excluding reserved addresses.

        Args:
            host_ip: IP address of the host machine
            netmask: Network subnet mask (e.g., "255.255.255.0" or "24")

        Returns:
            List[str]: Host addresses of the network without ``host_ip``
        """
        network = ipaddress.IPv4Network(f"{host_ip}/{netmask}", strict=False)
        host_addr = ipaddress.IPv4Address(host_ip)
        scan_addresses = [str(addr) for addr in network.hosts() if addr != host_addr]

        self.logger.debug(
            f"Scan range: {len(scan_addresses)} addresses from "
            f"{scan_addresses[0] if scan_addresses else 'N/A'} to "
            f"{scan_addresses[-1] if scan_addresses else 'N/A'}"
        )
        return scan_addresses

    def _find_interface(self) -> Tuple[str, str, str]:
        """
        Pick the interface carrying the primary outbound address.

        Returns:
            Tuple of (interface name, IPv4 address, netmask)
        """
        primary_ip = self.get_primary_local_ip()
        candidates = []

        for interface_name, addresses in psutil.net_if_addrs().items():
            for address in addresses:
                if address.family != socket.AF_INET or not address.address:
                    continue
                if address.address.startswith("127."):
                    continue
                candidates.append((interface_name, address.address, address.netmask or DEFAULT_NETMASK))

        for candidate in candidates:
            if candidate[1] == primary_ip:
                return candidate

        if candidates:
            self.logger.debug(f"Primary address not matched, using {candidates[0][0]}")
            return candidates[0]

        if primary_ip:
            self.logger.warning(f"No interface table entry for {primary_ip}, assuming {DEFAULT_NETMASK}")
            return "default", primary_ip, DEFAULT_NETMASK

        raise NetworkInventoryError(
            "No IPv4 network interface found",
            ErrorContext(
                error_type=ErrorType.NETWORK_ERROR,
                severity=ErrorSeverity.CRITICAL,
                operation="detect_network",
                component="NetworkDetector",
            ),
        )

    def get_primary_local_ip(self) -> Optional[str]:
        """Address the OS would use for outbound traffic, or None."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.connect(ROUTE_PROBE_ADDRESS)
                primary_ip = sock.getsockname()[0]
        except OSError as e:
            self.logger.debug(f"Primary address lookup failed: {e}")
            return None

        if primary_ip and not primary_ip.startswith("127."):
            return primary_ip
        return None
