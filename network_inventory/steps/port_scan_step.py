"""
TCP port scan step for the Network Inventory Module.

Connects to every configured port of every target, ports of one target in
order and targets in parallel. Each open port becomes a Service seeded with its
well-known name and the banner the listener sends on connect, and is merged
into the registry straight away so later fingerprinting steps see it even
while other targets are still being scanned.
"""

import re
import socket
from typing import List, Optional

from .base_step import BaseStep, TargetSource
from ..config.config_loader import PortScanConfig
from ..core.data_models import Host, HostStatus, Service, well_known_service_name

WHITESPACE = re.compile(r"\s+")


def clean_banner(data: bytes) -> str:
    """Decode banner bytes and collapse every whitespace run to one space."""
    text = data.decode("utf-8", errors="replace")
    return WHITESPACE.sub(" ", text).strip()


def read_banner(sock: socket.socket, timeout: float, max_bytes: int) -> str:
    """
    Read whatever a freshly connected service sends unprompted.

    Args:
        sock: Connected socket
        timeout: Seconds to wait for the first bytes
        max_bytes: Upper bound on bytes read

    Returns:
        Cleaned banner, empty text when the peer closed without sending, or a
        diagnostic starting with "Error"
    """
    try:
        sock.settimeout(timeout)
        data = sock.recv(max_bytes)
    except socket.timeout:
        return "Error: Timeout reading banner."
    except OSError as e:
        return f"Error reading banner: {e}"

    return clean_banner(data) if data else ""


class PortScanStep(BaseStep):
    """TCP connect scan with banner capture."""

    key = "portscan"
    name = "Port Scan Sweep"
    description = "Port scan a range of ports to discover services."

    def __init__(self, registry, config: Optional[PortScanConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or PortScanConfig()
        if self.config.target_source == TargetSource.ONLINE:
            self.target_source = TargetSource.ONLINE

    def run(self, targets: List[str]) -> None:
        if not self.config.ports:
            self._append_log("Error: No ports specified for scanning.")
            self._set_message("No ports configured")
            self.logger.error("Port scan skipped: no ports configured in portscan_config.yml")
            return

        self._set_message("Starting port scan...")
        self._append_log("Port scan initiated.")
        self._sweep(targets, self._scan_target, self.config.max_workers, operation="port_scan")
        self._set_message("Port scan completed.")
        self._append_log("Port scan finished.")

    def _scan_target(self, ip: str) -> None:
        self._append_log(f"Scanning {ip} for open ports...")
        open_count = 0

        for port in self.config.ports:
            service = self._probe_port(ip, port)
            if service is None:
                continue

            open_count += 1
            self.registry.upsert(
                Host.from_address(ip, status=HostStatus.ONLINE, services=[service])
            )

        if not open_count:
            self._append_log(f"{ip}: No open services found.")
        else:
            self.logger.debug(f"{ip}: {open_count} open ports")

    def _probe_port(self, ip: str, port: int) -> Optional[Service]:
        """
        Connect to one port and grab its banner.

        Returns:
            The discovered Service, or None when the port is not open
        """
        try:
            sock = socket.create_connection((ip, port), timeout=self.config.connect_timeout)
        except ConnectionRefusedError:
            self._append_log(f"  {ip}:{port} Connection refused (CLOSED)")
            return None
        except socket.timeout:
            self._append_log(f"  {ip}:{port} is CLOSED or TIMED OUT")
            return None
        except OSError as e:
            self._append_log(f"  {ip}:{port} Error during scan: {e}")
            return None

        with sock:
            self._append_log(f"  {ip}:{port} is OPEN")
            banner = read_banner(sock, self.config.banner_timeout, self.config.banner_bytes)

        return Service(
            port=port,
            protocol="tcp",
            service_name=well_known_service_name(port),
            description=banner,
        )
