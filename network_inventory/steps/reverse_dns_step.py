"""
Reverse DNS step for the Network Inventory Module.

Resolves the PTR name of every target and records it as the Hostname of the
matching registry host. Lookups that fail are logged and not retried.
"""

import socket
from typing import List, Optional

from .base_step import BaseStep
from ..config.config_loader import DnsConfig


class ReverseDnsStep(BaseStep):
    """Reverse name lookups against the system resolver."""

    key = "dns"
    name = "DNS Sweep"
    description = "Try to get Hostnames by DNS Query"

    def __init__(self, registry, config: Optional[DnsConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or DnsConfig()

    def run(self, targets: List[str]) -> None:
        if self.config.online_only:
            online = set(self.registry.online_addresses())
            targets = [ip for ip in targets if ip in online] if targets else sorted(online)
            self._append_log(f"Restricted to {len(targets)} online addresses")

        self._sweep(targets, self._lookup, self.config.max_workers, operation="reverse_lookup")

    def _lookup(self, ip: str) -> None:
        result = f"Querying hostname for {ip}..."

        try:
            hostname, _, _ = socket.gethostbyaddr(ip)
        except OSError:  # socket.herror, socket.gaierror, timeouts
            self._append_log(f"{result}DNS lookup failed.")
            return

        hostname = (hostname or "").strip()
        if not hostname or hostname == ip:
            self._append_log(f"{result}No hostname found.")
            return

        if self.registry.find_by_address(ip) is None:
            self._append_log(f"{result}Not in host list, skipped.")
        elif self.registry.update_field(ip, "hostname", hostname):
            self._append_log(f"{result}Found: {hostname}")
        else:
            self._append_log(f"{result}Found: {hostname} (hostname already set, kept)")
