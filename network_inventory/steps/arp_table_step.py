"""
ARP table step for the Network Inventory Module.

Reads the operating system's ARP cache through the platform ``arp -a`` command
(falling back to ``ip neigh`` where ``arp`` is not installed) and records the
MAC address of every cached neighbour that is part of the target list. A cached
entry is not proof of liveness, so hosts created here keep status Unknown.
"""

import re
import subprocess
from typing import List, Optional, Tuple

from .base_step import BaseStep
from ..config.config_loader import ArpConfig
from ..core.data_models import Host
from ..utils.network_utils import is_valid_ip

# Windows: "192.168.1.1          00-11-22-33-44-55     dynamic"
WINDOWS_ROW = re.compile(r"(?P<ip>\d+\.\d+\.\d+\.\d+)\s+(?P<mac>[a-fA-F0-9:-]{11,17})\s+(?P<type>\w+)")
# BSD/Linux net-tools: "router (192.168.1.1) at 00:11:22:33:44:55 [ether] on eth0"
UNIX_ROW = re.compile(r"\((?P<ip>\d+\.\d+\.\d+\.\d+)\)\s+at\s+(?P<mac>[a-fA-F0-9:-]{11,17})")
# iproute2: "192.168.1.1 dev eth0 lladdr 00:11:22:33:44:55 REACHABLE"
NEIGH_ROW = re.compile(r"^(?P<ip>\d+\.\d+\.\d+\.\d+)\s.*\blladdr\s+(?P<mac>[a-fA-F0-9:]{11,17})")


def normalize_arp_mac(mac: str) -> str:
    """Upper-case colon form with every octet padded to two digits."""
    octets = re.split(r"[:-]", mac.strip())
    return ":".join(octet.zfill(2) for octet in octets).upper()


def parse_arp_output(output: str) -> List[Tuple[str, str]]:
    """
    Extract ``(ip, mac)`` pairs from ARP table output.

    Args:
        output: Raw text from ``arp -a`` or ``ip neigh``

    Returns:
        Pairs in table order, first occurrence of an address wins
    """
    entries: List[Tuple[str, str]] = []
    seen = set()

    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue

        match = UNIX_ROW.search(line) or NEIGH_ROW.search(line) or WINDOWS_ROW.search(line)
        if not match:
            continue

        ip = match.group("ip")
        mac = normalize_arp_mac(match.group("mac"))
        if not is_valid_ip(ip) or len(mac) != 17 or ip in seen:
            continue

        seen.add(ip)
        entries.append((ip, mac))

    return entries


class ArpTableStep(BaseStep):
    """Ingests the local ARP cache into the registry."""

    key = "arp"
    name = "ARP Table Search"
    description = "Try to get MAC addresses by ARP Table Query"

    def __init__(self, registry, config: Optional[ArpConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or ArpConfig()

    def run(self, targets: List[str]) -> None:
        output = self._read_arp_table()
        if output is None:
            self._set_message("ARP table unavailable")
            return

        entries = parse_arp_output(output)
        wanted = set(targets)
        self._set_total(len(entries))
        self._append_log(f"ARP table holds {len(entries)} entries")

        for ip, mac in entries:
            if ip in wanted:
                self._ingest(ip, mac)
            self._advance()

        self._set_message(f"Processed {len(entries)} ARP entries")

    def _ingest(self, ip: str, mac: str) -> None:
        line = f"Processing ARP entry {ip}..."
        if self.registry.find_by_address(ip) is None:
            self.registry.upsert(Host.from_address(ip, mac=mac))
            self._append_log(f"{line}Added new host from ARP.")
        elif self.registry.set_mac(ip, mac):
            self._append_log(f"{line}Updated MAC address.")
        else:
            self._append_log(f"{line}Already known.")

    def _read_arp_table(self) -> Optional[str]:
        """
        Run the platform ARP query.

        Returns:
            Command output, or None when no ARP facility could be run
        """
        for cmd in (["arp", "-a"], ["ip", "neigh"]):
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.config.command_timeout,
                )
            except FileNotFoundError:
                self.logger.debug(f"{cmd[0]} command not found")
                continue
            except subprocess.TimeoutExpired as e:
                self._append_log(f"{' '.join(cmd)}: {self.error_handler.handle_error(e)}")
                continue

            if result.returncode == 0 and result.stdout.strip():
                return result.stdout
            self.logger.debug(f"{' '.join(cmd)} returned code {result.returncode}")

        self._append_log("Error: No ARP table facility available (arp / ip neigh).")
        self.logger.warning("Could not read the ARP table; skipping ARP step")
        return None
