"""
mDNS discovery step for the Network Inventory Module.

Listens on the local link with zeroconf: first enumerates the advertised
service types, then browses each type and resolves the instances found. Every
resolved IPv4 address becomes (or enriches) a registry host carrying the
responder's server name as Hostname and one Service per advertised instance.
"""

import math
import threading
import time
from typing import Dict, List, Optional, Set, Tuple

from zeroconf import IPVersion, ServiceBrowser, ServiceStateChange, Zeroconf, ZeroconfServiceTypes

from .base_step import BaseStep
from ..config.config_loader import MdnsConfig
from ..core.data_models import Host, NetworkInterface, Service

LISTEN_TICK = 0.5
MAX_TXT_LENGTH = 200


def service_type_label(service_type: str) -> Tuple[str, str]:
    """
    Split a DNS-SD service type into its label and transport.

    Args:
        service_type: e.g. "_ipp._tcp.local."

    Returns:
        Tuple of (label, protocol), e.g. ("ipp", "tcp")
    """
    parts = [part for part in service_type.split(".") if part]
    label = parts[0].lstrip("_") if parts else service_type
    protocol = "udp" if len(parts) > 1 and parts[1].lower() == "_udp" else "tcp"
    return label, protocol


def clean_server_name(server: Optional[str]) -> str:
    """Strip the trailing root dot from an mDNS server name."""
    return (server or "").rstrip(".").strip()


def format_txt_properties(properties: Optional[Dict]) -> str:
    if not properties:
        return ""
    pairs = []
    for key, value in properties.items():
        if isinstance(key, bytes):
            key = key.decode("utf-8", errors="ignore")
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="ignore")
        pairs.append(f"{key}={value}" if value is not None else str(key))
    return ", ".join(pairs)[:MAX_TXT_LENGTH]


class MdnsStep(BaseStep):
    """Passive-style discovery of hosts announcing DNS-SD services."""

    key = "mdns"
    name = "mDNS Sweep"
    description = "Discovers hostnames and services on the local network using mDNS."

    def __init__(self, registry, config: Optional[MdnsConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or MdnsConfig()
        self._instances: Set[Tuple[str, str]] = set()
        self._instances_lock = threading.Lock()

    def run(self, targets: List[str]) -> None:
        wanted = set(targets)
        listen_ticks = max(1, math.ceil((self.config.scan_time / 2) / LISTEN_TICK))
        # Type enumeration, listen slices, resolution
        self._set_total(listen_ticks + 2)

        self._set_message(f"Starting mDNS discovery (listening for {self.config.scan_time:g} seconds)...")
        self._append_log("Initiating mDNS discovery...")

        try:
            zeroconf = Zeroconf(ip_version=IPVersion.V4Only)
        except OSError as e:
            self._append_log(f"mDNS discovery failed: {self.error_handler.describe(e)}")
            self._set_message("mDNS discovery failed.")
            self.logger.warning(f"mDNS unavailable: {e}")
            return

        browser = None
        try:
            service_types = ZeroconfServiceTypes.find(zc=zeroconf, timeout=self.config.scan_time / 2)
            self._append_log(f"Found {len(service_types)} advertised service types.")
            self._advance()

            if service_types:
                browser = ServiceBrowser(zeroconf, list(service_types), handlers=[self._on_service_state_change])
            for _ in range(listen_ticks):
                time.sleep(LISTEN_TICK)
                self._advance()
            self._set_message("Resolving mDNS instances...")

            with self._instances_lock:
                instances = sorted(self._instances)

            resolved = 0
            for service_type, instance_name in instances:
                resolved += self._resolve(zeroconf, service_type, instance_name, wanted)
            self._advance()

            self._append_log(f"mDNS discovery completed. Resolved {resolved} host entries.")
            if not instances:
                self._append_log("No mDNS hosts responded during the sweep.")
        finally:
            if browser is not None:
                browser.cancel()
            zeroconf.close()

        self._set_message("mDNS sweep completed.")
        self._append_log("mDNS sweep finished.")

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            with self._instances_lock:
                self._instances.add((service_type, name))

    def _resolve(self, zeroconf: Zeroconf, service_type: str, instance_name: str, wanted: Set[str]) -> int:
        """
        Resolve one instance and merge it into the registry.

        Returns:
            Number of addresses merged
        """
        info = zeroconf.get_service_info(
            service_type, instance_name, timeout=int(self.config.resolve_timeout * 1000)
        )
        if info is None:
            self._append_log(f"Could not resolve mDNS instance {instance_name}")
            return 0

        hostname = clean_server_name(info.server)
        label, protocol = service_type_label(service_type)
        description = f"mDNS: {instance_name}"
        txt = format_txt_properties(info.properties)
        if txt:
            description = f"{description} | {txt}"

        merged = 0
        for address in info.parsed_addresses(IPVersion.V4Only):
            if wanted and address not in wanted:
                continue
            merged += 1
            self._merge_instance(address, hostname, label, protocol, info.port, description)
        return merged

    def _merge_instance(
        self, address: str, hostname: str, label: str, protocol: str, port: Optional[int], description: str
    ) -> None:
        result = f"mDNS found for {address}: Hostname='{hostname}'"
        existing = self.registry.find_by_address(address)
        known_hostname = existing.hostname if existing is not None else ""

        services = [Service(port=port, protocol=protocol, service_name=label, description=description)] if port else []
        candidate = Host(
            hostname=hostname,
            network_interfaces=[NetworkInterface(ip_addresses=[address], services=services)],
        )
        self.registry.upsert(candidate)

        if existing is None:
            result += " - Added as a new host."
        elif not known_hostname:
            result += " - Updated existing host hostname."
        else:
            result += " - Hostname already known, skipping update."
        self._append_log(result)
