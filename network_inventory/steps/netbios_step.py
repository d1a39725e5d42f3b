"""
NetBIOS information step for the Network Inventory Module.

Works over registry hosts exposing port 137 or 139. The UDP/137 node status
query returns the host's NetBIOS name table, from which the computer name and
workgroup or domain are taken. The TCP/139 probe sends an SMB Negotiate over
the NetBIOS session service and records whether an SMB dialect answered.
Descriptions that already hold probe output are parsed again instead of
re-probing the host.
"""

import re
import socket
from typing import List, Optional, Tuple

from .base_step import BaseStep, TargetSource
from ..config.config_loader import NetBiosConfig
from ..core.data_models import Host, Service, is_error_description
from ..core.protocol_codecs import (
    NetBiosName,
    build_nbstat_request,
    build_smb_negotiate_request,
    format_name_table,
    has_smb_signature,
    hex_preview,
    parse_nbstat_response,
)
from ..utils.error_handler import ProtocolError

NETBIOS_NS_PORT = 137
NETBIOS_SSN_PORT = 139
NETBIOS_PORTS = [NETBIOS_NS_PORT, NETBIOS_SSN_PORT]

# Smallest node status answer that can carry a name count
MIN_NBSTAT_RESPONSE = 57

WORKSTATION_SERVICE = 0x00
# Domain Master Browser, Domain Controller, Master Browser, Browser Service Elections
DOMAIN_NAME_TYPES = (0x1B, 0x1C, 0x1D, 0x1E)

# NetBIOS names cannot contain '|', the separator between table entries
HOSTNAME_PATTERN = re.compile(r"Name: '([^|]+?)' \(Workstation Service, Unique")
DOMAIN_PATTERN = re.compile(
    r"Name: '([^|]+?)' \((Domain Controller|Master Browser|Browser Service Elections|Domain Master Browser),"
)
WORKGROUP_PATTERN = re.compile(r"Name: '([^|]+?)' \(Workstation Service, Group")

NS_ACTIVE = "Name Service (NBNS) - Active"
NS_NO_TABLE = "Name Service (NBNS) - No Table"
SSN_ACTIVE = "Session Service (NBT/SMB) - Active"
SSN_NO_SMB = "Session Service (NBT/SMB) - No SMB"


def hostname_from_table(description: str) -> Optional[str]:
    """Computer name: the first unique Workstation Service entry."""
    match = HOSTNAME_PATTERN.search(description or "")
    return match.group(1).strip() if match else None


def domain_from_table(description: str) -> Optional[str]:
    """
    Domain or workgroup name from a name table description.

    Browser and domain-controller entries take precedence over the group
    Workstation Service entry, which names the workgroup.
    """
    match = DOMAIN_PATTERN.search(description or "") or WORKGROUP_PATTERN.search(description or "")
    return match.group(1).strip() if match else None


def hostname_from_names(names: List[NetBiosName]) -> Optional[str]:
    """Computer name: the first unique Workstation Service record."""
    for entry in names:
        if entry.name_type == WORKSTATION_SERVICE and not entry.is_group and entry.name.strip():
            return entry.name.strip()
    return None


def domain_from_names(names: List[NetBiosName]) -> Optional[str]:
    """Domain or workgroup name from parsed name table records."""
    for entry in names:
        if entry.name_type in DOMAIN_NAME_TYPES and entry.name.strip():
            return entry.name.strip()
    for entry in names:
        if entry.name_type == WORKSTATION_SERVICE and entry.is_group and entry.name.strip():
            return entry.name.strip()
    return None


def netbios_service_name(current: str, suffix: str) -> Optional[str]:
    """
    Work out the refined service name for a NetBIOS port.

    Returns:
        The new name, or None when the current name already carries the suffix
    """
    current = current or ""
    lowered = current.lower()
    if lowered.startswith("port ") or lowered.startswith("netbios") or suffix not in current:
        new_name = f"NetBIOS {suffix}"
        return new_name if new_name != current else None
    return None


class NetBiosStep(BaseStep):
    """Collects NetBIOS names and SMB presence from Windows-style hosts."""

    key = "netbios"
    name = "NetBIOS Information Collector"
    description = "Query NetBIOS name tables and probe the session service for SMB."
    target_source = TargetSource.REGISTRY

    def __init__(self, registry, config: Optional[NetBiosConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or NetBiosConfig()

    def run(self, targets: List[str]) -> None:
        hosts = self.registry.hosts_with_ports(NETBIOS_PORTS)
        if not hosts:
            self._append_log("No hosts with open NetBIOS ports (137, 139) found for detailed collection.")
            self._set_message("No NetBIOS hosts")
            return

        self._set_message("Starting NetBIOS information collection...")
        self._append_log(f"Found {len(hosts)} hosts with NetBIOS services to analyze.")
        self._sweep(hosts, self._process_host, self.config.max_workers, operation="netbios_probe")
        self._set_message("NetBIOS information collection completed.")
        self._append_log("NetBIOS information collection finished.")

    def _process_host(self, host: Host) -> None:
        self._append_log(f"Processing NetBIOS info for {host.primary_address}...")

        for interface in host.network_interfaces:
            if not interface.ip_addresses:
                continue
            ip = interface.ip_addresses[0]
            ns_services = [s for s in interface.services if s.port == NETBIOS_NS_PORT]
            ssn_services = [s for s in interface.services if s.port == NETBIOS_SSN_PORT]

            # Name table first so hostname and domain come from the richest source
            for service in ns_services:
                self._process_name_service(ip, service)
            if ssn_services and not ns_services:
                self._query_name_table_only(ip)
            for service in ssn_services:
                self._process_session_service(ip, service)

    # ------------------------------------------------------------------
    # UDP/137
    # ------------------------------------------------------------------

    def _process_name_service(self, ip: str, service: Service) -> None:
        description = service.description
        names: Optional[List[NetBiosName]] = None
        if is_error_description(description):
            description, names = self.query_name_table(ip)
            self._store(ip, service, description=description)
            self._append_log(f"  {ip}:137 {description}")
        else:
            self._append_log(f"  NetBIOS name service on {ip} already has valid info. Parsing existing.")

        has_table = "Name Table" in description
        self._rename(ip, service, NS_ACTIVE if has_table else NS_NO_TABLE)
        if has_table:
            self._apply_name_table(ip, description, names)

    def _query_name_table_only(self, ip: str) -> None:
        """Ask UDP/137 for the name table when only the session port was seen."""
        description, names = self.query_name_table(ip)
        if "Name Table" not in description:
            self._append_log(f"  {ip}:137 {description}")
            return

        self.registry.add_service(
            ip,
            Service(
                port=NETBIOS_NS_PORT,
                protocol="udp",
                service_name=f"NetBIOS {NS_ACTIVE}",
                description=description,
            ),
        )
        self._append_log(f"  {ip}:137/udp recorded from name table response")
        self._apply_name_table(ip, description, names)

    def query_name_table(self, ip: str) -> Tuple[str, List[NetBiosName]]:
        """
        Send a node status query and describe the answer.

        Args:
            ip: Target address

        Returns:
            Tuple of (name table description or a diagnostic starting with
            "Error", parsed name records)
        """
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.settimeout(self.config.timeout)
                sock.sendto(build_nbstat_request(), (ip, NETBIOS_NS_PORT))
                data, _ = sock.recvfrom(self.config.max_response_bytes)
        except socket.timeout:
            return "Error: NetBIOS (UDP 137) probe timed out.", []
        except OSError as e:
            return f"Error: NetBIOS (UDP 137) probe failed: {e}", []

        if len(data) < MIN_NBSTAT_RESPONSE:
            return "NetBIOS (UDP 137): Received small/empty response.", []

        try:
            names, truncated = parse_nbstat_response(data)
        except ProtocolError:
            return "NetBIOS (UDP 137) response: Malformed or no names found.", []
        return format_name_table(names, truncated), names

    def _apply_name_table(self, ip: str, description: str, names: Optional[List[NetBiosName]] = None) -> None:
        """
        Set Hostname, Domain and the Windows identity from a name table.

        Fresh queries pass the parsed records. Descriptions stored by an
        earlier run are parsed from their text instead.
        """
        if names is not None:
            hostname = hostname_from_names(names)
            domain = domain_from_names(names)
            has_workstation = any(entry.name_type == WORKSTATION_SERVICE for entry in names)
        else:
            hostname = hostname_from_table(description)
            domain = domain_from_table(description)
            has_workstation = "Workstation Service" in description

        if hostname and self.registry.update_field(ip, "hostname", hostname):
            self._append_log(f"    Hostname set from NetBIOS: {hostname}")
        if domain and self.registry.update_field(ip, "domain", domain):
            self._append_log(f"    Domain set from NetBIOS: {domain}")
        if has_workstation:
            self._apply_windows_identity(ip)

    # ------------------------------------------------------------------
    # TCP/139
    # ------------------------------------------------------------------

    def _process_session_service(self, ip: str, service: Service) -> None:
        description = service.description
        if is_error_description(description):
            description = self.probe_session_service(ip)
            self._store(ip, service, description=description)
            self._append_log(f"  {ip}:139 {description}")
        else:
            self._append_log(f"  NetBIOS session service on {ip} already has valid info. Parsing existing.")

        smb_detected = "SMB Detected" in description
        self._rename(ip, service, SSN_ACTIVE if smb_detected else SSN_NO_SMB)
        if smb_detected:
            self._apply_windows_identity(ip)

    def probe_session_service(self, ip: str) -> str:
        """
        Send an SMB Negotiate over the NetBIOS session service.

        Returns:
            Probe summary, or a diagnostic starting with "Error"
        """
        try:
            with socket.create_connection((ip, NETBIOS_SSN_PORT), timeout=self.config.timeout) as sock:
                sock.sendall(build_smb_negotiate_request())
                data = sock.recv(self.config.max_response_bytes)
        except OSError as e:
            self._append_log(f"    {ip}:139 {self.error_handler.describe(e)}")
            return "Error: Connection/Timeout error during NetBIOS (TCP 139) probe."

        if not data:
            return "Error: No NetBIOS (TCP 139) response received."
        if has_smb_signature(data):
            return f"NetBIOS Session (TCP 139) - SMB Detected. Response: {hex_preview(data)}..."
        return f"Port 139 responded, but no SMB signature. Response: {hex_preview(data)}..."

    # ------------------------------------------------------------------
    # Registry writes
    # ------------------------------------------------------------------

    def _store(self, ip: str, service: Service, description: str) -> None:
        def _update(host: Host) -> None:
            interface = host.interface_for(ip)
            stored = interface.find_service(service.port, service.protocol) if interface else None
            if stored is not None:
                stored.description = description

        self.registry.modify(ip, _update)

    def _rename(self, ip: str, service: Service, suffix: str) -> None:
        def _update(host: Host) -> Optional[str]:
            interface = host.interface_for(ip)
            stored = interface.find_service(service.port, service.protocol) if interface else None
            if stored is None:
                return None
            new_name = netbios_service_name(stored.service_name, suffix)
            if new_name:
                stored.service_name = new_name
            return new_name

        new_name = self.registry.modify(ip, _update)
        if new_name:
            self._append_log(f"    Service Name updated to: {new_name}")

    def _apply_windows_identity(self, ip: str) -> None:
        if self.registry.update_field(ip, "manufacturer", "Microsoft"):
            self._append_log("    Host Manufacturer set to: Microsoft")
        if self.registry.update_field(ip, "model", "Windows OS"):
            self._append_log("    Host Model set to: Windows OS")
