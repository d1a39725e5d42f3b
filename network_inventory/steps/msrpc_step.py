"""
MSRPC information step for the Network Inventory Module.

Works over registry hosts exposing port 135 or 445. Port 135 receives a
DCE/RPC Bind for the Endpoint Mapper interface and the reply is classified as
Bind ACK, a refusal or something unrecognised. Port 445 receives an SMB
Negotiate over direct TCP and is checked for an SMB signature.
"""

import socket
from typing import List, Optional

from .base_step import BaseStep, TargetSource
from ..config.config_loader import MsrpcConfig
from ..core.data_models import Host, Service, is_error_description
from ..core.protocol_codecs import (
    RPC_PTYPE_BIND_ACK,
    build_epm_bind_request,
    build_smb_negotiate_request,
    has_smb_signature,
    hex_preview,
    rpc_packet_type,
)

EPM_PORT = 135
SMB_PORT = 445
MSRPC_PORTS = [EPM_PORT, SMB_PORT]

EPM_SUFFIXES = {
    "ack": "RPC Endpoint Mapper (Active)",
    "nak": "RPC Endpoint Mapper (Non-ACK)",
    "unknown": "RPC Endpoint Mapper (Unknown Response)",
}
SMB_SUFFIXES = {
    "ack": "SMB/RPC (Active)",
    "nak": "SMB/RPC (No Signature)",
    "unknown": "SMB/RPC (Unknown Response)",
}


def classify_msrpc_description(port: int, description: str) -> str:
    """
    Classify probe output as "ack", "nak" or "unknown".

    Args:
        port: 135 or 445
        description: Service description produced by the probe
    """
    text = (description or "").lower()
    if port == EPM_PORT:
        if "bind ack" in text:
            return "ack"
        if "non-ack" in text:
            return "nak"
        return "unknown"
    if "smb/msrpc (port 445) detected" in text:
        return "ack"
    if "no smb/msrpc signature" in text:
        return "nak"
    return "unknown"


def msrpc_service_name(current: str, port: int, suffix: str) -> Optional[str]:
    current = current or ""
    lowered = current.lower()
    if lowered == f"port {port}" or lowered == "msrpc" or suffix.lower() not in lowered:
        return f"MSRPC {suffix}"
    return None


class MsrpcStep(BaseStep):
    """Probes the RPC Endpoint Mapper and the direct SMB port."""

    key = "msrpc"
    name = "MSRPC Information Collector"
    description = (
        "Connects to MSRPC Endpoint Mapper (Port 135) to identify running RPC services "
        "and potential OS info."
    )
    target_source = TargetSource.REGISTRY

    def __init__(self, registry, config: Optional[MsrpcConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or MsrpcConfig()

    def run(self, targets: List[str]) -> None:
        hosts = self.registry.hosts_with_ports(MSRPC_PORTS)
        if not hosts:
            self._append_log("No hosts with open MSRPC ports (135, 445) found for detailed collection.")
            self._set_message("No MSRPC hosts")
            return

        self._set_message("Starting MSRPC information collection...")
        self._append_log(f"Found {len(hosts)} hosts with MSRPC services to analyze.")
        self._sweep(hosts, self._process_host, self.config.max_workers, operation="msrpc_probe")
        self._set_message("MSRPC information collection completed.")
        self._append_log("MSRPC information collection finished.")

    def _process_host(self, host: Host) -> None:
        self._append_log(f"Processing MSRPC info for {host.primary_address}...")

        for interface in host.network_interfaces:
            if not interface.ip_addresses:
                continue
            ip = interface.ip_addresses[0]
            for service in interface.services:
                if service.port in MSRPC_PORTS and service.protocol == "tcp":
                    self._process_service(ip, service)

    def _process_service(self, ip: str, service: Service) -> None:
        description = service.description
        if is_error_description(description):
            self._append_log(f"  Re-attempting MSRPC probe for {ip}:{service.port}")
            description = self.probe(ip, service.port)
            self._store(ip, service, description)
            if is_error_description(description):
                self._append_log(f"    Still error/no response for {ip}:{service.port}: {description}")
            else:
                self._append_log(f"    Updated description for {ip}:{service.port}: {description}")
        else:
            self._append_log(f"  MSRPC service on {ip}:{service.port} already has valid info. Parsing existing.")

        outcome = classify_msrpc_description(service.port, description)
        suffixes = EPM_SUFFIXES if service.port == EPM_PORT else SMB_SUFFIXES
        self._rename(ip, service, suffixes[outcome])

        if outcome == "ack" or "microsoft" in description.lower() or "windows" in description.lower():
            if self.registry.update_field(ip, "manufacturer", "Microsoft"):
                self._append_log("      Host Manufacturer set to: Microsoft (from MSRPC)")
            if self.registry.update_field(ip, "model", "Windows Server"):
                self._append_log("      Host Model set to: Windows Server (from MSRPC)")

    def probe(self, ip: str, port: int) -> str:
        """
        Run the port-specific probe.

        Args:
            ip: Target address
            port: 135 for the Endpoint Mapper bind, 445 for SMB negotiate

        Returns:
            Probe summary, or a diagnostic starting with "Error"
        """
        if port == EPM_PORT:
            request = build_epm_bind_request()
        elif port == SMB_PORT:
            request = build_smb_negotiate_request()
        else:
            return f"MSRPC probe not implemented for port {port}."

        try:
            with socket.create_connection((ip, port), timeout=self.config.timeout) as sock:
                sock.sendall(request)
                data = sock.recv(self.config.max_response_bytes)
        except socket.timeout:
            if port == EPM_PORT:
                return "Error: MSRPC probe timed out or cancelled."
            return "Error: SMB/MSRPC probe timed out or cancelled."
        except OSError as e:
            self._append_log(f"    {ip}:{port} {self.error_handler.describe(e)}")
            return "Error: Connection/Timeout error during MSRPC probe."

        if port == EPM_PORT:
            return self._describe_bind_response(data)
        return self._describe_smb_response(data)

    @staticmethod
    def _describe_bind_response(data: bytes) -> str:
        if not data:
            return "Error: No MSRPC response received."
        preview = hex_preview(data)
        if rpc_packet_type(data) == RPC_PTYPE_BIND_ACK:
            return f"MSRPC Endpoint Mapper (Port 135) - Bind ACK. Response: {preview}..."
        return f"MSRPC Endpoint Mapper (Port 135) - Non-ACK response or malformed. Response: {preview}..."

    @staticmethod
    def _describe_smb_response(data: bytes) -> str:
        if not data:
            return "Error: No SMB/MSRPC response received on 445."
        preview = hex_preview(data)
        if has_smb_signature(data):
            return f"SMB/MSRPC (Port 445) detected. Response: {preview}..."
        return f"Port 445 responded, but no SMB/MSRPC signature. Response: {preview}..."

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
            new_name = msrpc_service_name(stored.service_name, service.port, suffix)
            if new_name and new_name != stored.service_name:
                stored.service_name = new_name
                return new_name
            return None

        new_name = self.registry.modify(ip, _update)
        if new_name:
            self._append_log(f"      Service Name updated for {ip}:{service.port} to: {new_name}")
