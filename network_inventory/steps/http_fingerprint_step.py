"""
HTTP/S fingerprinting step for the Network Inventory Module.

Works over registry hosts that already expose a web port. For every web service
whose description is still empty or an error, a fresh ``GET /`` is issued (TLS
with certificate verification disabled on HTTPS ports, since the peer is only
known by address) and the status line plus a few identifying headers become
the new description. The ``Server`` header is then matched against ordered
keyword rules to name the web server software, its version and the platform,
which refine the service name and the host's manufacturer and model.
"""

import re
import socket
import ssl
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .base_step import BaseStep, TargetSource
from ..config.config_loader import HttpConfig
from ..core.data_models import Host, Service, is_error_description

INTERESTING_HEADERS = ("server:", "x-powered-by:", "content-type:", "location:")
HEADER_DELIMITER = " | "
SERVER_HEADER = re.compile(r"Server:\s*([^|]+)", re.IGNORECASE)

# (keywords, software name); first rule whose keyword occurs wins
SOFTWARE_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("nginx",), "Nginx"),
    (("Apache",), "Apache HTTP Server"),
    (("IIS", "Microsoft-IIS"), "Microsoft IIS"),
    (("lighttpd",), "Lighttpd"),
    (("openresty",), "OpenResty"),
    (("Node.js",), "Node.js"),
    (("Express",), "Express.js"),
    (("Tomcat",), "Apache Tomcat"),
    (("Jetty",), "Eclipse Jetty"),
    (("Caddy",), "Caddy Server"),
    (("Gunicorn",), "Gunicorn"),
    (("Kestrel",), "Kestrel (.NET)"),
    (("php", "HHVM"), "PHP"),
]

OS_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("Ubuntu",), "Ubuntu Linux"),
    (("Debian",), "Debian Linux"),
    (("CentOS",), "CentOS Linux"),
    (("Red Hat", "RHEL"), "Red Hat Enterprise Linux"),
    (("Windows",), "Microsoft Windows Server"),
    (("FreeBSD",), "FreeBSD"),
    (("macOS", "Darwin"), "Apple macOS Server"),
    (("Linux",), "Linux"),
]


@dataclass
class ServerFingerprint:
    """Facts derived from one Server header."""
    server: str
    software: Optional[str] = None
    software_version: Optional[str] = None
    operating_system: Optional[str] = None
    os_version: Optional[str] = None

    @property
    def manufacturer(self) -> Optional[str]:
        if not self.operating_system:
            return None
        if self.operating_system.startswith("Microsoft"):
            return "Microsoft"
        if self.operating_system.startswith("Apple"):
            return "Apple Inc."
        return None

    @property
    def model(self) -> Optional[str]:
        """OS-derived model, falling back to the software when no OS was seen."""
        if self.operating_system:
            return _with_version(self.operating_system, self.os_version)
        if self.software:
            return _with_version(self.software, self.software_version)
        return None


def _with_version(name: str, version: Optional[str]) -> str:
    return f"{name} {version}" if version else name


def extract_version(source: str, keyword: str) -> Optional[str]:
    """
    Extract the version number that follows a keyword.

    Matches "keyword/1.2.3", "keyword 1.2.3" and "keyword1.2.3".

    Args:
        source: Text to search, e.g. "Apache/2.4.41 (Ubuntu)"
        keyword: Keyword preceding the version

    Returns:
        The version string, or None
    """
    match = re.search(rf"{re.escape(keyword)}[/\s]?(\d+(\.\d+)*(\.\d+)*)?", source, re.IGNORECASE)
    if match and match.group(1):
        return match.group(1)
    return None


def _match_rules(server: str, rules: List[Tuple[Tuple[str, ...], str]]) -> Tuple[Optional[str], Optional[str]]:
    lowered = server.lower()
    for keywords, label in rules:
        if any(keyword.lower() in lowered for keyword in keywords):
            for keyword in keywords:
                version = extract_version(server, keyword)
                if version:
                    return label, version
            return label, None
    return None, None


def parse_server_header(headers: str) -> Optional[ServerFingerprint]:
    """
    Parse the Server header out of a header summary.

    Args:
        headers: Description text such as "HTTP/1.1 200 OK | Server: nginx/1.18.0"

    Returns:
        The fingerprint, or None when no Server header is present
    """
    if not headers or not headers.strip():
        return None

    match = SERVER_HEADER.search(headers)
    if not match:
        return None

    server = match.group(1).strip()
    if not server:
        return None

    software, software_version = _match_rules(server, SOFTWARE_RULES)
    if not software:
        first_word = next((part for part in re.split(r"[ /]", server) if part), "")
        if first_word:
            software = first_word.rstrip("/:")
            software_version = extract_version(server, first_word)

    operating_system, os_version = _match_rules(server, OS_RULES)

    return ServerFingerprint(
        server=server,
        software=software or None,
        software_version=software_version,
        operating_system=operating_system,
        os_version=os_version,
    )


def summarize_http_response(response: str) -> str:
    """Keep the status line and identifying headers, joined with " | "."""
    lines = response.split("\r\n")
    kept = [lines[0].strip()] if lines and lines[0].strip() else []
    for line in lines[1:]:
        if not line:
            break
        if line.lower().startswith(INTERESTING_HEADERS):
            kept.append(line.strip())
    return HEADER_DELIMITER.join(kept)


def updated_service_name(service: Service, fingerprint: ServerFingerprint, scheme: str) -> Optional[str]:
    """
    Work out the refined service name.

    Returns:
        The new name, or None when the current name is already more specific
    """
    if not fingerprint.software:
        return None

    new_name = f"{scheme} {_with_version(fingerprint.software, fingerprint.software_version)}"
    current = service.service_name or ""
    if (
        current == scheme
        or current == f"Port {service.port}"
        or fingerprint.software.lower() not in current.lower()
    ):
        return new_name if new_name != current else None
    return None


class HttpFingerprintStep(BaseStep):
    """Refines web services from their HTTP response headers."""

    key = "http"
    name = "HTTP/S Information Collector"
    description = "Collect web server software and platform details from HTTP/S headers."
    target_source = TargetSource.REGISTRY

    def __init__(self, registry, config: Optional[HttpConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or HttpConfig()

    def run(self, targets: List[str]) -> None:
        hosts = self.registry.hosts_with_ports(self.config.ports)
        if not hosts:
            self._append_log("No hosts with open HTTP/S ports found for detailed collection.")
            self._set_message("No HTTP/S hosts")
            return

        self._set_message("Starting HTTP/S information collection...")
        self._append_log(f"Found {len(hosts)} hosts with HTTP/S services to analyze.")
        self._sweep(hosts, self._process_host, self.config.max_workers, operation="http_fingerprint")
        self._set_message("HTTP/S information collection completed.")
        self._append_log("HTTP/S information collection finished.")

    def _process_host(self, host: Host) -> None:
        self._append_log(f"Processing HTTP/S info for {host.primary_address}...")

        for interface in host.network_interfaces:
            if not interface.ip_addresses:
                continue
            ip = interface.ip_addresses[0]
            for service in interface.services:
                if service.port in self.config.ports and service.protocol == "tcp":
                    self._process_service(ip, service)

    def _process_service(self, ip: str, service: Service) -> None:
        description = service.description
        scheme = "https" if service.port in self.config.tls_ports else "http"

        if is_error_description(description):
            self._append_log(f"  Re-attempting HTTP/S header grab for {ip}:{service.port}")
            try:
                description = self.fetch_headers(ip, service.port, scheme == "https")
            except OSError as e:
                description = "Error: Connection/Timeout error during re-attempt."
                self._append_log(
                    f"    Connection/Timeout error for {ip}:{service.port} during re-attempt: "
                    f"{self.error_handler.describe(e)}"
                )

            self._store_description(ip, service, description)
            if is_error_description(description):
                self._append_log(f"    Still error for {ip}:{service.port}: {description}")
                return
            self._append_log(f"    Updated description for {ip}:{service.port}: {description}")
        else:
            self._append_log(
                f"  HTTP/S service on {ip}:{service.port} already has valid info. Parsing existing."
            )

        fingerprint = parse_server_header(description)
        if fingerprint is None:
            return

        self._append_log(f"    Found Server header: '{fingerprint.server}' for host {ip}")
        self._apply_fingerprint(ip, service, fingerprint, scheme)

    def _store_description(self, ip: str, service: Service, description: str) -> None:
        def _store(host: Host) -> None:
            interface = host.interface_for(ip)
            stored = interface.find_service(service.port, service.protocol) if interface else None
            if stored is not None:
                stored.description = description

        self.registry.modify(ip, _store)

    def _apply_fingerprint(self, ip: str, service: Service, fingerprint: ServerFingerprint, scheme: str) -> None:
        def _rename(host: Host) -> Optional[str]:
            interface = host.interface_for(ip)
            stored = interface.find_service(service.port, service.protocol) if interface else None
            if stored is None:
                return None
            new_name = updated_service_name(stored, fingerprint, scheme)
            if new_name:
                stored.service_name = new_name
            return new_name

        new_name = self.registry.modify(ip, _rename)
        if new_name:
            self._append_log(f"      Service Name updated to: {new_name}")

        if fingerprint.manufacturer and self.registry.update_field(ip, "manufacturer", fingerprint.manufacturer):
            self._append_log(f"      Host Manufacturer set to: {fingerprint.manufacturer}")
        if fingerprint.model and self.registry.update_field(ip, "model", fingerprint.model):
            self._append_log(f"      Host Model set to: {fingerprint.model}")

    def fetch_headers(self, ip: str, port: int, use_tls: bool) -> str:
        """
        Issue ``GET /`` and summarise the response headers.

        Args:
            ip: Target address
            port: Target port
            use_tls: Wrap the connection in TLS without verifying the peer

        Returns:
            Header summary, or a diagnostic starting with "Error"

        Raises:
            OSError: If the connection cannot be established
        """
        sock = socket.create_connection((ip, port), timeout=self.config.timeout)
        try:
            if use_tls:
                context = ssl.create_default_context()
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
                sock = context.wrap_socket(sock)

            request = f"GET / HTTP/1.1\r\nHost: {ip}\r\nConnection: close\r\n\r\n"
            sock.sendall(request.encode("ascii"))

            response = b""
            while b"\r\n\r\n" not in response:
                if len(response) > self.config.max_header_bytes:
                    self._append_log(
                        f"    Too much data received for HTTP headers on {ip}:{port}, truncating."
                    )
                    break
                try:
                    chunk = sock.recv(4096)
                except socket.timeout:
                    if not response:
                        return "Error: HTTP/S header read timed out or cancelled."
                    break
                if not chunk:
                    break
                response += chunk
        finally:
            sock.close()

        if not response:
            return "Error: No HTTP/S response received."

        text = response[: self.config.max_header_bytes].decode("iso-8859-1")
        summary = summarize_http_response(text)
        return summary or "Error: No HTTP/S response received."
