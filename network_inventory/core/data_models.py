"""
Core data models and enums for the Network Inventory Module.

This module defines the inventory records shared by every probe step: a Host
owns an ordered list of NetworkInterfaces, each of which owns the Services
discovered on it. It also holds the static well-known port table and the
serialisation used for the persisted ``Hosts.json`` inventory, whose field
names mirror the record attributes one to one.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class HostStatus(Enum):
    """Reachability of a host as determined by the probe steps."""
    UNKNOWN = "Unknown"
    ONLINE = "Online"
    OFFLINE = "Offline"


UNKNOWN_CLASSIFICATION = "Unknown"

# Static port -> service name table used to seed ServiceName on open ports
WELL_KNOWN_PORTS: Dict[int, str] = {
    7: "echo",
    9: "discard",
    13: "daytime",
    17: "quote",
    19: "chargen",
    20: "ftp-data",
    21: "ftp",
    22: "ssh",
    23: "telnet",
    25: "smtp",
    53: "dns",
    67: "dhcp-server",
    68: "dhcp-client",
    69: "tftp",
    79: "finger",
    80: "http",
    88: "kerberos",
    109: "pop2",
    110: "pop3",
    111: "rpcbind",
    113: "ident",
    119: "nntp",
    123: "ntp",
    135: "msrpc",
    137: "netbios-ns",
    138: "netbios-dgm",
    139: "netbios-ssn",
    143: "imap",
    161: "snmp",
    162: "snmp-trap",
    177: "xdmcp",
    389: "ldap",
    443: "https",
    445: "microsoft-ds",
    500: "isakmp",
    514: "syslog",
    546: "dhcpv6-client",
    547: "dhcpv6-server",
    587: "submission",
    636: "ldaps",
    993: "imaps",
    995: "pop3s",
    1080: "socks",
    1433: "ms-sql-s",
    1434: "ms-sql-m",
    1521: "oracle",
    1720: "h.323-q.931",
    1723: "pptp",
    3306: "mysql",
    3389: "rdp",
    5060: "sip",
    5061: "sips",
    5432: "postgresql",
    5900: "vnc",
    8080: "http-alt",
    8443: "https-alt",
    27017: "mongodb",
    27018: "mongodb-shard",
    27019: "mongodb-config",
}


def well_known_service_name(port: int) -> str:
    """Return the well-known label for a port, or ``"Port N"``."""
    return WELL_KNOWN_PORTS.get(port, f"Port {port}")


def is_error_description(text: Optional[str]) -> bool:
    """True when a service description holds no usable probe output."""
    return not text or not text.strip() or text.strip().lower().startswith("error")


def description_rank(text: Optional[str]) -> int:
    """Rank descriptions: empty < error diagnostic < informative text."""
    if not text or not text.strip():
        return 0
    if is_error_description(text):
        return 1
    return 2


@dataclass
class Service:
    """
    One discovered listener on an interface.

    Attributes:
        port: Port number
        protocol: "tcp" or "udp"
        service_name: Well-known label, refined by fingerprinting probes
        description: Raw banner, header or protocol-probe summary text
    """
    port: int
    protocol: str = "tcp"
    service_name: str = ""
    description: str = ""

    def __post_init__(self):
        self.protocol = (self.protocol or "tcp").lower()
        if not self.service_name:
            self.service_name = well_known_service_name(self.port)

    @property
    def key(self) -> tuple:
        return (self.port, self.protocol)


@dataclass
class NetworkInterface:
    """
    One interface surface of a host.

    Attributes:
        name: Optional interface name
        mac: MAC address in upper-case colon notation, empty when unknown
        ip_addresses: Insertion-ordered addresses without duplicates
        services: Services discovered on this interface
    """
    name: str = ""
    mac: str = ""
    ip_addresses: List[str] = field(default_factory=list)
    services: List[Service] = field(default_factory=list)

    def __post_init__(self):
        addresses = self.ip_addresses
        self.ip_addresses = []
        for address in addresses:
            self.add_ip(address)

    def add_ip(self, address: str) -> bool:
        """Append an address unless already present. Returns True if added."""
        if not address or address in self.ip_addresses:
            return False
        self.ip_addresses.append(address)
        return True

    def find_service(self, port: int, protocol: str = "tcp") -> Optional[Service]:
        protocol = protocol.lower()
        for service in self.services:
            if service.port == port and service.protocol == protocol:
                return service
        return None

    def merge_service(self, incoming: Service) -> Service:
        """
        Add a service or fold it into the existing (port, protocol) entry.

        The richer description wins; on equal rank the existing one is kept.
        A generic service name is replaced by a more specific incoming one.

        Returns:
            The service entry now held by this interface
        """
        existing = self.find_service(incoming.port, incoming.protocol)
        if existing is None:
            service = Service(
                port=incoming.port,
                protocol=incoming.protocol,
                service_name=incoming.service_name,
                description=incoming.description,
            )
            self.services.append(service)
            return service

        if description_rank(incoming.description) > description_rank(existing.description):
            existing.description = incoming.description

        generic = {"", well_known_service_name(existing.port), f"Port {existing.port}"}
        if existing.service_name in generic and incoming.service_name not in generic:
            existing.service_name = incoming.service_name
        return existing


@dataclass
class Host:
    """
    A discovered device.

    Identity is carried by the IP addresses of its interfaces: two records
    describe the same device when any of their addresses match.
    """
    hostname: str = ""
    domain: str = ""
    status: HostStatus = HostStatus.UNKNOWN
    network_interfaces: List[NetworkInterface] = field(default_factory=list)
    device_type: str = UNKNOWN_CLASSIFICATION
    device_sub_type: str = UNKNOWN_CLASSIFICATION
    manufacturer: str = ""
    model: str = ""
    operating_system: str = ""
    operating_system_version: str = ""

    @classmethod
    def from_address(
        cls,
        ip_address: str,
        mac: str = "",
        status: HostStatus = HostStatus.UNKNOWN,
        services: Optional[Iterable[Service]] = None,
    ) -> "Host":
        """Build a single-interface host around one address."""
        interface = NetworkInterface(mac=mac, ip_addresses=[ip_address],
                                     services=list(services or []))
        return cls(status=status, network_interfaces=[interface])

    @property
    def primary_interface(self) -> Optional[NetworkInterface]:
        return self.network_interfaces[0] if self.network_interfaces else None

    @property
    def primary_address(self) -> str:
        addresses = self.ip_addresses()
        return addresses[0] if addresses else ""

    def ip_addresses(self) -> List[str]:
        """All addresses across interfaces, in discovery order."""
        addresses: List[str] = []
        for interface in self.network_interfaces:
            for address in interface.ip_addresses:
                if address not in addresses:
                    addresses.append(address)
        return addresses

    def interface_for(self, ip_address: str) -> Optional[NetworkInterface]:
        for interface in self.network_interfaces:
            if ip_address in interface.ip_addresses:
                return interface
        return None

    def services(self) -> List[Service]:
        return [service for interface in self.network_interfaces for service in interface.services]

    def has_port(self, ports: Iterable[int]) -> bool:
        wanted = set(ports)
        return any(service.port in wanted for service in self.services())

    def display_name(self) -> str:
        """Hostname with first address, falling back to address then MAC."""
        first_ip = next((ip for ip in self.ip_addresses() if ip.strip()), "")
        first_mac = next((i.mac for i in self.network_interfaces if i.mac.strip()), "")

        if not self.hostname.strip():
            return first_ip or first_mac
        if not first_ip:
            return self.hostname
        return f"{self.hostname} ({first_ip})"

    def __str__(self) -> str:
        return self.display_name()


# Host attributes that probes may fill in, keyed by their persisted names
HOST_TEXT_FIELDS = {
    "hostname": "Hostname",
    "domain": "Domain",
    "device_type": "DeviceType",
    "device_sub_type": "DeviceSubType",
    "manufacturer": "Manufacturer",
    "model": "Model",
    "operating_system": "OperatingSystem",
    "operating_system_version": "OperatingSystemVersion",
}


def service_to_dict(service: Service) -> Dict[str, Any]:
    return {
        "Port": service.port,
        "Description": service.description,
        "ServiceName": service.service_name,
        "Protocol": service.protocol,
    }


def interface_to_dict(interface: NetworkInterface) -> Dict[str, Any]:
    return {
        "Name": interface.name,
        "MAC": interface.mac,
        "Ip_Address": list(interface.ip_addresses),
        "Services": [service_to_dict(service) for service in interface.services],
    }


def host_to_dict(host: Host) -> Dict[str, Any]:
    """
    Convert a Host to the persisted inventory representation.

    Args:
        host: Host record

    Returns:
        JSON-serializable dictionary
    """
    data: Dict[str, Any] = {
        "Hostname": host.hostname,
        "Domain": host.domain,
        "Status": host.status.value,
        "NetworkInterfaces": [interface_to_dict(i) for i in host.network_interfaces],
    }
    for attribute, key in HOST_TEXT_FIELDS.items():
        if key not in data:
            data[key] = getattr(host, attribute)
    return data


def hosts_to_document(hosts: Iterable[Host]) -> List[Dict[str, Any]]:
    return [host_to_dict(host) for host in hosts]


def _parse_status(value: Any) -> HostStatus:
    # Older inventories stored the enum ordinal
    if isinstance(value, int):
        members = list(HostStatus)
        return members[value] if 0 <= value < len(members) else HostStatus.UNKNOWN
    for status in HostStatus:
        if str(value).lower() == status.value.lower():
            return status
    return HostStatus.UNKNOWN


def host_from_dict(data: Dict[str, Any]) -> Host:
    """
    Rebuild a Host from its persisted representation.

    Args:
        data: Dictionary as produced by ``host_to_dict``

    Returns:
        Host record
    """
    interfaces = []
    for interface_data in data.get("NetworkInterfaces") or []:
        services = [
            Service(
                port=int(service_data.get("Port", 0)),
                protocol=service_data.get("Protocol") or "tcp",
                service_name=service_data.get("ServiceName") or "",
                description=service_data.get("Description") or "",
            )
            for service_data in interface_data.get("Services") or []
        ]
        interfaces.append(
            NetworkInterface(
                name=interface_data.get("Name") or "",
                mac=interface_data.get("MAC") or "",
                ip_addresses=list(interface_data.get("Ip_Address") or []),
                services=services,
            )
        )

    host = Host(
        status=_parse_status(data.get("Status", HostStatus.UNKNOWN.value)),
        network_interfaces=interfaces,
    )
    for attribute, key in HOST_TEXT_FIELDS.items():
        value = data.get(key)
        if value:
            setattr(host, attribute, value)
    return host
