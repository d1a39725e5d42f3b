"""
Device Classification System for Network Inventory Module.

This module assigns a DeviceType to inventory hosts based on:
- Operating system, model and service text collected by the probe steps
- Port-based device identification
- Manufacturer names
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from .data_models import UNKNOWN_CLASSIFICATION, Host


class DeviceType:
    """Device type labels written to Host.device_type."""
    WORKSTATION = "Workstation"
    SERVER = "Server"
    NETWORK_EQUIPMENT = "Network Equipment"
    PRINTER = "Printer"
    UNKNOWN = UNKNOWN_CLASSIFICATION


@dataclass
class ClassificationRule:
    """
    A rule for classifying devices based on various criteria.

    Attributes:
        name: Human-readable name for the rule
        device_type: The device type this rule classifies to
        priority: Priority of the rule (higher = more important)
        os_patterns: Regex patterns matched against OS, model and service text
        port_patterns: Set of ports that indicate this device type
        manufacturer_patterns: Manufacturer names that indicate this type
        sub_type: DeviceSubType written when the host OS is unknown
    """
    name: str
    device_type: str
    priority: int
    os_patterns: List[str] = field(default_factory=list)
    port_patterns: Set[int] = field(default_factory=set)
    manufacturer_patterns: List[str] = field(default_factory=list)
    sub_type: str = UNKNOWN_CLASSIFICATION


DEFAULT_RULES = [
    ClassificationRule(
        name="Printer Detection",
        device_type=DeviceType.PRINTER,
        priority=95,
        os_patterns=[r"printer", r"jetdirect", r"laserjet", r"officejet", r"\bipp\b", r"\bpdl-datastream\b"],
        port_patterns={515, 631, 9100},
        manufacturer_patterns=["brother", "epson", "canon", "lexmark", "xerox", "kyocera", "ricoh"],
        sub_type="Network Printer",
    ),
    ClassificationRule(
        name="Network Equipment Detection",
        device_type=DeviceType.NETWORK_EQUIPMENT,
        priority=90,
        os_patterns=[r"cisco", r"\bios\b", r"junos", r"routeros", r"\brouter\b", r"\bswitch\b"],
        port_patterns={23, 161},
        manufacturer_patterns=["cisco", "juniper", "mikrotik", "ubiquiti", "netgear", "aruba"],
        sub_type="Router/Switch",
    ),
    ClassificationRule(
        name="Server Detection",
        device_type=DeviceType.SERVER,
        priority=80,
        os_patterns=[r"windows server", r"\bserver\b", r"centos", r"red hat", r"alma"],
        port_patterns={25, 53, 88, 389, 636, 1433, 3306, 5432, 27017},
    ),
    ClassificationRule(
        name="Workstation Detection",
        device_type=DeviceType.WORKSTATION,
        priority=70,
        os_patterns=[r"^(?!.*server).*windows", r"macos", r"mac os x"],
        port_patterns={139, 445, 3389, 5900},
    ),
]


def host_signature_text(host: Host) -> str:
    """Lower-cased OS, model and service text used for pattern matching."""
    parts = [host.operating_system, host.operating_system_version, host.model]
    for service in host.services():
        parts.append(service.service_name)
    return " ".join(part for part in parts if part).lower()


class DeviceClassifier:
    """
    Rule-based device classification.

    Each rule scores a host on OS text, ports and manufacturer; the
    highest-scoring rule wins and ties go to the higher priority.
    """

    def __init__(self, rules: Optional[List[ClassificationRule]] = None):
        self.classification_rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    def classify(self, host: Host) -> Tuple[str, str]:
        """
        Classify a host.

        Args:
            host: Host record to classify

        Returns:
            Tuple of (device_type, device_sub_type)
        """
        classified: Optional[ClassificationRule] = None
        max_confidence = 0.0

        for rule in sorted(self.classification_rules, key=lambda r: r.priority, reverse=True):
            confidence = self._evaluate_rule(host, rule)
            if confidence > max_confidence:
                max_confidence = confidence
                classified = rule
                if confidence >= 0.9:
                    break

        if classified is None:
            return DeviceType.UNKNOWN, UNKNOWN_CLASSIFICATION

        sub_type = classified.sub_type
        if sub_type == UNKNOWN_CLASSIFICATION and host.operating_system:
            sub_type = host.operating_system
        return classified.device_type, sub_type

    def _evaluate_rule(self, host: Host, rule: ClassificationRule) -> float:
        """
        Evaluate how well a host matches a classification rule.

        Returns:
            Confidence score between 0.0 and 1.0
        """
        score = 0.0
        text = host_signature_text(host)

        if rule.os_patterns and text:
            for pattern in rule.os_patterns:
                if re.search(pattern, text):
                    score += 0.4  # OS match is strong indicator
                    break

        if rule.port_patterns:
            open_ports = {service.port for service in host.services()}
            matching_ports = open_ports & rule.port_patterns
            if matching_ports:
                score += len(matching_ports) / len(rule.port_patterns) * 0.3

        if rule.manufacturer_patterns and host.manufacturer:
            manufacturer = host.manufacturer.lower()
            if any(pattern in manufacturer for pattern in rule.manufacturer_patterns):
                score += 0.3

        return min(score, 1.0)
