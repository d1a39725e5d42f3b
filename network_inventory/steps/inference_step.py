"""
Final inference pass for the Network Inventory Module.

Runs after every probe over the whole registry. Each host is serialised to its
inventory JSON, lower-cased, and tested against keyword rules for Windows,
Linux distributions, Cisco IOS and HP. Unlike the probe steps this pass may
overwrite a field: rules are applied in order and a later rule replaces what
an earlier one wrote. Hosts whose DeviceType is still unknown are then
classified by the DeviceClassifier.
"""

import json
import re
from typing import List, Optional

from .base_step import BaseStep, TargetSource
from ..core.data_models import UNKNOWN_CLASSIFICATION, Host, host_to_dict
from ..core.device_classifier import DeviceClassifier

WINDOWS_KEYWORDS = ("windows", "iis", "microsoft")
WINDOWS_PORTS = {135}
LINUX_DISTROS = ["Debian", "Alma", "CentOS", "Ubuntu", "Red Hat"]
CISCO_KEYWORDS = ("cisco", " ios ")
HP_PATTERN = re.compile(r"\bhp\b|hewlett")


def infer_host_fields(host: Host) -> List[str]:
    """
    Apply the keyword rules to one host in place.

    Args:
        host: Host record, mutated directly

    Returns:
        Names of the rules that fired, in order
    """
    text = json.dumps(host_to_dict(host)).lower()
    fired = []

    if host.has_port(WINDOWS_PORTS) or any(keyword in text for keyword in WINDOWS_KEYWORDS):
        host.operating_system = "Windows"
        fired.append("Windows")

    distro = next((name for name in LINUX_DISTROS if name.lower() in text), None)
    if "linux" in text or distro:
        host.operating_system = "Linux"
        if distro:
            host.operating_system_version = distro
        fired.append("Linux")

    if any(keyword in text for keyword in CISCO_KEYWORDS):
        host.operating_system = "Cisco IOS"
        host.manufacturer = "Cisco"
        fired.append("Cisco IOS")

    if HP_PATTERN.search(text):
        host.manufacturer = "HP"
        fired.append("HP")

    return fired


class InferenceStep(BaseStep):
    """Best-guess OS, vendor and device type correction over all hosts."""

    key = "inference"
    name = "Data Cleanup"
    description = "One More Check through the collected data to infer values"
    target_source = TargetSource.REGISTRY

    def __init__(self, registry, classifier: Optional[DeviceClassifier] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.classifier = classifier or DeviceClassifier()

    def run(self, targets: List[str]) -> None:
        self._set_total(len(self.registry))
        visited = self.registry.for_each_host(self._update_host)
        self._set_message(f"Checked {visited} hosts")
        self.logger.info(f"Inference pass checked {visited} hosts")

    def _update_host(self, host: Host) -> None:
        # Runs under the registry lock; keep it free of I/O
        fired = infer_host_fields(host)

        if host.device_type == UNKNOWN_CLASSIFICATION:
            device_type, sub_type = self.classifier.classify(host)
            if device_type != UNKNOWN_CLASSIFICATION:
                host.device_type = device_type
                if host.device_sub_type == UNKNOWN_CLASSIFICATION:
                    host.device_sub_type = sub_type
                fired.append(f"DeviceType={device_type}")

        if fired:
            self._append_log(f"Checking {host}: {', '.join(fired)}")
        else:
            self._append_log(f"Checking {host}: no rule matched")
        self._advance()
