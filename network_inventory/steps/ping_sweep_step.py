"""
Ping sweep step for the Network Inventory Module.

Sends one ICMP echo to every target through the platform ``ping`` command and
analyses its output rather than trusting the return code alone. Replies are
staged in a thread-safe accumulator and merged into the registry in one batch
after the whole sweep has finished, marking each responder Online.
"""

import platform
import subprocess
import threading
from typing import List, Optional

from .base_step import BaseStep
from ..config.config_loader import PingConfig
from ..core.data_models import Host, HostStatus
from ..utils.network_utils import ip_sort_key

WINDOWS_FAILURE_INDICATORS = [
    "destination host unreachable",
    "request timed out",
    "could not find host",
    "general failure",
    "transmit failed",
    "unable to contact ip driver",
]

UNIX_FAILURE_INDICATORS = [
    "destination host unreachable",
    "no route to host",
    "network is unreachable",
    "name or service not known",
    "temporary failure in name resolution",
]


def build_ping_command(target: str, timeout: int, system: Optional[str] = None) -> List[str]:
    """
    Build a single-echo ping command line for the current platform.

    Args:
        target: Address to ping
        timeout: Reply timeout in seconds
        system: Lower-case platform name, detected when omitted

    Returns:
        Command argument list
    """
    system = system or platform.system().lower()
    if system == "windows":
        # Windows ping: ping -n 1 -w 1000 IP
        return ["ping", "-n", "1", "-w", str(timeout * 1000), target]
    if system == "darwin":
        # macOS takes the wait time in milliseconds with -W
        return ["ping", "-c", "1", "-W", str(timeout * 1000), target]
    # Unix ping: ping -c 1 -W 1 IP
    return ["ping", "-c", "1", "-W", str(timeout), target]


def analyze_ping_output(output: str, target: str, system: str) -> bool:
    """
    Analyze ping output to determine if the host is actually responding.

    Args:
        output: Raw ping command output
        target: Target IP address
        system: Operating system (windows/linux/etc)

    Returns:
        bool: True if host is actually responding, False otherwise
    """
    if not output:
        return False

    output_lower = output.lower()

    if system == "windows":
        if any(indicator in output_lower for indicator in WINDOWS_FAILURE_INDICATORS):
            return False

        if "received = 0" in output_lower:
            return False
        if "received = 1" in output_lower:
            return True

        # A reply from a router ("reply from <gateway>: destination unreachable")
        # is filtered above, so any remaining reply with a TTL is genuine
        success_indicators = [f"reply from {target}", "ttl="]
        return any(indicator in output_lower for indicator in success_indicators)

    if any(indicator in output_lower for indicator in UNIX_FAILURE_INDICATORS):
        return False

    if "1 packets transmitted, 0" in output_lower or " 0 received" in output_lower:
        return False
    if "1 packets transmitted, 1" in output_lower:
        return True

    success_indicators = [f"bytes from {target}", "ttl="]
    return any(indicator in output_lower for indicator in success_indicators)


class PingSweepStep(BaseStep):
    """ICMP echo sweep that marks responding addresses Online."""

    key = "ping"
    name = "Ping Sweep"
    description = "Ping a range of IPs to see what responds"

    def __init__(self, registry, config: Optional[PingConfig] = None, logger=None, error_handler=None):
        super().__init__(registry, logger, error_handler)
        self.config = config or PingConfig()
        self._system = platform.system().lower()
        self._found: List[str] = []
        self._found_lock = threading.Lock()

    def run(self, targets: List[str]) -> None:
        self._sweep(targets, self._ping_target, self.config.max_workers, operation="ping")

        with self._found_lock:
            responders = sorted(self._found, key=ip_sort_key)

        self.registry.upsert_many(
            Host.from_address(ip, status=HostStatus.ONLINE) for ip in responders
        )
        self._set_message(f"{len(responders)} of {len(targets)} addresses responded")
        self.logger.info(f"Ping sweep: {len(responders)} hosts responded out of {len(targets)}")

    def _ping_target(self, target: str) -> None:
        message = f"Pinging {target}..."
        cmd = build_ping_command(target, self.config.timeout, self._system)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.timeout + 2,
            )
        except subprocess.TimeoutExpired:
            self._append_log(f"{message} No response")
            return
        except OSError as e:
            self.error_handler.handle_error(
                e, self.error_handler.context_for(e, "ping", self.__class__.__name__, target)
            )
            self._append_log(f"{message} Error")
            return

        if analyze_ping_output(result.stdout + result.stderr, target, self._system):
            with self._found_lock:
                self._found.append(target)
            self._append_log(f"{message} OK")
        else:
            self._append_log(f"{message} No response")
