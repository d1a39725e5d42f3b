import subprocess
from unittest.mock import MagicMock

from network_inventory.config.config_loader import PingConfig
from network_inventory.core.data_models import Host, HostStatus
from network_inventory.steps.ping_sweep_step import PingSweepStep, analyze_ping_output, build_ping_command

REPLY = """PING 10.0.0.2 (10.0.0.2) 56(84) bytes of data.
64 bytes from 10.0.0.2: icmp_seq=1 ttl=64 time=0.42 ms

--- 10.0.0.2 ping statistics ---
1 packets transmitted, 1 received, 0% packet loss, time 0ms
"""

NO_REPLY = """PING 10.0.0.3 (10.0.0.3) 56(84) bytes of data.

--- 10.0.0.3 ping statistics ---
1 packets transmitted, 0 received, 100% packet loss, time 0ms
"""

UNREACHABLE = """PING 10.0.0.4 (10.0.0.4) 56(84) bytes of data.
From 10.0.0.1 icmp_seq=1 Destination Host Unreachable
"""

WINDOWS_GATEWAY_REPLY = """Pinging 10.0.0.5 with 32 bytes of data:
Reply from 10.0.0.1: Destination host unreachable.

Ping statistics for 10.0.0.5:
    Packets: Sent = 1, Received = 1, Lost = 0 (0% loss),
"""


def test_build_ping_command_per_platform():
    assert build_ping_command("10.0.0.1", 1, "linux") == ["ping", "-c", "1", "-W", "1", "10.0.0.1"]
    assert build_ping_command("10.0.0.1", 2, "windows") == ["ping", "-n", "1", "-w", "2000", "10.0.0.1"]
    assert build_ping_command("10.0.0.1", 1, "darwin") == ["ping", "-c", "1", "-W", "1000", "10.0.0.1"]


def test_analyze_ping_output():
    assert analyze_ping_output(REPLY, "10.0.0.2", "linux") is True
    assert analyze_ping_output(NO_REPLY, "10.0.0.3", "linux") is False
    assert analyze_ping_output(UNREACHABLE, "10.0.0.4", "linux") is False
    assert analyze_ping_output("", "10.0.0.4", "linux") is False
    # A gateway answering on behalf of the target is not a reply
    assert analyze_ping_output(WINDOWS_GATEWAY_REPLY, "10.0.0.5", "windows") is False


def _fake_ping(cmd, **kwargs):
    target = cmd[-1]
    if target == "10.0.0.2":
        return MagicMock(stdout=REPLY, stderr="", returncode=0)
    if target == "10.0.0.9":
        raise subprocess.TimeoutExpired(cmd=cmd, timeout=3)
    return MagicMock(stdout=NO_REPLY, stderr="", returncode=1)


def test_sweep_marks_responders_online(registry, logger, run_step, mocker):
    mocker.patch("network_inventory.steps.ping_sweep_step.subprocess.run", side_effect=_fake_ping)
    registry.upsert(Host.from_address("10.0.0.2", mac="AA:BB:CC:DD:EE:FF"))

    step = PingSweepStep(registry, PingConfig(timeout=1, max_workers=4), logger=logger)
    step._system = "linux"
    run_step(step, ["10.0.0.2", "10.0.0.3", "10.0.0.9"])

    assert len(registry) == 1
    host = registry.find_by_address("10.0.0.2")
    assert host.status == HostStatus.ONLINE
    assert host.primary_interface.mac == "AA:BB:CC:DD:EE:FF"
    assert "Pinging 10.0.0.2... OK" in step.progress_log
    assert "Pinging 10.0.0.9... No response" in step.progress_log
    assert step.progress_message == "1 of 3 addresses responded"


def test_empty_target_list_completes(registry, logger, run_step):
    step = run_step(PingSweepStep(registry, logger=logger), [])

    assert step.is_completed
    assert len(registry) == 0
