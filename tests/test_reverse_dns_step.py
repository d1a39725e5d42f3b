import socket

from network_inventory.config.config_loader import DnsConfig
from network_inventory.core.data_models import Host, HostStatus
from network_inventory.steps.reverse_dns_step import ReverseDnsStep


def _fake_lookup(ip):
    names = {
        "10.0.0.1": ("gateway.lan", [], [ip]),
        "10.0.0.2": ("fileserver.lan", [], [ip]),
        "10.0.0.4": (ip, [], [ip]),
    }
    if ip not in names:
        raise socket.herror(1, "Unknown host")
    return names[ip]


def test_hostnames_recorded_for_known_hosts(registry, logger, run_step, mocker):
    mocker.patch("network_inventory.steps.reverse_dns_step.socket.gethostbyaddr", side_effect=_fake_lookup)
    registry.upsert(Host.from_address("10.0.0.1"))
    registry.upsert(Host(hostname="nas", network_interfaces=Host.from_address("10.0.0.2").network_interfaces))

    step = run_step(ReverseDnsStep(registry, logger=logger), ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"])

    assert registry.find_by_address("10.0.0.1").hostname == "gateway.lan"
    # First writer wins
    assert registry.find_by_address("10.0.0.2").hostname == "nas"
    log = step.progress_log
    assert "Querying hostname for 10.0.0.3...DNS lookup failed." in log
    assert "Querying hostname for 10.0.0.4...No hostname found." in log


def test_unknown_addresses_are_not_added(registry, logger, run_step, mocker):
    mocker.patch("network_inventory.steps.reverse_dns_step.socket.gethostbyaddr", side_effect=_fake_lookup)

    step = run_step(ReverseDnsStep(registry, logger=logger), ["10.0.0.1"])

    assert len(registry) == 0
    assert "Not in host list, skipped." in step.progress_log


def test_online_only_restricts_targets(registry, logger, run_step, mocker):
    lookup = mocker.patch(
        "network_inventory.steps.reverse_dns_step.socket.gethostbyaddr", side_effect=_fake_lookup
    )
    registry.upsert(Host.from_address("10.0.0.1", status=HostStatus.ONLINE))
    registry.upsert(Host.from_address("10.0.0.2"))

    run_step(ReverseDnsStep(registry, DnsConfig(online_only=True), logger=logger), ["10.0.0.1", "10.0.0.2"])

    lookup.assert_called_once_with("10.0.0.1")
    assert registry.find_by_address("10.0.0.2").hostname == ""
