import json
from datetime import datetime

import pytest

from network_inventory.core.data_models import Host, HostStatus, NetworkInterface, Service
from network_inventory.utils.error_handler import ValidationError
from network_inventory.utils.json_reporter import JSONReporter, render_host_tree

RUN_TIME = datetime(2024, 5, 1, 12, 30, 0)


@pytest.fixture
def hosts():
    server = Host(
        hostname="fileserver",
        domain="WORKGROUP",
        status=HostStatus.ONLINE,
        operating_system="Windows",
        network_interfaces=[NetworkInterface(
            mac="AA:BB:CC:DD:EE:FF",
            ip_addresses=["10.0.0.10"],
            services=[Service(445), Service(80, service_name="http Microsoft IIS 10.0",
                                            description="HTTP/1.1 200 OK")],
        )],
    )
    printer = Host.from_address("10.0.0.9", services=[Service(9100)])
    return [server, printer]


def test_export_writes_inventory_and_timestamped_copy(tmp_path, hosts):
    reporter = JSONReporter(tmp_path)

    path = reporter.export_hosts(hosts, RUN_TIME)

    assert path == tmp_path / "Hosts.json"
    assert (tmp_path / "Hosts_20240501_123000.json").exists()
    with open(path, encoding="utf-8") as f:
        document = json.load(f)
    # Address order
    assert [h["NetworkInterfaces"][0]["Ip_Address"][0] for h in document] == ["10.0.0.9", "10.0.0.10"]
    assert document[1]["Hostname"] == "fileserver"
    assert document[1]["Status"] == "Online"


def test_repeated_export_does_not_overwrite_copies(tmp_path, hosts):
    reporter = JSONReporter(tmp_path)

    reporter.export_hosts(hosts, RUN_TIME)
    reporter.export_hosts(hosts[:1], RUN_TIME)

    assert (tmp_path / "Hosts_20240501_123000.json").exists()
    assert (tmp_path / "Hosts_20240501_123000_001.json").exists()
    assert len(reporter.load_inventory()) == 1


def test_load_inventory_restores_hosts(tmp_path, hosts):
    reporter = JSONReporter(tmp_path, export_file="inventory.json")
    reporter.export_hosts(hosts, RUN_TIME)

    loaded = reporter.load_inventory()

    assert (tmp_path / "inventory_20240501_123000.json").exists()
    assert sorted(h.primary_address for h in loaded) == ["10.0.0.10", "10.0.0.9"]
    server = next(h for h in loaded if h.hostname == "fileserver")
    assert server == hosts[0]


def test_load_inventory_rejects_bad_documents(tmp_path):
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "object.json").write_text('{"Hostname": "x"}', encoding="utf-8")
    reporter = JSONReporter(tmp_path)

    with pytest.raises(ValidationError):
        reporter.load_inventory(tmp_path / "broken.json")
    with pytest.raises(ValidationError):
        reporter.load_inventory(tmp_path / "object.json")


def test_render_host_tree(hosts):
    tree = render_host_tree(hosts)

    assert tree.splitlines() == [
        "10.0.0.9 [Unknown]",
        "  Device: Unknown / Unknown",
        "  Interface 10.0.0.9",
        "    9100/tcp Port 9100",
        "fileserver (10.0.0.10) [Online]",
        "  Domain: WORKGROUP",
        "  Device: Unknown / Unknown",
        "  OS: Windows",
        "  Interface 10.0.0.10 [AA:BB:CC:DD:EE:FF]",
        "    80/tcp http Microsoft IIS 10.0",
        "      HTTP/1.1 200 OK",
        "    445/tcp microsoft-ds",
    ]
    assert render_host_tree([]) == ""
