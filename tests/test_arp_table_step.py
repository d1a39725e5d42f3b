import subprocess
from unittest.mock import MagicMock

from network_inventory.core.data_models import Host, HostStatus
from network_inventory.steps.arp_table_step import ArpTableStep, normalize_arp_mac, parse_arp_output

LINUX_ARP = """\
? (192.168.1.5) at aa:bb:cc:dd:ee:ff [ether] on eth0
router (192.168.1.1) at 00:11:22:33:44:55 [ether] on eth0
? (192.168.1.7) at <incomplete> on eth0
"""

WINDOWS_ARP = """\
Interface: 192.168.1.100 --- 0xb
  Internet Address      Physical Address      Type
  192.168.1.1           00-11-22-33-44-55     dynamic
  192.168.1.255         ff-ff-ff-ff-ff-ff     static
"""

IP_NEIGH = "192.168.1.9 dev wlan0 lladdr 0:1b:2c:3d:4e:5f REACHABLE\n192.168.1.10 dev wlan0 FAILED\n"


class TestParseArpOutput:
    def test_unix_format(self):
        assert parse_arp_output(LINUX_ARP) == [
            ("192.168.1.5", "AA:BB:CC:DD:EE:FF"),
            ("192.168.1.1", "00:11:22:33:44:55"),
        ]

    def test_windows_format(self):
        entries = parse_arp_output(WINDOWS_ARP)

        assert ("192.168.1.1", "00:11:22:33:44:55") in entries
        assert ("192.168.1.255", "FF:FF:FF:FF:FF:FF") in entries

    def test_ip_neigh_format_pads_octets(self):
        assert parse_arp_output(IP_NEIGH) == [("192.168.1.9", "00:1B:2C:3D:4E:5F")]

    def test_mac_normalisation(self):
        assert normalize_arp_mac("a:b:c:d:e:f") == "0A:0B:0C:0D:0E:0F"


class TestArpTableStep:
    def test_adds_targets_with_mac_and_unknown_status(self, registry, logger, run_step, mocker):
        mock_run = mocker.patch("network_inventory.steps.arp_table_step.subprocess.run")
        mock_run.return_value = MagicMock(stdout=LINUX_ARP, returncode=0)

        step = run_step(ArpTableStep(registry, logger=logger), ["192.168.1.5"])

        host = registry.find_by_address("192.168.1.5")
        assert host.primary_interface.mac == "AA:BB:CC:DD:EE:FF"
        assert host.status == HostStatus.UNKNOWN
        # Cached neighbours outside the target list are ignored
        assert registry.find_by_address("192.168.1.1") is None
        assert "Added new host from ARP." in step.progress_log

    def test_fills_mac_of_existing_host(self, registry, logger, run_step, mocker):
        registry.upsert(Host.from_address("192.168.1.1", status=HostStatus.ONLINE))
        mock_run = mocker.patch("network_inventory.steps.arp_table_step.subprocess.run")
        mock_run.return_value = MagicMock(stdout=LINUX_ARP, returncode=0)

        run_step(ArpTableStep(registry, logger=logger), ["192.168.1.1"])

        host = registry.find_by_address("192.168.1.1")
        assert host.primary_interface.mac == "00:11:22:33:44:55"
        assert host.status == HostStatus.ONLINE

    def test_falls_back_to_ip_neigh(self, registry, logger, run_step, mocker):
        mock_run = mocker.patch("network_inventory.steps.arp_table_step.subprocess.run")
        mock_run.side_effect = [FileNotFoundError("arp"), MagicMock(stdout=IP_NEIGH, returncode=0)]

        run_step(ArpTableStep(registry, logger=logger), ["192.168.1.9"])

        assert mock_run.call_args_list[1][0][0] == ["ip", "neigh"]
        assert registry.find_by_address("192.168.1.9").primary_interface.mac == "00:1B:2C:3D:4E:5F"

    def test_no_arp_facility_completes_without_hosts(self, registry, logger, run_step, mocker):
        mock_run = mocker.patch("network_inventory.steps.arp_table_step.subprocess.run")
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="arp", timeout=10)

        step = run_step(ArpTableStep(registry, logger=logger), ["192.168.1.5"])

        assert len(registry) == 0
        assert step.progress_message == "ARP table unavailable"
