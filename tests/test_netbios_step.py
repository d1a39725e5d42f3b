import socket
from unittest.mock import MagicMock

from network_inventory.core.data_models import Service
from network_inventory.core.protocol_codecs import NetBiosName, format_name_table
from network_inventory.steps.netbios_step import (
    NetBiosStep,
    domain_from_names,
    domain_from_table,
    hostname_from_names,
    hostname_from_table,
    netbios_service_name,
)
from test_protocol_codecs import WINDOWS_TABLE, nbstat_response

NAME_RECORDS = [NetBiosName(*entry) for entry in WINDOWS_TABLE]

NAME_TABLE = (
    "NetBIOS Name Table (4 names): | Name: 'WORKSTN1' (Workstation Service, Unique)"
    " | Name: 'WORKGROUP' (Workstation Service, Group)"
    " | Name: 'WORKGROUP' (Browser Service Elections, Group)"
    " | Name: 'WORKSTN1' (File Server Service, Unique)"
)
SMB_REPLY = "NetBIOS Session (TCP 139) - SMB Detected. Response: 00-00-00-55-FF-53-4D-42..."


def _udp_socket(mocker, **recvfrom):
    sock = MagicMock()
    sock.__enter__.return_value = sock
    for key, value in recvfrom.items():
        setattr(sock.recvfrom, key, value)
    mocker.patch("network_inventory.steps.netbios_step.socket.socket", return_value=sock)
    return sock


def test_name_table_parsing_helpers():
    assert hostname_from_table(NAME_TABLE) == "WORKSTN1"
    assert domain_from_table(NAME_TABLE) == "WORKGROUP"
    assert domain_from_table("Name: 'CORP' (Workstation Service, Group)") == "CORP"
    assert hostname_from_table("NetBIOS (UDP 137) response: Malformed or no names found.") is None


def test_stored_table_with_apostrophe_in_name():
    table = format_name_table([NetBiosName("O'NEIL-PC", 0x00, 0x04), NetBiosName("SALES", 0x1D, 0x04)])

    assert hostname_from_table(table) == "O'NEIL-PC"
    assert domain_from_table(table) == "SALES"


def test_identity_from_name_records():
    records = [
        NetBiosName("FILESRV", 0x20, 0x04),
        NetBiosName("HOME", 0x00, 0x84),
        NetBiosName("FILESRV", 0x00, 0x04),
        NetBiosName("CORP", 0x1C, 0x84),
    ]

    assert hostname_from_names(records) == "FILESRV"
    assert domain_from_names(records) == "CORP"
    assert domain_from_names(records[:3]) == "HOME"
    assert hostname_from_names([NetBiosName("HOME", 0x00, 0x84)]) is None
    assert domain_from_names([]) is None


def test_service_name_refinement():
    assert netbios_service_name("netbios-ns", "Name Service (NBNS) - Active") == "NetBIOS Name Service (NBNS) - Active"
    assert netbios_service_name("NetBIOS Name Service (NBNS) - Active", "Name Service (NBNS) - Active") is None


class TestNetBiosStep:
    def test_name_table_and_smb_identify_windows_host(self, registry, logger, run_step, online_host, mocker):
        mocker.patch.object(NetBiosStep, "query_name_table", return_value=(NAME_TABLE, NAME_RECORDS))
        mocker.patch.object(NetBiosStep, "probe_session_service", return_value=SMB_REPLY)
        registry.upsert(online_host("10.0.0.20", Service(137, "udp"), Service(139)))

        step = run_step(NetBiosStep(registry, logger=logger))

        host = registry.find_by_address("10.0.0.20")
        assert host.hostname == "WORKSTN1"
        assert host.domain == "WORKGROUP"
        assert host.manufacturer == "Microsoft"
        assert host.model == "Windows OS"
        interface = host.primary_interface
        assert interface.find_service(137, "udp").service_name == "NetBIOS Name Service (NBNS) - Active"
        assert interface.find_service(137, "udp").description == NAME_TABLE
        assert interface.find_service(139).service_name == "NetBIOS Session Service (NBT/SMB) - Active"
        assert "Hostname set from NetBIOS: WORKSTN1" in step.progress_log

    def test_hostname_with_apostrophe_from_fresh_query(self, registry, logger, run_step, online_host, mocker):
        records = [NetBiosName("O'NEIL-PC", 0x00, 0x04), NetBiosName("CORP", 0x1C, 0x84)]
        mocker.patch.object(NetBiosStep, "query_name_table", return_value=(format_name_table(records), records))
        registry.upsert(online_host("10.0.0.24", Service(137, "udp")))

        run_step(NetBiosStep(registry, logger=logger))

        host = registry.find_by_address("10.0.0.24")
        assert host.hostname == "O'NEIL-PC"
        assert host.domain == "CORP"
        assert host.manufacturer == "Microsoft"

    def test_existing_hostname_is_kept(self, registry, logger, run_step, online_host, mocker):
        query = mocker.patch.object(NetBiosStep, "query_name_table")
        registry.upsert(online_host("10.0.0.21", Service(137, "udp", description=NAME_TABLE), hostname="desk.lan"))

        run_step(NetBiosStep(registry, logger=logger))

        query.assert_not_called()
        host = registry.find_by_address("10.0.0.21")
        assert host.hostname == "desk.lan"
        assert host.domain == "WORKGROUP"

    def test_session_port_only_adds_name_service(self, registry, logger, run_step, online_host, mocker):
        mocker.patch.object(NetBiosStep, "query_name_table", return_value=(NAME_TABLE, NAME_RECORDS))
        mocker.patch.object(
            NetBiosStep, "probe_session_service",
            return_value="Port 139 responded, but no SMB signature. Response: 83-00-00-01-8F...",
        )
        registry.upsert(online_host("10.0.0.22", Service(139)))

        run_step(NetBiosStep(registry, logger=logger))

        interface = registry.find_by_address("10.0.0.22").primary_interface
        assert interface.find_service(137, "udp").description == NAME_TABLE
        assert interface.find_service(139).service_name == "NetBIOS Session Service (NBT/SMB) - No SMB"

    def test_no_netbios_hosts(self, registry, logger, run_step, online_host):
        registry.upsert(online_host("10.0.0.23", Service(22)))

        step = run_step(NetBiosStep(registry, logger=logger))

        assert step.progress_message == "No NetBIOS hosts"


class TestQueryNameTable:
    def test_parses_udp_answer(self, registry, logger, mocker):
        sock = _udp_socket(mocker, return_value=(nbstat_response(WINDOWS_TABLE), ("10.0.0.20", 137)))

        description, names = NetBiosStep(registry, logger=logger).query_name_table("10.0.0.20")

        assert description == NAME_TABLE
        assert names == NAME_RECORDS
        sock.sendto.assert_called_once()
        assert sock.sendto.call_args[0][1] == ("10.0.0.20", 137)

    def test_timeout(self, registry, logger, mocker):
        _udp_socket(mocker, side_effect=socket.timeout())

        description, names = NetBiosStep(registry, logger=logger).query_name_table("10.0.0.20")

        assert description == "Error: NetBIOS (UDP 137) probe timed out."
        assert names == []

    def test_short_answer(self, registry, logger, mocker):
        _udp_socket(mocker, return_value=(b"\x80\x01\x84\x00", ("10.0.0.20", 137)))

        description, names = NetBiosStep(registry, logger=logger).query_name_table("10.0.0.20")

        assert description == "NetBIOS (UDP 137): Received small/empty response."
        assert names == []
