from network_inventory.core.data_models import Host, NetworkInterface, Service
from network_inventory.core.device_classifier import ClassificationRule, DeviceClassifier, DeviceType
from network_inventory.steps.inference_step import InferenceStep, infer_host_fields


def _host(*services, **attributes):
    host = Host(network_interfaces=[NetworkInterface(ip_addresses=["10.0.0.50"], services=list(services))])
    for name, value in attributes.items():
        setattr(host, name, value)
    return host


class TestInferHostFields:
    def test_windows_from_endpoint_mapper_port(self):
        host = _host(Service(135))

        assert infer_host_fields(host) == ["Windows"]
        assert host.operating_system == "Windows"

    def test_windows_from_iis_banner(self):
        host = _host(Service(80, service_name="http Microsoft IIS 10.0"))

        infer_host_fields(host)

        assert host.operating_system == "Windows"

    def test_linux_distribution(self):
        host = _host(Service(22, description="SSH-2.0-OpenSSH_8.9p1 Ubuntu-3ubuntu0.1"))

        assert infer_host_fields(host) == ["Linux"]
        assert host.operating_system == "Linux"
        assert host.operating_system_version == "Ubuntu"

    def test_cisco_overrides_earlier_rules(self):
        host = _host(Service(23, description="User Access Verification"), model="Cisco IOS Software, C2960")

        infer_host_fields(host)

        assert host.operating_system == "Cisco IOS"
        assert host.manufacturer == "Cisco"

    def test_hp_needs_a_whole_word(self):
        hp = _host(Service(9100), model="HP LaserJet Pro")
        php = _host(Service(80, service_name="http PHP 8.1"))

        infer_host_fields(hp)
        infer_host_fields(php)

        assert hp.manufacturer == "HP"
        assert php.manufacturer == ""

    def test_no_rules(self):
        host = _host(Service(22, description="SSH-2.0-dropbear"))

        assert infer_host_fields(host) == []
        assert host.operating_system == ""


class TestDeviceClassifier:
    def test_printer_ports(self):
        device_type, sub_type = DeviceClassifier().classify(_host(Service(9100), Service(631)))

        assert device_type == DeviceType.PRINTER
        assert sub_type == "Network Printer"

    def test_windows_workstation(self):
        host = _host(Service(139), Service(445), operating_system="Windows")

        assert DeviceClassifier().classify(host) == (DeviceType.WORKSTATION, "Windows")

    def test_windows_server(self):
        host = _host(Service(389), Service(88), model="Windows Server")

        assert DeviceClassifier().classify(host)[0] == DeviceType.SERVER

    def test_network_equipment_by_manufacturer(self):
        host = _host(Service(23), manufacturer="Cisco")

        assert DeviceClassifier().classify(host) == (DeviceType.NETWORK_EQUIPMENT, "Router/Switch")

    def test_unknown(self):
        assert DeviceClassifier().classify(_host()) == (DeviceType.UNKNOWN, "Unknown")

    def test_custom_rules(self):
        rule = ClassificationRule(name="NAS", device_type="Storage", priority=99, port_patterns={548})

        assert DeviceClassifier([rule]).classify(_host(Service(548)))[0] == "Storage"


class TestInferenceStep:
    def test_updates_every_host(self, registry, logger, run_step, online_host):
        registry.upsert(online_host("10.0.0.51", Service(135), Service(445)))
        registry.upsert(online_host("10.0.0.52", Service(22, description="SSH-2.0-OpenSSH_7.4 CentOS")))
        registry.upsert(online_host("10.0.0.53", device_type="Printer"))

        step = run_step(InferenceStep(registry, logger=logger))

        windows = registry.find_by_address("10.0.0.51")
        assert windows.operating_system == "Windows"
        assert windows.device_type == DeviceType.WORKSTATION
        linux = registry.find_by_address("10.0.0.52")
        assert (linux.operating_system, linux.operating_system_version) == ("Linux", "CentOS")
        assert linux.device_type == DeviceType.SERVER
        assert registry.find_by_address("10.0.0.53").device_type == "Printer"
        assert "Checking 10.0.0.53: no rule matched" in step.progress_log
        assert step.progress_message == "Checked 3 hosts"

    def test_empty_registry(self, registry, logger, run_step):
        step = run_step(InferenceStep(registry, logger=logger))

        assert step.progress_message == "Checked 0 hosts"
