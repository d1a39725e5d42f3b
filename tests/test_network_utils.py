import pytest

from network_inventory.utils.error_handler import ValidationError
from network_inventory.utils.network_utils import (
    expand_targets,
    ip_sort_key,
    is_valid_ip,
    is_valid_mac,
    normalize_mac,
)


class TestExpandTargets:
    def test_literal(self):
        assert expand_targets("192.168.1.10") == ["192.168.1.10"]

    def test_wildcard_octet(self):
        targets = expand_targets("192.168.1.x")

        assert len(targets) == 254
        assert targets[0] == "192.168.1.1"
        assert targets[-1] == "192.168.1.254"

    def test_short_range(self):
        assert expand_targets("10.0.0.5-7") == ["10.0.0.5", "10.0.0.6", "10.0.0.7"]

    def test_range_crossing_octet(self):
        targets = expand_targets("10.0.0.254-1.1")

        assert targets == ["10.0.0.254", "10.0.0.255", "10.0.1.0", "10.0.1.1"]

    def test_cidr(self):
        assert expand_targets("10.1.1.0/30") == ["10.1.1.1", "10.1.1.2"]

    def test_mixed_entries_deduplicated_in_order(self):
        targets = expand_targets("10.0.0.3, 10.0.0.1-3 ,10.0.0.3")

        assert targets == ["10.0.0.3", "10.0.0.1", "10.0.0.2"]

    def test_empty_entries_ignored(self):
        assert expand_targets(" , ") == []

    @pytest.mark.parametrize("text", ["not-an-ip", "10.0.0", "10.0.0.9-5", "300.1.1.1", "10.0.x"])
    def test_invalid_entries_raise(self, text):
        with pytest.raises(ValidationError):
            expand_targets(text)


def test_ip_sort_key_orders_numerically():
    addresses = ["10.0.0.10", "10.0.0.9", "bogus", "10.0.0.100"]

    assert sorted(addresses, key=ip_sort_key) == ["10.0.0.9", "10.0.0.10", "10.0.0.100", "bogus"]


def test_address_validation():
    assert is_valid_ip("192.168.0.1")
    assert not is_valid_ip("192.168.0.256")
    assert is_valid_mac("aa-bb-cc-dd-ee-ff")
    assert not is_valid_mac("aa:bb:cc")
    assert normalize_mac("aa-bb-cc-dd-ee-ff") == "AA:BB:CC:DD:EE:FF"
