import socket
import subprocess

import pytest

from network_inventory.utils.error_handler import (
    ConfigurationError,
    ErrorContext,
    ErrorSeverity,
    ErrorType,
    ProtocolError,
    ToolMissingError,
    ToolValidator,
)


@pytest.mark.parametrize("error, expected", [
    (socket.timeout(), ErrorType.TIMEOUT_ERROR),
    (subprocess.TimeoutExpired(cmd="ping", timeout=1), ErrorType.TIMEOUT_ERROR),
    (ConnectionRefusedError(), ErrorType.CONNECTION_REFUSED),
    (socket.herror(1, "Unknown host"), ErrorType.DNS_ERROR),
    (ProtocolError("bad frame"), ErrorType.PROTOCOL_ERROR),
    (ToolMissingError("arp"), ErrorType.TOOL_MISSING_ERROR),
    (ConfigurationError("ports"), ErrorType.CONFIGURATION_ERROR),
    (FileNotFoundError("ping"), ErrorType.SUBPROCESS_ERROR),
    (OSError("Network is unreachable"), ErrorType.NETWORK_ERROR),
    (KeyError("x"), ErrorType.UNEXPECTED_ERROR),
])
def test_classify(error_handler, error, expected):
    assert error_handler.classify(error) == expected


def test_describe(error_handler):
    assert error_handler.describe(socket.timeout()) == "Timed out"
    assert error_handler.describe(ConnectionRefusedError()) == "Connection refused"
    assert error_handler.describe(ProtocolError("short read")) == "Protocol error: short read"
    assert error_handler.describe(OSError("boom")) == "OSError: boom"


def test_handle_error_counts_by_type(error_handler):
    error_handler.handle_error(socket.timeout())
    error_handler.handle_error(socket.timeout())
    diagnostic = error_handler.handle_error(
        OSError("unreachable"),
        ErrorContext(ErrorType.NETWORK_ERROR, ErrorSeverity.LOW, "probe", "PortScanStep", target="10.0.0.1"),
    )

    assert diagnostic == "OSError: unreachable"
    assert error_handler.get_statistics() == {"timeout_error": 2, "network_error": 1}


def test_context_for_carries_target(error_handler):
    context = error_handler.context_for(ConnectionRefusedError(), "port_scan", "PortScanStep", "10.0.0.1")

    assert context.error_type == ErrorType.CONNECTION_REFUSED
    assert context.severity == ErrorSeverity.LOW
    assert context.target == "10.0.0.1"
    assert context.additional_info == {}


class TestToolValidator:
    def test_all_tools_present(self, error_handler, mocker):
        mocker.patch("network_inventory.utils.error_handler.shutil.which", return_value="/usr/bin/tool")

        assert ToolValidator(error_handler).validate_all_tools() == (True, [])

    def test_arp_alternative_accepted(self, error_handler, mocker):
        mocker.patch(
            "network_inventory.utils.error_handler.shutil.which",
            side_effect=lambda name: None if name == "arp" else f"/usr/sbin/{name}",
        )

        assert ToolValidator(error_handler).validate_tool("arp") is True

    def test_missing_tool_reported(self, error_handler, mocker):
        mocker.patch("network_inventory.utils.error_handler.shutil.which", return_value=None)

        available, missing = ToolValidator(error_handler).validate_all_tools()

        assert available is False
        assert missing == ["arp", "ping"]
        assert error_handler.get_statistics() == {"tool_missing_error": 2}
