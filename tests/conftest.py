import socket
import threading

import pytest

from network_inventory.core.data_models import Host, HostStatus
from network_inventory.core.host_registry import HostRegistry
from network_inventory.utils.error_handler import ErrorHandler
from network_inventory.utils.logger import Logger, LogLevel


@pytest.fixture
def logger():
    """Logger that only prints errors, keeping test output readable."""
    return Logger("tests", min_level=LogLevel.ERROR)


@pytest.fixture
def error_handler(logger):
    return ErrorHandler(logger)


@pytest.fixture
def registry(logger):
    return HostRegistry(logger)


@pytest.fixture
def online_host():
    """Factory for a single-interface Online host."""
    def _build(ip, *services, **attributes):
        host = Host.from_address(ip, status=HostStatus.ONLINE, services=list(services))
        for name, value in attributes.items():
            setattr(host, name, value)
        return host
    return _build


@pytest.fixture
def run_step():
    """Start a step and block until it reports completion."""
    def _run(step, targets=()):
        step.start(list(targets))
        assert step.wait(timeout=15), f"{step.name} did not complete"
        assert step.progress_percentage == 1.0
        return step
    return _run


@pytest.fixture
def tcp_server():
    """
    Factory for loopback TCP servers.

    Each server runs ``handler(conn)`` for every accepted connection on a
    daemon thread and is closed when the test ends. Returns the port.
    """
    servers = []

    def _start(handler):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind(("127.0.0.1", 0))
        server.listen(8)
        server.settimeout(5)
        servers.append(server)

        def serve():
            while True:
                try:
                    conn, _ = server.accept()
                except OSError:
                    return
                with conn:
                    handler(conn)

        threading.Thread(target=serve, daemon=True).start()
        return server.getsockname()[1]

    yield _start

    for server in servers:
        server.close()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
