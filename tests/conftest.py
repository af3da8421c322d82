import socket
import threading
import time

import pytest

from netprobe.models import ProbeOutcome, ProbeState


class StubProbe:
    """Probe stand-in: `open_ports` are Open, everything else Closed."""

    def __init__(self, open_ports=(), delay=0.0, delays=None):
        self.open_ports = set(open_ports)
        self.delay = delay
        self.delays = delays or {}
        self.calls = []
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, host, port, timeout):
        with self._lock:
            self.calls.append(port)
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            d = self.delays.get(port, self.delay)
            if d:
                time.sleep(d)
            if port in self.open_ports:
                return ProbeOutcome(port, ProbeState.OPEN)
            return ProbeOutcome(port, ProbeState.CLOSED, "refused")
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def stub_probe():
    return StubProbe


@pytest.fixture
def listening_port():
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    srv.bind(("127.0.0.1", 0))
    srv.listen(16)
    yield srv.getsockname()[1]
    srv.close()


@pytest.fixture
def closed_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
