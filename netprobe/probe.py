from __future__ import annotations

import errno
import logging
import socket
import time
from typing import Optional

from .models import DEFAULT_TIMEOUT, ProbeOutcome, ProbeState

log = logging.getLogger(__name__)

_UNREACHABLE = {
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    getattr(errno, "EHOSTDOWN", errno.EHOSTUNREACH),
    getattr(errno, "ENETDOWN", errno.ENETUNREACH),
}


def _classify(exc: OSError) -> ProbeOutcome:
    # port/elapsed are filled in by probe_port
    if isinstance(exc, socket.timeout):
        return ProbeOutcome(0, ProbeState.TIMED_OUT, "timeout")
    if isinstance(exc, socket.gaierror):
        return ProbeOutcome(0, ProbeState.CLOSED, "resolve")
    if isinstance(exc, ConnectionRefusedError):
        return ProbeOutcome(0, ProbeState.CLOSED, "refused")
    if exc.errno in _UNREACHABLE:
        return ProbeOutcome(0, ProbeState.CLOSED, "unreachable")
    return ProbeOutcome(0, ProbeState.CLOSED, "error")


def probe_port(host: str, port: int, timeout: float = DEFAULT_TIMEOUT) -> ProbeOutcome:
    """
    One TCP connect attempt against host:port, bounded by timeout.

    Nothing is sent or read: a completed handshake is Open and the socket is
    closed right away. Network failures come back as Closed/TimedOut outcomes,
    never as exceptions.
    """
    start = time.perf_counter()
    sock: Optional[socket.socket] = None
    try:
        family, socktype, proto, _, addr = socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM
        )[0]
        sock = socket.socket(family, socktype, proto)
        sock.settimeout(timeout)
        sock.connect(addr)
        outcome = ProbeOutcome(port, ProbeState.OPEN)
    except OSError as e:
        log.debug("probe %s:%s failed: %r", host, port, e)
        outcome = _classify(e)
    except ValueError as e:
        # UnicodeError from IDNA encoding: empty label or label over 63 chars
        log.debug("probe %s:%s bad host name: %r", host, port, e)
        outcome = ProbeOutcome(port, ProbeState.CLOSED, "resolve")
    finally:
        if sock:
            try:
                sock.close()
            except OSError:
                pass

    elapsed = round(time.perf_counter() - start, 4)
    return ProbeOutcome(
        port=port,
        state=outcome.state,
        cause=outcome.cause,
        elapsed_s=elapsed,
    )
