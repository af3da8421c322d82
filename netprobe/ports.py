from __future__ import annotations

from typing import Iterable, Iterator, List, Sequence

from .models import MAX_PORT, MIN_PORT, ConfigurationError, ScanTarget


def _check_port(port: int) -> None:
    if port < MIN_PORT or port > MAX_PORT:
        raise ConfigurationError(f"port out of range {MIN_PORT}-{MAX_PORT}: {port}")


def _to_int(token: str) -> int:
    try:
        return int(token.strip())
    except ValueError:
        raise ConfigurationError(f"Invalid port: {token.strip()!r}") from None


def parse_ports(spec: str) -> List[int]:
    """
    Parses a port specification string into a list of ports.
    Supports:
    - Single ports: "80"
    - Ranges: "1-1024"
    - Comma-separated: "22,80,443"
    - Mixed: "1-1024,8080,9000-9005"
    """
    spec = spec.strip()
    if not spec:
        raise ConfigurationError("Empty port spec")

    ports: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start = _to_int(start_s)
            end = _to_int(end_s)
            _check_port(start)
            _check_port(end)
            if start > end:
                raise ConfigurationError(f"start port exceeds end port: {part}")
            ports.extend(range(start, end + 1))
        else:
            p = _to_int(part)
            _check_port(p)
            ports.append(p)

    if not ports:
        raise ConfigurationError("Empty port spec")

    # De-dupe, keep sorted
    return sorted(set(ports))


class ScanPlan:
    """
    Validated, ordered sequence of ports for one scan.

    ports() hands out a fresh iterable every call, so a plan can be walked
    more than once and always yields the same ascending order.
    """

    def __init__(self, host: str, ports: Sequence[int]):
        self.host = host
        self._ports = ports

    @classmethod
    def from_target(cls, target: ScanTarget) -> "ScanPlan":
        host = _check_host(target.host)
        _check_port(target.start_port)
        _check_port(target.end_port)
        if target.start_port > target.end_port:
            raise ConfigurationError(
                f"start port exceeds end port ({target.start_port} > {target.end_port})"
            )
        return cls(host, range(target.start_port, target.end_port + 1))

    @classmethod
    def from_ports(cls, host: str, ports: Iterable[int]) -> "ScanPlan":
        host = _check_host(host)
        unique = sorted(set(ports))
        if not unique:
            raise ConfigurationError("no ports to scan")
        for p in unique:
            _check_port(p)
        return cls(host, tuple(unique))

    def ports(self) -> Sequence[int]:
        return self._ports

    def __len__(self) -> int:
        return len(self._ports)

    def __iter__(self) -> Iterator[int]:
        return iter(self._ports)

    def chunks(self, size: int) -> Iterator[List[int]]:
        if size < 1:
            raise ConfigurationError("chunk size must be >= 1")
        for i in range(0, len(self._ports), size):
            yield list(self._ports[i:i + size])


def _check_host(host: str) -> str:
    host = (host or "").strip()
    if not host:
        raise ConfigurationError("host must not be empty")
    return host
