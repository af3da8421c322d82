from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

DEFAULT_TIMEOUT = 2.0
DEFAULT_CONCURRENCY = 50
DEFAULT_START_PORT = 1
DEFAULT_END_PORT = 1024

MIN_PORT = 1
MAX_PORT = 65535


class ConfigurationError(ValueError):
    """Invalid target, port range or scan option. Raised before any probing."""


class ProbeState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    TIMED_OUT = "timed_out"


class ScanState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ScanTarget:
    host: str
    start_port: int = DEFAULT_START_PORT
    end_port: int = DEFAULT_END_PORT
    verbose: bool = False


@dataclass(frozen=True)
class ScanOptions:
    verbose: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT

    def validate(self) -> None:
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be >= 1")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")


@dataclass(frozen=True)
class ProbeOutcome:
    port: int
    state: ProbeState
    cause: Optional[str] = None  # refused / unreachable / timeout / resolve / error
    elapsed_s: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.state is ProbeState.OPEN


@dataclass(frozen=True)
class ScanProgress:
    scanned: int
    total: int
    outcome: Optional[ProbeOutcome] = None

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return self.scanned / self.total


@dataclass(frozen=True)
class ScanReport:
    host: str
    open_ports: Tuple[int, ...]
    ports_planned: int
    ports_scanned: int
    elapsed_s: float
    cancelled: bool = False
    closed_ports: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["open_ports"] = list(self.open_ports)
        payload["closed_ports"] = list(self.closed_ports)
        return payload
