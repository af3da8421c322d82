from .limiter import ConcurrencyLimiter, NetworkQuality, recommended_limit
from .models import (
    ConfigurationError,
    ProbeOutcome,
    ProbeState,
    ScanOptions,
    ScanProgress,
    ScanReport,
    ScanState,
    ScanTarget,
)
from .ports import ScanPlan, parse_ports
from .probe import probe_port
from .scanner import PortScanner, cancel, start_scan

__all__ = [
    "ConcurrencyLimiter",
    "ConfigurationError",
    "NetworkQuality",
    "PortScanner",
    "ProbeOutcome",
    "ProbeState",
    "ScanOptions",
    "ScanPlan",
    "ScanProgress",
    "ScanReport",
    "ScanState",
    "ScanTarget",
    "cancel",
    "parse_ports",
    "probe_port",
    "recommended_limit",
    "start_scan",
]
