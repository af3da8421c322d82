from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from .commands import (
    LOOKUP_TOOLS,
    NETSTAT_MODES,
    CommandRunner,
    ToolNotFoundError,
    lookup_command,
    netstat_command,
    ping_command,
    traceroute_command,
    whois_command,
)
from .logger import create_logger, setup_logging
from .models import (
    DEFAULT_CONCURRENCY,
    DEFAULT_END_PORT,
    DEFAULT_START_PORT,
    DEFAULT_TIMEOUT,
    MAX_PORT,
    MIN_PORT,
    ConfigurationError,
    ScanOptions,
    ScanProgress,
    ScanTarget,
)
from .output import format_outcome, format_report, report_to_json
from .ports import parse_ports
from .scanner import PortScanner
from .speedtest import (
    DEFAULT_DOWNLOAD_URL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_UPLOAD_BYTES,
    DEFAULT_UPLOAD_URL,
    SpeedTest,
    SpeedTestSettings,
    TransferProgress,
    format_result,
)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="netprobe", description="Network diagnostic toolkit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="TCP connect port scan")
    scan.add_argument("host", help="IP address or hostname")
    scan.add_argument("--start", type=int, default=DEFAULT_START_PORT, help=f"First port (default: {DEFAULT_START_PORT})")
    scan.add_argument("--end", type=int, default=DEFAULT_END_PORT, help=f"Last port (default: {DEFAULT_END_PORT})")
    scan.add_argument("--all-ports", action="store_true", help=f"Scan {MIN_PORT}-{MAX_PORT}")
    scan.add_argument("--ports", help="Explicit port spec: 22,80,443 or 1-1024,8080 (overrides --start/--end)")
    scan.add_argument("--verbose", action="store_true", help="Also report closed ports")
    scan.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY,
                      help=f"Max concurrent probes (default: {DEFAULT_CONCURRENCY})")
    scan.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                      help=f"Connect timeout seconds (default: {DEFAULT_TIMEOUT})")
    scan.add_argument("--json", action="store_true", help="Print the final report as JSON")
    scan.add_argument("--events", action="store_true", help="Log scan events as JSON lines to stderr")

    ping = sub.add_parser("ping", help="Run ping")
    ping.add_argument("host")
    ping.add_argument("-c", "--count", type=int, default=4)
    ping.add_argument("-6", "--ipv6", action="store_true")

    trace = sub.add_parser("trace", help="Run traceroute")
    trace.add_argument("host")
    trace.add_argument("-6", "--ipv6", action="store_true")

    lookup = sub.add_parser("lookup", help="DNS lookup")
    lookup.add_argument("domain")
    lookup.add_argument("--tool", choices=LOOKUP_TOOLS, default="dig")

    whois = sub.add_parser("whois", help="Run whois")
    whois.add_argument("domain")
    whois.add_argument("--server", help="whois server to query")

    netstat = sub.add_parser("netstat", help="Run netstat")
    netstat.add_argument("--mode", choices=sorted(NETSTAT_MODES), default="all")

    speed = sub.add_parser("speedtest", help="HTTP download/upload throughput test")
    speed.add_argument("--download-url", default=DEFAULT_DOWNLOAD_URL)
    speed.add_argument("--upload-url", default=DEFAULT_UPLOAD_URL)
    speed.add_argument("--upload-bytes", type=int, default=DEFAULT_UPLOAD_BYTES)
    speed.add_argument("--timeout", type=float, default=DEFAULT_HTTP_TIMEOUT,
                       help=f"HTTP timeout seconds (default: {DEFAULT_HTTP_TIMEOUT})")
    speed.add_argument("--no-download", action="store_true")
    speed.add_argument("--no-upload", action="store_true")
    return p


def _scan(args: argparse.Namespace) -> int:
    start, end = (MIN_PORT, MAX_PORT) if args.all_ports else (args.start, args.end)
    target = ScanTarget(host=args.host, start_port=start, end_port=end, verbose=args.verbose)
    options = ScanOptions(verbose=args.verbose, concurrency=args.concurrency, timeout=args.timeout)
    ports = parse_ports(args.ports) if args.ports else None
    described = args.ports if ports else f"{start}-{end}"

    def show(progress: ScanProgress) -> None:
        o = progress.outcome
        if o is not None and (o.is_open or options.verbose):
            print(f"\r{format_outcome(o):<60}")
        print(f"\r[*] Scanned {progress.scanned}/{progress.total} ({progress.fraction:.0%})",
              end="", file=sys.stderr, flush=True)

    scanner = PortScanner(
        target,
        options,
        ports=ports,
        on_progress=None if args.json else show,
        logger=create_logger() if args.events else None,
    )

    if not args.json:
        print(f"Starting scan of {args.host} on ports {described}...\n")
    scanner.start()
    try:
        report = scanner.wait()
    except KeyboardInterrupt:
        scanner.cancel()
        report = scanner.wait()
    if not args.json:
        print(file=sys.stderr)  # newline after progress

    if report is None:
        return 1
    print(report_to_json(report) if args.json else format_report(report))
    return 0


def _speedtest(args: argparse.Namespace) -> int:
    settings = SpeedTestSettings(
        download_url=args.download_url,
        upload_url=args.upload_url,
        upload_bytes=args.upload_bytes,
        timeout=args.timeout,
        run_download=not args.no_download,
        run_upload=not args.no_upload,
    )

    def show(progress: TransferProgress) -> None:
        mb = progress.bytes_done / 1024 / 1024
        print(f"\r[*] {progress.phase}: {mb:.2f} MB ({progress.mbps:.2f} Mbps)",
              end="", file=sys.stderr, flush=True)

    test = SpeedTest(settings, on_progress=show).start()
    try:
        result = test.wait()
    except KeyboardInterrupt:
        test.cancel()
        result = test.wait()
    print(file=sys.stderr)

    failed = False
    for transfer in (result.download, result.upload):
        if transfer is not None:
            print(format_result(transfer))
            failed = failed or not transfer.ok
    if result.cancelled:
        print("--- Speed test stopped by user ---")
    return 1 if failed else 0


def _stream(argv: List[str]) -> int:
    runner = CommandRunner(argv, on_output=lambda line: print(line, end="", flush=True))
    runner.start()
    try:
        return runner.wait() or 0
    except KeyboardInterrupt:
        runner.cancel()
        runner.wait()
        return 130


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.debug)

    try:
        if args.command == "scan":
            return _scan(args)
        if args.command == "ping":
            return _stream(ping_command(args.host, args.count, args.ipv6))
        if args.command == "trace":
            return _stream(traceroute_command(args.host, args.ipv6))
        if args.command == "lookup":
            return _stream(lookup_command(args.domain, args.tool))
        if args.command == "whois":
            return _stream(whois_command(args.domain, args.server))
        if args.command == "netstat":
            return _stream(netstat_command(args.mode))
        if args.command == "speedtest":
            return _speedtest(args)
    except ConfigurationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except ToolNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        return 127
    parser.error(f"unknown command {args.command}")
    return 2
