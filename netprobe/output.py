from __future__ import annotations

import json
from typing import Iterable, List

from .models import ProbeOutcome, ProbeState, ScanReport


def build_report(
    host: str,
    outcomes: Iterable[ProbeOutcome],
    ports_planned: int,
    elapsed_s: float,
    cancelled: bool,
    verbose: bool = False,
) -> ScanReport:
    """
    Final summary of a scan.

    Outcomes may arrive in any completion order; ports are sorted and
    de-duplicated here. Timed-out ports count as closed/filtered.
    """
    outcomes = list(outcomes)
    open_ports = sorted({o.port for o in outcomes if o.is_open})
    closed_ports: List[int] = []
    if verbose:
        closed_ports = sorted({o.port for o in outcomes if not o.is_open} - set(open_ports))

    return ScanReport(
        host=host,
        open_ports=tuple(open_ports),
        closed_ports=tuple(closed_ports),
        ports_planned=ports_planned,
        ports_scanned=len({o.port for o in outcomes}),
        elapsed_s=round(elapsed_s, 4),
        cancelled=cancelled,
    )


def format_outcome(outcome: ProbeOutcome) -> str:
    if outcome.state is ProbeState.OPEN:
        return f"Port {outcome.port}: Open"
    if outcome.state is ProbeState.TIMED_OUT:
        return f"Port {outcome.port}: Filtered (timeout)"
    return f"Port {outcome.port}: Closed ({outcome.cause or 'refused'})"


def format_report(report: ScanReport) -> str:
    lines: List[str] = []
    if report.cancelled:
        lines.append("--- Scan stopped by user ---")
    else:
        lines.append("--- Scan Complete ---")

    lines.append(
        f"Scanned {report.ports_scanned}/{report.ports_planned} ports on "
        f"{report.host} in {report.elapsed_s:.2f}s"
    )
    if not report.open_ports:
        lines.append("No open ports found.")
    else:
        lines.append(f"Found {len(report.open_ports)} open ports:")
        lines.extend(str(p) for p in report.open_ports)

    if report.closed_ports:
        lines.append(f"Closed or filtered ports: {len(report.closed_ports)}")
        lines.extend(str(p) for p in report.closed_ports)
    return "\n".join(lines)


def report_to_json(report: ScanReport) -> str:
    return json.dumps(report.to_dict(), indent=2)
