from __future__ import annotations

import logging
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Optional

from .limiter import ConcurrencyLimiter
from .logger import log_event
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
from .output import build_report
from .ports import ScanPlan
from .probe import probe_port

log = logging.getLogger(__name__)

ProbeFunc = Callable[[str, int, float], ProbeOutcome]
ProgressCallback = Callable[[ScanProgress], None]
ReportCallback = Callable[[ScanReport], None]


def resolve_host(host: str) -> str:
    """
    Resolve once per scan so probes don't each hit DNS. If resolution fails
    the name is handed to the probes unchanged and each of them reports it.
    """
    try:
        return socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)[0][4][0]
    except (socket.gaierror, ValueError) as e:
        # ValueError covers UnicodeError for names that fail IDNA encoding
        log.warning("Could not resolve target %r: %s", host, e)
        return host


class PortScanner:
    """
    Scans one ScanTarget, exactly once.

    The target range is used unless an explicit port set is passed as
    `ports`, in which case only those ports are scanned (sorted, de-duplicated).

    Ports are dispatched in chunks no larger than the concurrency cap. Every
    probe runs inside a ConcurrencyLimiter slot and hands its outcome back to
    the orchestrating thread, which is the only writer of the tally. cancel()
    is checked between chunks; probes already in flight finish on their own
    timeout.
    """

    def __init__(
        self,
        target: ScanTarget,
        options: Optional[ScanOptions] = None,
        probe: ProbeFunc = probe_port,
        ports: Optional[Iterable[int]] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[ReportCallback] = None,
        limiter: Optional[ConcurrencyLimiter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.target = target
        self.options = options or ScanOptions()
        self._probe = probe
        self._ports = None if ports is None else list(ports)
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._limiter = limiter
        self._events = logger or log

        self._cancel = threading.Event()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._state = ScanState.IDLE
        self._progress: Optional[ScanProgress] = None
        self._report: Optional[ScanReport] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state

    @property
    def progress(self) -> Optional[ScanProgress]:
        return self._progress

    @property
    def report(self) -> Optional[ScanReport]:
        return self._report

    @property
    def limiter(self) -> Optional[ConcurrencyLimiter]:
        return self._limiter

    @property
    def verbose(self) -> bool:
        return self.target.verbose or self.options.verbose

    def run(self) -> ScanReport:
        """Scan in the calling thread and return the final report."""
        plan = self._begin()
        return self._scan(plan)

    def start(self) -> "PortScanner":
        """Scan on a background thread. Validation errors are raised here."""
        plan = self._begin()
        self._thread = threading.Thread(
            target=self._scan,
            args=(plan,),
            name=f"portscan-{plan.host}",
            daemon=True,
        )
        self._thread.start()
        return self

    def cancel(self) -> None:
        if self._done.is_set() or self._cancel.is_set():
            return
        self._cancel.set()
        log_event(self._events, "scan_cancel_requested", {"host": self.target.host})

    def wait(self, timeout: Optional[float] = None) -> Optional[ScanReport]:
        self._done.wait(timeout)
        return self._report

    def _begin(self) -> ScanPlan:
        with self._lock:
            if self._state is not ScanState.IDLE:
                raise RuntimeError(f"scanner already used (state={self._state.value})")
            try:
                self.options.validate()
                if self._ports is None:
                    plan = ScanPlan.from_target(self.target)
                else:
                    plan = ScanPlan.from_ports(self.target.host, self._ports)
                if self._limiter is None:
                    self._limiter = ConcurrencyLimiter(self.options.concurrency)
            except ConfigurationError as e:
                self._state = ScanState.FAILED
                self._done.set()
                log_event(self._events, "scan_failed", {
                    "host": self.target.host,
                    "error": str(e),
                })
                raise
            self._state = ScanState.RUNNING
        return plan

    def _scan(self, plan: ScanPlan) -> ScanReport:
        chunk_size = self.options.concurrency
        total = len(plan)
        outcomes: List[ProbeOutcome] = []
        cancelled = False
        start_all = time.perf_counter()

        log_event(self._events, "scan_start", {
            "host": plan.host,
            "start_port": plan.ports()[0],
            "end_port": plan.ports()[-1],
            "ports_planned": total,
            "concurrency": chunk_size,
            "timeout_s": self.options.timeout,
        })

        try:
            address = resolve_host(plan.host)
            with ThreadPoolExecutor(max_workers=chunk_size) as pool:
                for chunk in plan.chunks(chunk_size):
                    if self._cancel.is_set():
                        cancelled = True
                        break

                    futures = [pool.submit(self._probe_in_slot, address, p) for p in chunk]
                    for fut in as_completed(futures):
                        outcome = fut.result()
                        outcomes.append(outcome)
                        self._emit(ScanProgress(len(outcomes), total, outcome))

            report = build_report(
                host=plan.host,
                outcomes=outcomes,
                ports_planned=total,
                elapsed_s=time.perf_counter() - start_all,
                cancelled=cancelled,
                verbose=self.verbose,
            )
            with self._lock:
                self._report = report
                self._state = ScanState.CANCELLED if cancelled else ScanState.COMPLETED
        except BaseException:
            with self._lock:
                self._state = ScanState.FAILED
            log.exception("scan of %s aborted", plan.host)
            raise
        finally:
            self._done.set()

        log_event(self._events, "scan_finish", {
            "host": report.host,
            "open_ports": list(report.open_ports),
            "ports_scanned": report.ports_scanned,
            "ports_planned": report.ports_planned,
            "elapsed_s": report.elapsed_s,
            "cancelled": report.cancelled,
        })
        if self._on_complete is not None:
            try:
                self._on_complete(report)
            except Exception:
                log.warning("completion callback failed", exc_info=True)
        return report

    def _probe_in_slot(self, address: str, port: int) -> ProbeOutcome:
        with self._limiter.slot():
            try:
                return self._probe(address, port, self.options.timeout)
            except Exception as e:
                # one bad probe must not sink the batch
                log.warning("probe of port %s raised %r", port, e)
                return ProbeOutcome(port, ProbeState.CLOSED, "error")

    def _emit(self, progress: ScanProgress) -> None:
        self._progress = progress
        if self._on_progress is None:
            return
        try:
            self._on_progress(progress)
        except Exception:
            log.warning("progress callback failed", exc_info=True)


def start_scan(
    target: ScanTarget,
    options: Optional[ScanOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
    probe: ProbeFunc = probe_port,
    ports: Optional[Iterable[int]] = None,
) -> PortScanner:
    return PortScanner(target, options, probe=probe, ports=ports, on_progress=on_progress).start()


def cancel(handle: PortScanner) -> None:
    handle.cancel()
