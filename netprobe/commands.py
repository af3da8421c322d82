"""
Wrappers around the OS network tools (ping, traceroute, dig/nslookup/host,
whois, netstat).

Output is passed through verbatim: stdout and stderr are merged and streamed
line by line to a callback while the process runs. Nothing here parses what
the tools print.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import threading
from typing import Callable, List, Optional

from .models import ConfigurationError

log = logging.getLogger(__name__)

MAX_HOST_LEN = 253  # RFC 1035
_HOST_RE = re.compile(r"^[A-Za-z0-9.:_\-]+$")

LOOKUP_TOOLS = ("dig", "nslookup", "host")
NETSTAT_MODES = {
    "all": ["-an"],
    "routes": ["-rn"],
    "stats": ["-s"],
    "interfaces": ["-i"],
}

OutputCallback = Callable[[str], None]


class ToolNotFoundError(RuntimeError):
    pass


def sanitize_host(host: str) -> str:
    host = (host or "").strip()
    if not host:
        raise ConfigurationError("host must not be empty")
    if len(host) > MAX_HOST_LEN:
        raise ConfigurationError(f"host name is too long (max {MAX_HOST_LEN} characters)")
    if not _HOST_RE.match(host) or host.startswith("-"):
        raise ConfigurationError(f"invalid host: {host!r}")
    return host


def ping_command(host: str, count: Optional[int] = None, ipv6: bool = False) -> List[str]:
    cmd = ["ping6" if ipv6 else "ping"]
    if count is not None:
        if count < 1:
            raise ConfigurationError("ping count must be >= 1")
        cmd += ["-c", str(count)]
    cmd.append(sanitize_host(host))
    return cmd


def traceroute_command(host: str, ipv6: bool = False) -> List[str]:
    return ["traceroute6" if ipv6 else "traceroute", sanitize_host(host)]


def lookup_command(domain: str, tool: str = "dig") -> List[str]:
    if tool not in LOOKUP_TOOLS:
        raise ConfigurationError(f"unsupported lookup tool: {tool} (choose from {', '.join(LOOKUP_TOOLS)})")
    return [tool, sanitize_host(domain)]


def whois_command(domain: str, server: Optional[str] = None) -> List[str]:
    cmd = ["whois"]
    if server:
        cmd += ["-h", sanitize_host(server)]
    cmd.append(sanitize_host(domain))
    return cmd


def netstat_command(mode: str = "all") -> List[str]:
    try:
        return ["netstat"] + NETSTAT_MODES[mode]
    except KeyError:
        raise ConfigurationError(f"unsupported netstat mode: {mode}") from None


class CommandRunner:
    """
    Runs one external command and streams its combined output.

    cancel() terminates the child; it is safe to call more than once and
    after the process has exited.
    """

    def __init__(self, argv: List[str], on_output: Optional[OutputCallback] = None):
        if not argv:
            raise ConfigurationError("empty command")
        self.argv = list(argv)
        self._on_output = on_output
        self._proc: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None
        self._chunks: List[str] = []
        self._lock = threading.Lock()
        self.cancelled = False

    @property
    def output(self) -> str:
        with self._lock:
            return "".join(self._chunks)

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def start(self) -> "CommandRunner":
        if self._proc is not None:
            raise RuntimeError("command already started")
        if shutil.which(self.argv[0]) is None:
            raise ToolNotFoundError(f"{self.argv[0]} not found on PATH")

        log.debug("RUN: %s", " ".join(self.argv))
        self._proc = subprocess.Popen(
            self.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            bufsize=1,
        )
        self._reader = threading.Thread(target=self._pump, name=f"cmd-{self.argv[0]}", daemon=True)
        self._reader.start()
        return self

    def _pump(self) -> None:
        stdout = self._proc.stdout
        for line in stdout:
            with self._lock:
                self._chunks.append(line)
            if self._on_output is not None:
                try:
                    self._on_output(line)
                except Exception:
                    log.warning("output callback failed", exc_info=True)
        stdout.close()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Exit code, or None if the process is still running after timeout."""
        if self._proc is None:
            raise RuntimeError("command not started")
        try:
            code = self._proc.wait(timeout)
        except subprocess.TimeoutExpired:
            return None
        if self._reader is not None:
            self._reader.join()
        return code

    def cancel(self) -> None:
        if not self.running:
            return
        self.cancelled = True
        log.debug("terminating %s", self.argv[0])
        self._proc.terminate()

    def run(self) -> int:
        self.start()
        return self.wait()
