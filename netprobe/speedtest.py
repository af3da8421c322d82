"""
HTTP throughput test: a timed streaming download followed by a timed upload.

Both transfers report progress per chunk and stop at the next chunk boundary
once cancel() is called. A failed transfer is reported in its result, it
does not raise.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional
from urllib.parse import urlparse

import requests

from .models import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_URL = "https://openspeedtest.com/downloading"
DEFAULT_UPLOAD_URL = "https://ptsv3.com/upload"
DEFAULT_UPLOAD_BYTES = 1024 * 1024
DEFAULT_HTTP_TIMEOUT = 60.0
CHUNK_SIZE = 64 * 1024

DOWNLOAD = "download"
UPLOAD = "upload"


def _mbps(nbytes: int, elapsed_s: float) -> float:
    if elapsed_s <= 0:
        return 0.0
    return nbytes * 8 / elapsed_s / 1_000_000


@dataclass(frozen=True)
class SpeedTestSettings:
    download_url: str = DEFAULT_DOWNLOAD_URL
    upload_url: str = DEFAULT_UPLOAD_URL
    upload_bytes: int = DEFAULT_UPLOAD_BYTES
    timeout: float = DEFAULT_HTTP_TIMEOUT
    run_download: bool = True
    run_upload: bool = True

    def validate(self) -> None:
        if not (self.run_download or self.run_upload):
            raise ConfigurationError("nothing to test: download and upload both disabled")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")
        if self.run_upload and self.upload_bytes < 1:
            raise ConfigurationError("upload size must be >= 1 byte")
        for url, enabled in ((self.download_url, self.run_download), (self.upload_url, self.run_upload)):
            if enabled and urlparse(url).scheme not in ("http", "https"):
                raise ConfigurationError(f"not an http(s) URL: {url!r}")


@dataclass(frozen=True)
class TransferProgress:
    phase: str
    bytes_done: int
    total_bytes: Optional[int]
    elapsed_s: float

    @property
    def mbps(self) -> float:
        return _mbps(self.bytes_done, self.elapsed_s)


@dataclass(frozen=True)
class TransferResult:
    phase: str
    url: str
    bytes_transferred: int
    elapsed_s: float
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def mbps(self) -> float:
        return _mbps(self.bytes_transferred, self.elapsed_s)


@dataclass(frozen=True)
class SpeedTestResult:
    download: Optional[TransferResult]
    upload: Optional[TransferResult]
    cancelled: bool = False


class SpeedTest:
    """Runs once. start()/wait() for a background run, run() to block."""

    def __init__(
        self,
        settings: Optional[SpeedTestSettings] = None,
        on_progress: Optional[Callable[[TransferProgress], None]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or SpeedTestSettings()
        self._on_progress = on_progress
        self._session = session
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._started = False
        self._result: Optional[SpeedTestResult] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def result(self) -> Optional[SpeedTestResult]:
        return self._result

    def cancel(self) -> None:
        self._cancel.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[SpeedTestResult]:
        self._done.wait(timeout)
        return self._result

    def start(self) -> "SpeedTest":
        self._begin()
        self._thread = threading.Thread(target=self._run, name="speedtest", daemon=True)
        self._thread.start()
        return self

    def run(self) -> SpeedTestResult:
        self._begin()
        return self._run()

    def _begin(self) -> None:
        if self._started:
            raise RuntimeError("speed test already started")
        self.settings.validate()
        self._started = True

    def _run(self) -> SpeedTestResult:
        s = self.settings
        session = self._session or requests.Session()
        download = upload = None
        try:
            if s.run_download and not self._cancel.is_set():
                download = self._download(session)
            if s.run_upload and not self._cancel.is_set():
                upload = self._upload(session)
        finally:
            if self._session is None:
                session.close()
            self._result = SpeedTestResult(download, upload, cancelled=self._cancel.is_set())
            self._done.set()
        return self._result

    def _emit(self, progress: TransferProgress) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(progress)
        except Exception:
            log.warning("speed test progress callback failed", exc_info=True)

    def _download(self, session: requests.Session) -> TransferResult:
        url = self.settings.download_url
        total = 0
        status = None
        start = time.perf_counter()
        try:
            with session.get(url, stream=True, timeout=self.settings.timeout) as resp:
                status = resp.status_code
                resp.raise_for_status()
                length = resp.headers.get("Content-Length")
                expected = int(length) if length and length.isdigit() else None
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    total += len(chunk)
                    self._emit(TransferProgress(DOWNLOAD, total, expected, time.perf_counter() - start))
                    if self._cancel.is_set():
                        break
        except requests.RequestException as e:
            log.warning("download from %s failed: %s", url, e)
            return TransferResult(DOWNLOAD, url, total, time.perf_counter() - start, status, str(e))
        return TransferResult(DOWNLOAD, url, total, time.perf_counter() - start, status)

    def _upload(self, session: requests.Session) -> TransferResult:
        url = self.settings.upload_url
        size = self.settings.upload_bytes
        sent = 0
        start = time.perf_counter()

        def body() -> Iterator[bytes]:
            # a generator body goes out chunked, so stopping early still
            # ends the request cleanly
            nonlocal sent
            while sent < size and not self._cancel.is_set():
                chunk = bytes(min(CHUNK_SIZE, size - sent))
                yield chunk
                sent += len(chunk)
                self._emit(TransferProgress(UPLOAD, sent, size, time.perf_counter() - start))

        status = None
        try:
            resp = session.post(url, data=body(), timeout=self.settings.timeout)
            status = resp.status_code
            resp.raise_for_status()
        except requests.RequestException as e:
            log.warning("upload to %s failed: %s", url, e)
            return TransferResult(UPLOAD, url, sent, time.perf_counter() - start, status, str(e))
        return TransferResult(UPLOAD, url, sent, time.perf_counter() - start, status)


def format_result(result: TransferResult) -> str:
    label = "Download" if result.phase == DOWNLOAD else "Upload"
    if not result.ok:
        return f"{label} Error: {result.error}"
    verb = "Downloaded" if result.phase == DOWNLOAD else "Uploaded"
    mb = result.bytes_transferred / 1024 / 1024
    return (
        f"{verb} {mb:.2f} MB in {result.elapsed_s:.2f} seconds.\n"
        f"Speed: {result.mbps:.2f} Mbps"
    )
