import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from netprobe import cli
from netprobe.models import ConfigurationError
from netprobe.speedtest import (
    DOWNLOAD,
    UPLOAD,
    SpeedTest,
    SpeedTestSettings,
    TransferResult,
    format_result,
)

PAYLOAD_SIZE = 512 * 1024


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, *args):
        pass

    def do_GET(self):
        if self.path != "/download":
            self.send_error(404)
            return
        self.send_response(200)
        self.send_header("Content-Length", str(PAYLOAD_SIZE))
        self.end_headers()
        block = b"x" * 8192
        for _ in range(PAYLOAD_SIZE // len(block)):
            try:
                self.wfile.write(block)
            except (BrokenPipeError, ConnectionResetError):
                return

    def do_POST(self):
        received = 0
        if self.headers.get("Transfer-Encoding", "").lower() == "chunked":
            while True:
                size = int(self.rfile.readline().split(b";")[0].strip(), 16)
                if size == 0:
                    self.rfile.readline()
                    break
                received += len(self.rfile.read(size))
                self.rfile.readline()
        else:
            received = len(self.rfile.read(int(self.headers.get("Content-Length", 0))))
        self.server.uploads.append(received)
        body = str(received).encode()
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


@pytest.fixture
def http_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.daemon_threads = True
    server.uploads = []
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield server, f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def _settings(base, **kw):
    kw.setdefault("timeout", 5.0)
    kw.setdefault("upload_bytes", 200 * 1024)
    return SpeedTestSettings(download_url=f"{base}/download", upload_url=f"{base}/upload", **kw)


def test_download_and_upload(http_server):
    server, base = http_server
    events = []
    result = SpeedTest(_settings(base), on_progress=events.append).run()

    assert result.cancelled is False
    assert result.download.ok and result.upload.ok
    assert result.download.bytes_transferred == PAYLOAD_SIZE
    assert result.download.status_code == 200
    assert result.upload.bytes_transferred == 200 * 1024
    assert server.uploads == [200 * 1024]
    assert result.download.mbps > 0

    phases = [e.phase for e in events]
    assert phases.index(UPLOAD) > phases.index(DOWNLOAD)
    downloads = [e.bytes_done for e in events if e.phase == DOWNLOAD]
    assert downloads == sorted(downloads)
    assert [e.total_bytes for e in events if e.phase == DOWNLOAD][0] == PAYLOAD_SIZE


def test_cancel_during_download_skips_upload(http_server):
    server, base = http_server
    test = None

    def on_progress(progress):
        test.cancel()

    test = SpeedTest(_settings(base), on_progress=on_progress)
    result = test.run()

    assert result.cancelled is True
    assert 0 < result.download.bytes_transferred < PAYLOAD_SIZE
    assert result.upload is None
    assert server.uploads == []


def test_cancel_during_upload_ends_request(http_server):
    server, base = http_server
    test = None

    def on_progress(progress):
        if progress.phase == UPLOAD:
            test.cancel()

    test = SpeedTest(_settings(base, run_download=False, upload_bytes=1024 * 1024), on_progress=on_progress)
    result = test.start().wait(10.0)

    assert result.cancelled is True
    assert result.download is None
    assert result.upload.ok
    assert result.upload.bytes_transferred < 1024 * 1024
    assert server.uploads == [result.upload.bytes_transferred]


def test_http_error_is_reported(http_server):
    _, base = http_server
    settings = SpeedTestSettings(download_url=f"{base}/missing", run_upload=False, timeout=5.0)
    result = SpeedTest(settings).run()

    assert not result.download.ok
    assert result.download.status_code == 404
    assert "Download Error" in format_result(result.download)


def test_unreachable_server_is_reported(closed_port):
    settings = SpeedTestSettings(
        download_url=f"http://127.0.0.1:{closed_port}/download",
        upload_url=f"http://127.0.0.1:{closed_port}/upload",
        timeout=2.0,
    )
    result = SpeedTest(settings).run()
    assert result.download.error
    assert result.upload.error


@pytest.mark.parametrize("kw", [
    {"timeout": 0},
    {"upload_bytes": 0},
    {"download_url": "ftp://example.com/file"},
    {"run_download": False, "run_upload": False},
])
def test_invalid_settings(kw):
    with pytest.raises(ConfigurationError):
        SpeedTest(SpeedTestSettings(**kw)).run()


def test_single_use(http_server):
    _, base = http_server
    test = SpeedTest(_settings(base, run_upload=False))
    test.run()
    with pytest.raises(RuntimeError):
        test.run()


def test_format_result():
    ok = TransferResult(UPLOAD, "http://h/u", 1024 * 1024, 1.0, 200)
    text = format_result(ok)
    assert text.startswith("Uploaded 1.00 MB in 1.00 seconds.")
    assert "Speed: 8.39 Mbps" in text


def test_cli_speedtest(http_server, capsys):
    _, base = http_server
    code = cli.main([
        "speedtest",
        "--download-url", f"{base}/download",
        "--upload-url", f"{base}/upload",
        "--upload-bytes", "65536",
        "--timeout", "5",
    ])
    out = capsys.readouterr().out
    assert code == 0
    assert "Downloaded 0.50 MB" in out
    assert "Uploaded 0.06 MB" in out
