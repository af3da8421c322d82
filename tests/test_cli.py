import json

from netprobe import cli
from netprobe.models import ProbeOutcome, ProbeState
from netprobe.scanner import PortScanner


def _fake_probe(host, port, timeout):
    if port == 22:
        return ProbeOutcome(port, ProbeState.OPEN)
    return ProbeOutcome(port, ProbeState.CLOSED, "refused")


def _patch_probe(monkeypatch):
    original = PortScanner.__init__

    def init(self, target, options=None, **kwargs):
        kwargs["probe"] = _fake_probe
        original(self, target, options, **kwargs)

    monkeypatch.setattr(PortScanner, "__init__", init)


def test_scan_text(monkeypatch, capsys):
    _patch_probe(monkeypatch)
    assert cli.main(["scan", "127.0.0.1", "--start", "20", "--end", "25"]) == 0
    out = capsys.readouterr().out
    assert "Port 22: Open" in out
    assert "--- Scan Complete ---" in out
    assert "Found 1 open ports:" in out


def test_scan_json(monkeypatch, capsys):
    _patch_probe(monkeypatch)
    assert cli.main(["scan", "127.0.0.1", "--start", "20", "--end", "25", "--json", "--verbose"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["open_ports"] == [22]
    assert payload["closed_ports"] == [20, 21, 23, 24, 25]
    assert payload["ports_scanned"] == 6


def test_scan_bad_range(capsys):
    assert cli.main(["scan", "127.0.0.1", "--start", "100", "--end", "10"]) == 2
    assert "start port exceeds end port" in capsys.readouterr().err


def test_bad_host_for_tool(capsys):
    assert cli.main(["ping", "bad host;"]) == 2


def test_scan_explicit_ports(monkeypatch, capsys):
    _patch_probe(monkeypatch)
    assert cli.main(["scan", "127.0.0.1", "--ports", "22,80,8000-8010", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["open_ports"] == [22]
    assert payload["ports_planned"] == 13
    assert payload["ports_scanned"] == 13


def test_scan_bad_port_spec(capsys):
    assert cli.main(["scan", "127.0.0.1", "--ports", "22,abc"]) == 2
    assert "Invalid port" in capsys.readouterr().err
