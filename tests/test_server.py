"""Tests for the command line entry point."""

import asyncio
import json
from unittest.mock import patch

import pytest

from endpoint_monitor import server
from endpoint_monitor.config import MonitorConfig, StorageConfig


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("MONITOR_DATA_DIR", str(tmp_path))
    return tmp_path


def test_serve_is_default_command():
    with patch("endpoint_monitor.server.uvicorn.run") as mock_run:
        server.main([])

    app = mock_run.call_args.args[0]
    kwargs = mock_run.call_args.kwargs
    assert app == "endpoint_monitor.main:create_app"
    assert kwargs["factory"] is True
    assert kwargs["port"] == 8000


def test_serve_options():
    with patch("endpoint_monitor.server.uvicorn.run") as mock_run:
        server.main(["--log-level", "debug", "serve", "--host", "127.0.0.1", "--port", "9001", "--reload"])

    kwargs = mock_run.call_args.kwargs
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 9001
    assert kwargs["reload"] is True
    assert kwargs["log_level"] == "debug"


def test_server_start_failure_exits():
    with patch("endpoint_monitor.server.uvicorn.run", side_effect=RuntimeError("port in use")):
        with pytest.raises(SystemExit):
            server.start_server()


def test_check_with_no_endpoints(tmp_path):
    config = MonitorConfig(storage=StorageConfig(data_dir=tmp_path))

    assert asyncio.run(server.run_check(config)) == "0 services checked. 0 healthy, 0 down."


def test_digest_command_without_endpoints(data_dir, capsys):
    server.main(["digest"])

    assert capsys.readouterr().out.strip() == "No endpoints configured."


def test_digest_command_prints_input(data_dir, capsys):
    (data_dir / "endpoints.json").write_text(
        json.dumps([{"name": "alpha", "url": "https://alpha.example.com/health"}])
    )

    server.main(["digest"])

    out = capsys.readouterr().out
    assert out.startswith("Daily infrastructure health summary input:")
    assert "- alpha | status: unknown" in out
