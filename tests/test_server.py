"""Tests for the web server entry point."""

import sys

import pytest

from roundstats import server


@pytest.fixture
def uvicorn_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(server.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    return calls


class TestServerMain:
    def test_defaults(self, monkeypatch, uvicorn_calls):
        monkeypatch.setattr(sys, "argv", ["roundstats-web"])

        server.main()

        app, kwargs = uvicorn_calls[0]
        assert app == "roundstats.api:app"
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 8000
        assert kwargs["workers"] == 1

    def test_multiple_workers_rejected(self, monkeypatch, uvicorn_calls, capsys):
        monkeypatch.setattr(sys, "argv", ["roundstats-web", "--workers", "4"])

        with pytest.raises(SystemExit) as exc_info:
            server.main()

        assert exc_info.value.code == 2
        assert "--workers must be 1" in capsys.readouterr().err
        assert uvicorn_calls == []
