"""
tests/unit/test_main.py — Entry Point Tests

Runs main() end to end against patched discovery and transport to check
exit codes: 1 for configuration, discovery and exhausted-retry failures,
0 for an operator-requested exit.
"""

from __future__ import annotations

import aioconsole
import pytest

import gateway.session_manager as session_manager_module
import main as entrypoint
from exceptions import DiscoveryError, TransportError
from gateway.resolver import EndpointResolver
from gateway_fakes import FakeConnector

TOKEN = "z" * 60


@pytest.fixture
def config_file(tmp_path):
    def _write(max_attempts: int = 10):
        path = tmp_path / "config.yaml"
        path.write_text(
            "gateway:\n"
            f"  max_reconnect_attempts: {max_attempts}\n"
            "logging:\n"
            f"  log_dir: {tmp_path / 'logs'}\n"
            "  console_output: false\n",
            encoding="utf-8",
        )
        return str(path)
    return _write


class TestParseArgs:
    def test_defaults(self):
        args = entrypoint.parse_args([])
        assert args.config is None
        assert args.log_level is None
        assert args.no_console is False

    def test_flags(self):
        args = entrypoint.parse_args(["--config", "x.yaml", "--log-level", "DEBUG", "--no-console"])
        assert args.config == "x.yaml"
        assert args.log_level == "DEBUG"
        assert args.no_console is True


class TestBootstrap:
    def test_missing_token_exits_1(self, config_file, capsys):
        args = entrypoint.parse_args(["--config", config_file()])
        with pytest.raises(SystemExit) as exc_info:
            entrypoint.bootstrap(args)
        assert exc_info.value.code == 1
        assert "DISCORD_TOKEN is not set" in capsys.readouterr().err

    def test_malformed_token_exits_1(self, config_file, monkeypatch):
        monkeypatch.setenv("DISCORD_TOKEN", "short")
        args = entrypoint.parse_args(["--config", config_file()])
        with pytest.raises(SystemExit) as exc_info:
            entrypoint.bootstrap(args)
        assert exc_info.value.code == 1

    def test_invalid_yaml_value_exits_1(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("DISCORD_TOKEN", TOKEN)
        path = tmp_path / "bad.yaml"
        path.write_text("gateway:\n  encoding: etf\n", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            entrypoint.bootstrap(entrypoint.parse_args(["--config", str(path)]))
        assert exc_info.value.code == 1
        assert "Config validation failed" in capsys.readouterr().err

    def test_valid_config_sets_up_logging(self, config_file, monkeypatch, tmp_path):
        monkeypatch.setenv("DISCORD_TOKEN", TOKEN)
        settings, log = entrypoint.bootstrap(entrypoint.parse_args(["--config", config_file()]))
        assert settings.token == TOKEN
        assert (tmp_path / "logs").is_dir()


class TestMain:
    @pytest.mark.asyncio
    async def test_discovery_failure_exits_1(self, config_file, monkeypatch, capsys):
        monkeypatch.setenv("DISCORD_TOKEN", TOKEN)

        async def _fail(self):
            raise DiscoveryError(self.discovery_url, "HTTP 503")

        monkeypatch.setattr(EndpointResolver, "resolve", _fail)
        code = await entrypoint.main(["--config", config_file(), "--no-console"])
        assert code == 1
        assert "Failed to get gateway URL" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_exhausted_retries_exits_1(self, config_file, monkeypatch, capsys):
        monkeypatch.setenv("DISCORD_TOKEN", TOKEN)

        async def _resolve(self):
            return "wss://gateway.test"

        async def _refuse(url):
            raise TransportError("connection refused")

        monkeypatch.setattr(EndpointResolver, "resolve", _resolve)
        monkeypatch.setattr(session_manager_module, "open_websocket", _refuse)
        code = await entrypoint.main(["--config", config_file(max_attempts=0), "--no-console"])
        assert code == 1
        assert "Max reconnection attempts reached" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_exit_command_exits_0(self, config_file, monkeypatch):
        monkeypatch.setenv("DISCORD_TOKEN", TOKEN)
        connector = FakeConnector()

        async def _resolve(self):
            return "wss://gateway.test"

        async def _input(prompt):
            return "exit"

        monkeypatch.setattr(EndpointResolver, "resolve", _resolve)
        monkeypatch.setattr(session_manager_module, "open_websocket", connector)
        monkeypatch.setattr(aioconsole, "ainput", _input)
        code = await entrypoint.main(["--config", config_file()])
        assert code == 0
        assert connector.latest.closed is True
        assert connector.latest.close_code == 1000
