"""Tests for the mcpy command line."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mcpy import __version__
from mcpy.cli import COMMANDS, build_parser, build_services, main, setup_logging
from mcpy.config import ServerConfig
from mcpy.models import UpdateInfo
from mcpy.update import UpdateError


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
	monkeypatch.setenv("MCPY_DATA_DIR", str(tmp_path))
	monkeypatch.delenv("MCPY_PORT", raising=False)
	monkeypatch.delenv("PORT", raising=False)
	monkeypatch.delenv("GITHUB_TOKEN", raising=False)
	monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
	return tmp_path


def _fake_updater(info: UpdateInfo | None = None, error: Exception | None = None) -> MagicMock:
	updater = MagicMock()
	updater.install_path = Path("/tmp/mcpy")
	updater.check_for_update = AsyncMock(return_value=info, side_effect=error)
	updater.perform_update = AsyncMock()
	updater.close = AsyncMock()
	return updater


class TestParser:
	def test_subcommands(self) -> None:
		parser = build_parser()
		assert parser.parse_args(["serve", "--port", "4000"]).port == 4000
		assert parser.parse_args(["version", "--check"]).check is True
		assert parser.parse_args(["update", "--check-only"]).check_only is True
		assert parser.parse_args(["tools"]).command == "tools"
		assert parser.parse_args([]).command is None

	def test_every_subcommand_has_a_handler(self) -> None:
		assert set(COMMANDS) == {"serve", "version", "update", "tools"}


class TestMain:
	def test_no_command_runs_serve(self) -> None:
		serve = MagicMock(return_value=0)
		with patch.dict(COMMANDS, {"serve": serve}):
			assert main([]) == 0
		serve.assert_called_once()
		assert serve.call_args.args[0].command == "serve"

	def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["version"]) == 0
		assert capsys.readouterr().out.strip() == f"mcpy {__version__}"

	def test_invalid_port_fails(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
		monkeypatch.setenv("MCPY_PORT", "not-a-port")
		assert main(["tools"]) == 1
		assert "MCPY_PORT" in capsys.readouterr().out


class TestVersionCheck:
	def test_update_available(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		info = UpdateInfo(current=__version__, latest="99.0.0", download_url="https://x/a", asset="mcpy-linux-x64")
		with patch("mcpy.cli.UpdateManager", return_value=_fake_updater(info)):
			assert main(["version", "--check"]) == 0
		assert "99.0.0" in capsys.readouterr().out

	def test_check_failure(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		with patch("mcpy.cli.UpdateManager", return_value=_fake_updater(error=UpdateError("offline"))):
			assert main(["version", "--check"]) == 1
		assert "offline" in capsys.readouterr().out


class TestUpdateCommand:
	def test_already_current(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		updater = _fake_updater(None)
		with patch("mcpy.cli.UpdateManager", return_value=updater):
			assert main(["update"]) == 0
		assert "already the latest" in capsys.readouterr().out
		updater.perform_update.assert_not_awaited()
		updater.close.assert_awaited_once()

	def test_check_only(self, data_dir: Path) -> None:
		info = UpdateInfo(current=__version__, latest="99.0.0", download_url="https://x/a", asset="mcpy-linux-x64")
		updater = _fake_updater(info)
		with patch("mcpy.cli.UpdateManager", return_value=updater):
			assert main(["update", "--check-only"]) == 0
		updater.perform_update.assert_not_awaited()

	def test_installs(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		info = UpdateInfo(current=__version__, latest="99.0.0", download_url="https://x/a", asset="mcpy-linux-x64")
		updater = _fake_updater(info)
		with patch("mcpy.cli.UpdateManager", return_value=updater):
			assert main(["update"]) == 0
		updater.perform_update.assert_awaited_once_with(info)
		assert "Installed mcpy 99.0.0" in capsys.readouterr().out

	def test_failure_exit_code(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		info = UpdateInfo(current=__version__, latest="99.0.0", download_url="https://x/a", asset="mcpy-linux-x64")
		updater = _fake_updater(info)
		updater.perform_update.side_effect = UpdateError("Checksum mismatch")
		with patch("mcpy.cli.UpdateManager", return_value=updater):
			assert main(["update"]) == 1
		assert "Checksum mismatch" in capsys.readouterr().out


class TestToolsCommand:
	def test_lists_tools(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["tools"]) == 0
		out = capsys.readouterr().out
		assert "[on ] pypi_info" in out
		assert "[off] web_search" in out
		assert "needs apiKeys.perplexity" in out


class TestServices:
	def test_build_services_shares_one_bus(self, tmp_path: Path) -> None:
		config = ServerConfig(data_dir=tmp_path, install_path=tmp_path / "mcpy")
		services = build_services(config)
		assert services.dispatcher.events is services.events
		assert services.dispatcher.updater is services.updater
		assert services.settings.path == config.settings_path


class TestLogging:
	def test_writes_to_log_file(self, tmp_path: Path) -> None:
		config = ServerConfig(data_dir=tmp_path / "data", install_path=tmp_path / "mcpy")
		root = logging.getLogger()
		saved = root.handlers[:], root.level
		try:
			setup_logging(config)
			logging.getLogger("mcpy.test").info("hello from the test")
			for handler in root.handlers:
				handler.flush()
			text = config.log_path.read_text()
			assert "INFO mcpy.test: hello from the test" in text
		finally:
			for handler in root.handlers:
				if handler not in saved[0]:
					handler.close()
			root.handlers[:] = saved[0]
			root.setLevel(saved[1])
