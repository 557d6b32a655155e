"""Tests for release checks and atomic binary replacement."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from mcpy.models import UpdateInfo
from mcpy.update import (
	ChecksumMismatchError,
	UnsupportedPlatformError,
	UpdateError,
	UpdateManager,
	UpdateState,
	find_checksum,
	get_asset_name,
	is_newer,
	parse_version,
)

ASSET = "mcpy-linux-x64"
DOWNLOAD_URL = f"https://github.com/ebursztein/mcpy/releases/download/v1.3.0/{ASSET}"
SUMS_URL = "https://github.com/ebursztein/mcpy/releases/download/v1.3.0/SHA256SUMS"
NEW_BINARY = b"#!/bin/sh\necho new\n"
OLD_BINARY = b"#!/bin/sh\necho old\n"


def _release(tag: str = "v1.3.0", asset: str = ASSET) -> dict:
	return {
		"tag_name": tag,
		"assets": [{"name": asset, "browser_download_url": DOWNLOAD_URL, "size": 20}],
	}


def _transport(
	release: dict | None = None,
	release_status: int = 200,
	binary: bytes = NEW_BINARY,
	binary_status: int = 200,
	sums: str | None = None,
) -> httpx.MockTransport:
	def handler(request: httpx.Request) -> httpx.Response:
		url = str(request.url)
		if url.endswith("/releases/latest"):
			return httpx.Response(release_status, json=release or _release())
		if url == DOWNLOAD_URL:
			return httpx.Response(binary_status, content=binary)
		if url == SUMS_URL:
			if sums is None:
				return httpx.Response(404, text="Not Found")
			return httpx.Response(200, text=sums)
		return httpx.Response(404)

	return httpx.MockTransport(handler)


def _manager(install_path: Path, transport: httpx.MockTransport, **kwargs) -> UpdateManager:
	return UpdateManager(
		install_path,
		current_version=kwargs.pop("current_version", "1.2.3"),
		client=httpx.AsyncClient(transport=transport),
		system="linux",
		machine="x86_64",
		**kwargs,
	)


def _info() -> UpdateInfo:
	return UpdateInfo(current="1.2.3", latest="1.3.0", download_url=DOWNLOAD_URL, asset=ASSET)


@pytest.fixture()
def install_path(tmp_path: Path) -> Path:
	path = tmp_path / "bin" / "mcpy"
	path.parent.mkdir(parents=True)
	path.write_bytes(OLD_BINARY)
	return path


class TestVersionHelpers:
	@pytest.mark.parametrize(("raw", "expected"), [
		("1.2.3", (1, 2, 3)),
		("v1.2.3", (1, 2, 3)),
		("2.0", (2, 0, 0)),
		("1.x.3", (1, 0, 3)),
		("1.2.3-beta", (1, 2, 3)),
		("", (0, 0, 0)),
	])
	def test_parse_version(self, raw: str, expected: tuple[int, int, int]) -> None:
		assert parse_version(raw) == expected

	def test_is_newer(self) -> None:
		assert is_newer("1.2.3", "1.3.0")
		assert is_newer("1.2.3", "v1.2.4")
		assert not is_newer("1.2.3", "v1.2.3")
		assert not is_newer("1.10.0", "1.9.9")

	@pytest.mark.parametrize(("system", "machine", "expected"), [
		("Linux", "x86_64", "mcpy-linux-x64"),
		("Linux", "aarch64", "mcpy-linux-arm64"),
		("Darwin", "arm64", "mcpy-darwin-arm64"),
		("Darwin", "x86_64", "mcpy-darwin-x64"),
	])
	def test_asset_name(self, system: str, machine: str, expected: str) -> None:
		assert get_asset_name(system, machine) == expected

	def test_unsupported_platform(self) -> None:
		with pytest.raises(UnsupportedPlatformError):
			get_asset_name("Windows", "x86_64")
		with pytest.raises(UnsupportedPlatformError):
			get_asset_name("Linux", "riscv64")

	def test_find_checksum(self) -> None:
		manifest = f"abc123  mcpy-darwin-arm64\nDEF456 *{ASSET}\n"
		assert find_checksum(manifest, ASSET) == "def456"
		assert find_checksum(manifest, "mcpy-linux-arm64") is None


class TestCheckForUpdate:
	@pytest.mark.asyncio
	async def test_same_version_is_not_an_update(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(release=_release(tag="v1.2.3")))
		assert await manager.check_for_update() is None
		assert manager.state == UpdateState.UP_TO_DATE

	@pytest.mark.asyncio
	async def test_newer_version_is_reported(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport())
		info = await manager.check_for_update()
		assert info is not None
		assert info.latest == "1.3.0"
		assert info.asset == ASSET
		assert info.download_url == DOWNLOAD_URL
		assert manager.state == UpdateState.UPDATE_AVAILABLE

	@pytest.mark.asyncio
	async def test_unsupported_platform_fails_hard(self, install_path: Path) -> None:
		manager = UpdateManager(
			install_path, current_version="1.2.3",
			client=httpx.AsyncClient(transport=_transport()),
			system="windows", machine="x86_64",
		)
		with pytest.raises(UnsupportedPlatformError):
			await manager.check_for_update()
		assert manager.state == UpdateState.FAILED

	@pytest.mark.asyncio
	async def test_api_error_raises(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(release_status=403))
		with pytest.raises(UpdateError, match="403"):
			await manager.check_for_update()

	@pytest.mark.asyncio
	async def test_missing_asset_raises(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(release=_release(asset="mcpy-darwin-arm64")))
		with pytest.raises(UpdateError, match=ASSET):
			await manager.check_for_update()

	@pytest.mark.asyncio
	async def test_version_info_never_raises(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(release_status=500))
		info = await manager.get_version_info()
		assert info == {"current": "1.2.3", "latest": None, "updateAvailable": False}

	@pytest.mark.asyncio
	async def test_version_info_with_update(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport())
		info = await manager.get_version_info()
		assert info == {"current": "1.2.3", "latest": "1.3.0", "updateAvailable": True}


class TestPerformUpdate:
	@pytest.mark.asyncio
	async def test_replaces_binary_with_verified_download(self, install_path: Path) -> None:
		digest = hashlib.sha256(NEW_BINARY).hexdigest()
		states: list[UpdateState] = []
		manager = _manager(
			install_path, _transport(sums=f"{digest}  {ASSET}\n"), on_state_change=states.append,
		)

		await manager.perform_update(_info())

		assert install_path.read_bytes() == NEW_BINARY
		assert os.access(install_path, os.X_OK)
		assert not manager.tmp_path.exists()
		assert not manager.backup_path.exists()
		assert states == [
			UpdateState.DOWNLOADING, UpdateState.VERIFYING, UpdateState.REPLACING, UpdateState.DONE,
		]

	@pytest.mark.asyncio
	async def test_missing_manifest_skips_verification(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(sums=None))
		await manager.perform_update(_info())
		assert install_path.read_bytes() == NEW_BINARY

	@pytest.mark.asyncio
	async def test_unreachable_manifest_skips_verification(self, install_path: Path) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			if str(request.url) == SUMS_URL:
				raise httpx.ConnectError("connection refused", request=request)
			assert str(request.url) == DOWNLOAD_URL
			return httpx.Response(200, content=NEW_BINARY)

		states: list[UpdateState] = []
		manager = _manager(install_path, httpx.MockTransport(handler), on_state_change=states.append)

		await manager.perform_update(_info())

		assert install_path.read_bytes() == NEW_BINARY
		assert not manager.backup_path.exists()
		assert states[-1] == UpdateState.DONE

	@pytest.mark.asyncio
	async def test_manifest_without_entry_skips_verification(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(sums="abc  mcpy-darwin-arm64\n"))
		await manager.perform_update(_info())
		assert install_path.read_bytes() == NEW_BINARY

	@pytest.mark.asyncio
	async def test_fresh_install_without_existing_binary(self, tmp_path: Path) -> None:
		target = tmp_path / "new" / "mcpy"
		manager = _manager(target, _transport())
		await manager.perform_update(_info())
		assert target.read_bytes() == NEW_BINARY

	@pytest.mark.asyncio
	async def test_checksum_mismatch_leaves_binary_untouched(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(sums=f"{'0' * 64}  {ASSET}\n"))

		with patch("mcpy.update.os.replace") as mock_replace:
			with pytest.raises(ChecksumMismatchError):
				await manager.perform_update(_info())

		mock_replace.assert_not_called()
		assert install_path.read_bytes() == OLD_BINARY
		assert not manager.tmp_path.exists()
		assert manager.state == UpdateState.FAILED

	@pytest.mark.asyncio
	async def test_download_failure_leaves_binary_untouched(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport(binary_status=404))
		with pytest.raises(UpdateError, match="404"):
			await manager.perform_update(_info())
		assert install_path.read_bytes() == OLD_BINARY
		assert not manager.tmp_path.exists()

	@pytest.mark.asyncio
	async def test_failed_install_rename_restores_backup(self, install_path: Path) -> None:
		manager = _manager(install_path, _transport())
		real_replace = os.replace
		calls: list[tuple[str, str]] = []

		def flaky_replace(src, dst):
			calls.append((Path(src).name, Path(dst).name))
			if Path(src) == manager.tmp_path:
				raise OSError("disk full")
			real_replace(src, dst)

		with patch("mcpy.update.os.replace", side_effect=flaky_replace):
			with pytest.raises(UpdateError, match="disk full"):
				await manager.perform_update(_info())

		assert calls == [("mcpy", "mcpy.bak"), ("mcpy.tmp", "mcpy"), ("mcpy.bak", "mcpy")]
		assert install_path.read_bytes() == OLD_BINARY
		assert not manager.backup_path.exists()
		assert not manager.tmp_path.exists()
