"""Self-update: check GitHub releases, download, verify SHA256, replace the binary.

The replace step renames the current executable to a ``.bak`` sibling before
moving the new one into place, and restores the backup if that second rename
fails. The temporary download lives next to the install path so both renames
stay on one filesystem.
"""

from __future__ import annotations

import hashlib
import logging
import os
import platform
import re
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from mcpy import __version__
from mcpy.constants import CHECKSUM_MANIFEST, HTTP_TIMEOUT, RELEASE_REPO
from mcpy.models import UpdateInfo

logger = logging.getLogger(__name__)

_SYSTEMS = {"linux": "linux", "darwin": "darwin"}
_MACHINES = {
	"x86_64": "x64",
	"amd64": "x64",
	"x64": "x64",
	"arm64": "arm64",
	"aarch64": "arm64",
}


class UpdateError(RuntimeError):
	"""Raised when checking for or applying an update fails."""


class ChecksumMismatchError(UpdateError):
	pass


class UnsupportedPlatformError(UpdateError):
	pass


class UpdateState(Enum):
	IDLE = "idle"
	CHECKING = "checking"
	UP_TO_DATE = "up_to_date"
	UPDATE_AVAILABLE = "update_available"
	DOWNLOADING = "downloading"
	VERIFYING = "verifying"
	REPLACING = "replacing"
	DONE = "done"
	FAILED = "failed"


class ReleaseAsset(BaseModel, extra="ignore"):
	name: str
	browser_download_url: str


class Release(BaseModel, extra="ignore"):
	"""Subset of the GitHub 'latest release' payload we rely on."""

	tag_name: str
	assets: list[ReleaseAsset] = []


def parse_version(version: str) -> tuple[int, int, int]:
	"""Parse 'v1.2.3' style tags. Non-numeric or missing parts count as zero."""
	parts = version.strip().lstrip("vV").split(".")
	numbers: list[int] = []
	for part in parts[:3]:
		match = re.match(r"\d+", part)
		numbers.append(int(match.group()) if match else 0)
	while len(numbers) < 3:
		numbers.append(0)
	return numbers[0], numbers[1], numbers[2]


def is_newer(current: str, candidate: str) -> bool:
	"""True when ``candidate`` is strictly newer than ``current``."""
	return parse_version(candidate) > parse_version(current)


def get_asset_name(system: str | None = None, machine: str | None = None) -> str:
	"""Map OS + CPU architecture to the release asset name."""
	system = (system or platform.system()).lower()
	machine = (machine or platform.machine()).lower()
	if system not in _SYSTEMS:
		raise UnsupportedPlatformError(f"Unsupported platform: {system}")
	if machine not in _MACHINES:
		raise UnsupportedPlatformError(f"Unsupported architecture: {machine}")
	return f"mcpy-{_SYSTEMS[system]}-{_MACHINES[machine]}"


def checksum_url(download_url: str) -> str:
	return download_url.rsplit("/", 1)[0] + "/" + CHECKSUM_MANIFEST


def find_checksum(manifest: str, asset: str) -> str | None:
	"""Return the expected hex digest for ``asset`` from a SHA256SUMS body."""
	for line in manifest.splitlines():
		parts = line.strip().split()
		if len(parts) >= 2 and parts[-1].lstrip("*") == asset:
			return parts[0].lower()
	return None


class UpdateManager:
	"""Checks for and installs new mcpy releases.

	No guard against concurrent ``perform_update`` calls: two attempts share
	the same ``.tmp`` and ``.bak`` paths.
	"""

	def __init__(
		self,
		install_path: Path,
		current_version: str = __version__,
		repo: str = RELEASE_REPO,
		client: httpx.AsyncClient | None = None,
		system: str | None = None,
		machine: str | None = None,
		on_state_change: Callable[[UpdateState], None] | None = None,
	) -> None:
		self.install_path = Path(install_path)
		self.current_version = current_version
		self.repo = repo
		self._client = client
		self._owns_client = client is None
		self._system = system
		self._machine = machine
		self._on_state_change = on_state_change
		self.state = UpdateState.IDLE

	@property
	def tmp_path(self) -> Path:
		return self.install_path.with_name(self.install_path.name + ".tmp")

	@property
	def backup_path(self) -> Path:
		return self.install_path.with_name(self.install_path.name + ".bak")

	@property
	def _headers(self) -> dict[str, str]:
		return {"User-Agent": f"mcpy/{self.current_version}"}

	def _set_state(self, state: UpdateState) -> None:
		if state != self.state:
			logger.debug("Update state: %s -> %s", self.state.value, state.value)
		self.state = state
		if self._on_state_change:
			self._on_state_change(state)

	async def _ensure_client(self) -> httpx.AsyncClient:
		if self._client is None:
			self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True)
		return self._client

	async def close(self) -> None:
		if self._client is not None and self._owns_client:
			await self._client.aclose()
			self._client = None

	async def check_for_update(self) -> UpdateInfo | None:
		"""Return an UpdateInfo when the latest release is newer, else None.

		Raises:
			UnsupportedPlatformError: If this OS/architecture has no release asset.
			UpdateError: If the release metadata cannot be fetched or lacks our asset.
		"""
		self._set_state(UpdateState.CHECKING)
		try:
			asset = get_asset_name(self._system, self._machine)
			release = await self._fetch_release()
		except UpdateError:
			self._set_state(UpdateState.FAILED)
			raise

		latest = release.tag_name.lstrip("vV")
		if not is_newer(self.current_version, latest):
			self._set_state(UpdateState.UP_TO_DATE)
			return None

		match = next((a for a in release.assets if a.name == asset), None)
		if match is None:
			self._set_state(UpdateState.FAILED)
			raise UpdateError(f"No release asset found for {asset} in {release.tag_name}")

		self._set_state(UpdateState.UPDATE_AVAILABLE)
		return UpdateInfo(
			current=self.current_version,
			latest=latest,
			download_url=match.browser_download_url,
			asset=asset,
		)

	async def _fetch_release(self) -> Release:
		client = await self._ensure_client()
		url = f"https://api.github.com/repos/{self.repo}/releases/latest"
		headers = {**self._headers, "Accept": "application/vnd.github.v3+json"}
		try:
			resp = await client.get(url, headers=headers)
		except httpx.HTTPError as e:
			raise UpdateError(f"Could not reach GitHub: {e}") from e
		if resp.status_code != 200:
			raise UpdateError(f"GitHub API returned {resp.status_code}: {resp.text[:200]}")
		try:
			return Release.model_validate(resp.json())
		except (ValueError, ValidationError) as e:
			raise UpdateError(f"Malformed release metadata: {e}") from e

	async def perform_update(self, info: UpdateInfo) -> None:
		"""Download, verify, and atomically install ``info``.

		Raises:
			UpdateError: On download or replace failure. The installed binary
				is untouched on download failure and restored on replace failure.
			ChecksumMismatchError: If the published checksum does not match.
		"""
		try:
			self._set_state(UpdateState.DOWNLOADING)
			data = await self._download(info.download_url)
			self.install_path.parent.mkdir(parents=True, exist_ok=True)
			self.tmp_path.write_bytes(data)

			self._set_state(UpdateState.VERIFYING)
			await self._verify(info, data)

			self._set_state(UpdateState.REPLACING)
			os.chmod(self.tmp_path, 0o755)
			self._replace()
		except UpdateError:
			self._set_state(UpdateState.FAILED)
			raise
		except OSError as e:
			self._set_state(UpdateState.FAILED)
			self.tmp_path.unlink(missing_ok=True)
			raise UpdateError(f"Update failed: {e}") from e

		self._set_state(UpdateState.DONE)
		logger.info("Updated %s from %s to %s", self.install_path, info.current, info.latest)

	async def _download(self, url: str) -> bytes:
		client = await self._ensure_client()
		try:
			resp = await client.get(url, headers=self._headers)
		except httpx.HTTPError as e:
			raise UpdateError(f"Download failed: {e}") from e
		if resp.status_code != 200:
			raise UpdateError(f"Download failed: HTTP {resp.status_code}")
		return resp.content

	async def _fetch_manifest(self, url: str) -> str | None:
		client = await self._ensure_client()
		try:
			resp = await client.get(url, headers=self._headers)
		except httpx.HTTPError as e:
			logger.info("Checksum manifest unreachable (%s); skipping verification", e)
			return None
		if resp.status_code != 200:
			logger.info("No checksum manifest (HTTP %d); skipping verification", resp.status_code)
			return None
		return resp.text

	async def _verify(self, info: UpdateInfo, data: bytes) -> None:
		manifest = await self._fetch_manifest(checksum_url(info.download_url))
		if manifest is None:
			return
		expected = find_checksum(manifest, info.asset)
		if expected is None:
			logger.info("No checksum entry for %s; skipping verification", info.asset)
			return
		actual = hashlib.sha256(data).hexdigest()
		if actual != expected:
			self.tmp_path.unlink(missing_ok=True)
			raise ChecksumMismatchError(f"Checksum mismatch: expected {expected}, got {actual}")

	def _replace(self) -> None:
		backup = self.backup_path
		had_binary = self.install_path.exists()

		if had_binary:
			try:
				os.replace(self.install_path, backup)
			except OSError as e:
				self.tmp_path.unlink(missing_ok=True)
				raise UpdateError(f"Failed to back up current binary: {e}") from e

		try:
			os.replace(self.tmp_path, self.install_path)
		except OSError as e:
			if had_binary and backup.exists():
				try:
					os.replace(backup, self.install_path)
				except OSError:
					logger.exception("Could not restore %s from %s", self.install_path, backup)
			self.tmp_path.unlink(missing_ok=True)
			raise UpdateError(f"Failed to install new binary: {e}") from e

		try:
			backup.unlink(missing_ok=True)
		except OSError as e:
			logger.warning("Could not remove backup %s: %s", backup, e)

	async def get_version_info(self) -> dict[str, Any]:
		"""Version summary for the dashboard. Never raises."""
		try:
			info = await self.check_for_update()
		except UpdateError as e:
			logger.info("Update check failed: %s", e)
			return {"current": self.current_version, "latest": None, "updateAvailable": False}
		if info is None:
			return {"current": self.current_version, "latest": self.current_version, "updateAvailable": False}
		return {"current": self.current_version, "latest": info.latest, "updateAvailable": True}
