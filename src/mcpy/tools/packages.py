"""Package registry lookups (PyPI and npm)."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

import httpx

from mcpy.constants import HTTP_TIMEOUT
from mcpy.dispatch import ToolContext
from mcpy.models import GroupDescriptor, ToolDescriptor, ToolResult, error_result, text_result

GROUP = GroupDescriptor(
	id="packages",
	category="developer",
	label="Packages",
	description="Inspect Python and npm packages from their public registries",
	url="https://pypi.org/",
)

_MAX_DEPS = 20
_DEP_NAME_RE = re.compile(r"[;<>=!\[\s~(]")


def _summarize_deps(names: list[str]) -> str:
	unique = list(dict.fromkeys(n for n in names if n))
	shown = ", ".join(unique[:_MAX_DEPS])
	if len(unique) > _MAX_DEPS:
		shown += f" ... and {len(unique) - _MAX_DEPS} more"
	return f"Dependencies ({len(unique)}): {shown}"


def format_pypi_info(info: dict[str, Any]) -> str:
	lines = [f"# {info.get('name')}@{info.get('version')}", ""]
	if info.get("summary"):
		lines += [info["summary"], ""]
	lines += [
		f"Author: {info.get('author') or info.get('author_email') or 'unknown'}",
		f"License: {info.get('license') or 'unknown'}",
		f"Python requires: {info.get('requires_python') or 'any'}",
	]
	if info.get("home_page"):
		lines.append(f"Homepage: {info['home_page']}")

	requires = info.get("requires_dist") or []
	if requires:
		lines += ["", _summarize_deps([_DEP_NAME_RE.split(d, 1)[0].strip() for d in requires])]

	project_urls = info.get("project_urls") or {}
	if project_urls:
		lines += ["", "Links:"]
		for label, url in list(project_urls.items())[:5]:
			lines.append(f"  {label}: {url}")
	return "\n".join(lines)


def format_npm_info(data: dict[str, Any]) -> str:
	lines = [f"# {data.get('name')}@{data.get('version')}", ""]
	if data.get("description"):
		lines += [data["description"], ""]
	license_ = data.get("license")
	if isinstance(license_, dict):
		license_ = license_.get("type")
	lines.append(f"License: {license_ or 'unknown'}")
	if data.get("homepage"):
		lines.append(f"Homepage: {data['homepage']}")
	deps = data.get("dependencies") or {}
	if deps:
		lines += ["", _summarize_deps(list(deps))]
	return "\n".join(lines)


async def pypi_info(params: dict[str, Any], context: ToolContext) -> ToolResult:
	name = params["package_name"]
	version = params.get("version")
	url = f"https://pypi.org/pypi/{quote(name)}"
	if version:
		url += f"/{quote(version)}"
	url += "/json"

	async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True) as client:
		resp = await client.get(url)
	if resp.status_code != 200:
		return error_result(f'Package "{name}" not found (HTTP {resp.status_code})')
	return text_result(format_pypi_info(resp.json().get("info", {})))


async def npm_info(params: dict[str, Any], context: ToolContext) -> ToolResult:
	name = params["package_name"]
	version = params.get("version") or "latest"
	url = f"https://registry.npmjs.org/{quote(name, safe='@')}/{quote(version)}"

	async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True) as client:
		resp = await client.get(url)
	if resp.status_code != 200:
		return error_result(f'Package "{name}" not found (HTTP {resp.status_code})')
	return text_result(format_npm_info(resp.json()))


_PACKAGE_SCHEMA = {
	"type": "object",
	"properties": {
		"package_name": {"type": "string", "description": "Package name"},
		"version": {"type": "string", "description": "Specific version to look up (default: latest)"},
	},
	"required": ["package_name"],
}

TOOLS = [
	ToolDescriptor(
		name="pypi_info",
		category="developer",
		group="packages",
		title="PyPI Package Info",
		description=(
			"Look up Python package information from PyPI including version, "
			"description, dependencies, license, and author."
		),
		input_schema=_PACKAGE_SCHEMA,
		handler=pypi_info,
	),
	ToolDescriptor(
		name="npm_info",
		category="developer",
		group="packages",
		title="npm Package Info",
		description="Look up version, description, dependencies, and license of an npm package.",
		input_schema=_PACKAGE_SCHEMA,
		handler=npm_info,
	),
]
