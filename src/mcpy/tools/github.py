"""GitHub code search."""

from __future__ import annotations

from typing import Any

import httpx

from mcpy.constants import HTTP_TIMEOUT
from mcpy.dispatch import ToolContext
from mcpy.models import (
	GroupDescriptor,
	SettingsField,
	ToolDescriptor,
	ToolResult,
	error_result,
	text_result,
)

GROUP = GroupDescriptor(
	id="github",
	category="developer",
	label="GitHub",
	description="Search code across GitHub repositories. Token: github.com/settings/tokens (no scopes needed)",
	url="https://github.com/settings/tokens",
	requires_config=True,
	settings_fields=(
		SettingsField(
			key="apiKeys.github",
			label="Personal Access Token",
			type="password",
			placeholder="ghp_...",
			grid_span=2,
		),
	),
)


def _headers(context: ToolContext) -> dict[str, str]:
	headers = {
		"Accept": "application/vnd.github.v3.text-match+json",
		"User-Agent": "mcpy-github-tool",
	}
	token = context.settings.get("apiKeys", {}).get("github")
	if token:
		headers["Authorization"] = f"Bearer {token}"
	return headers


def format_search_results(data: dict[str, Any], page: int, per_page: int) -> str:
	lines = [
		f"Found {data.get('total_count', 0):,} results (showing page {page}, {per_page}/page)",
		"",
	]
	for item in data.get("items", []):
		lines.append(f"--- {item['repository']['full_name']}/{item['path']}")
		lines.append(f"    {item.get('html_url', '')}")
		for match in (item.get("text_matches") or [])[:2]:
			fragment = match.get("fragment", "").strip().replace("\n", "\n    ")
			lines.append(f"    {fragment}")
		lines.append("")
	return "\n".join(lines)


async def github_search(params: dict[str, Any], context: ToolContext) -> ToolResult:
	query = params["query"]
	per_page = int(params.get("per_page", 5))
	page = int(params.get("page", 1))

	async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
		resp = await client.get(
			"https://api.github.com/search/code",
			params={"q": query, "per_page": per_page, "page": page},
			headers=_headers(context),
		)
	if resp.status_code != 200:
		return error_result(f"GitHub API {resp.status_code}: {resp.text[:500]}")
	return text_result(format_search_results(resp.json(), page, per_page))


TOOLS = [
	ToolDescriptor(
		name="github_search",
		category="developer",
		group="github",
		title="GitHub Code Search",
		description=(
			"Search GitHub code. Returns matching file paths and code snippets. Supports "
			"qualifiers like `language:python`, `repo:owner/name`, `path:src/`, `extension:py`."
		),
		required_settings=("apiKeys.github",),
		input_schema={
			"type": "object",
			"properties": {
				"query": {"type": "string", "description": "Search query with optional GitHub qualifiers"},
				"per_page": {"type": "integer", "minimum": 1, "maximum": 30, "default": 5},
				"page": {"type": "integer", "minimum": 1, "default": 1},
			},
			"required": ["query"],
		},
		handler=github_search,
	),
]
