"""Web tools: page fetching, HTTP header inspection and Perplexity-backed search."""

from __future__ import annotations

from typing import Any

import httpx
from bs4 import BeautifulSoup

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

FETCH_GROUP = GroupDescriptor(
	id="fetch",
	category="web",
	label="Fetch",
	description="Inspect web pages and HTTP responses",
)

PERPLEXITY_GROUP = GroupDescriptor(
	id="perplexity",
	category="web",
	label="Perplexity",
	description="AI-powered web search with citations",
	url="https://docs.perplexity.ai/",
	remote=True,
	requires_config=True,
	enabled_by_default=False,
	settings_fields=(
		SettingsField(
			key="apiKeys.perplexity",
			label="API Key",
			type="password",
			placeholder="pplx-...",
			grid_span=2,
		),
	),
)

_USER_AGENT = "Mozilla/5.0 (compatible; mcpy; +https://github.com/ebursztein/mcpy)"
_MAX_REDIRECTS = 10
_FETCH_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
_FETCH_MAX_LENGTH = 5000
_PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
_SCHOLAR_DOMAINS = ["scholar.google.com", "arxiv.org", "pubmed.ncbi.nlm.nih.gov"]


async def http_headers(params: dict[str, Any], context: ToolContext) -> ToolResult:
	url = params["url"]
	method = params.get("method", "HEAD")
	redirects: list[str] = []
	current = httpx.URL(url)

	async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=False) as client:
		for _ in range(_MAX_REDIRECTS):
			resp = await client.request(method, current, headers={"User-Agent": _USER_AGENT})
			location = resp.headers.get("location")
			if resp.is_redirect and location:
				redirects.append(f"{resp.status_code} -> {location}")
				current = current.join(location)
				continue
			break
		else:
			return error_result(f"Too many redirects (>{_MAX_REDIRECTS})")

	lines = [
		f"URL: {url}",
		f"Final URL: {current}",
		f"Status: {resp.status_code} {resp.reason_phrase}",
	]
	if redirects:
		lines += ["", "Redirect chain:", *(f"  {r}" for r in redirects)]
	lines += ["", "Headers:"]
	for key, value in sorted(resp.headers.items()):
		lines.append(f"  {key}: {value}")
	return text_result("\n".join(lines))


def _page_text(html: str) -> tuple[str | None, str]:
	"""Title and readable text of an HTML page, without scripts or page chrome."""
	soup = BeautifulSoup(html, "lxml")
	title = soup.title.get_text(strip=True) if soup.title else None

	for tag in soup(["script", "style", "noscript", "template", "nav", "footer", "header", "aside"]):
		tag.decompose()

	root = soup.find("article") or soup.find("main") or soup.find("body") or soup
	return title, root.get_text(separator="\n", strip=True)


def _page_window(text: str, start: int, length: int) -> tuple[str, list[str]]:
	chunk = text[start:start + length]
	end = start + length
	lines = [
		f"Total length: {len(text)} chars",
		f"Showing: {start}-{start + len(chunk)}",
		f"Has more: true (use start_index={end} to continue)" if end < len(text) else "Has more: false",
	]
	return chunk, lines


async def web_fetch(params: dict[str, Any], context: ToolContext) -> ToolResult:
	url = params["url"]
	mode = params.get("mode", "content")
	start = max(0, int(params.get("start_index", 0)))
	length = max(1, int(params.get("max_length", _FETCH_MAX_LENGTH)))
	if mode not in ("content", "raw_html"):
		return error_result(f"Unknown mode: {mode}")

	async with httpx.AsyncClient(
		timeout=HTTP_TIMEOUT, follow_redirects=True, max_redirects=_MAX_REDIRECTS,
	) as client:
		resp = await client.get(url, headers={"User-Agent": _USER_AGENT, "Accept": _FETCH_ACCEPT})
	if not resp.is_success:
		return error_result(f"HTTP {resp.status_code}: {resp.reason_phrase}")

	meta = [f"URL: {url}"]
	if mode == "raw_html":
		text = resp.text
	else:
		title, text = _page_text(resp.text)
		meta.append(f"Title: {title or 'unknown'}")
		if not text:
			text = "No content extracted"

	chunk, window = _page_window(text, start, length)
	return text_result("\n".join([*meta, *window, "---", chunk]))


async def web_search(params: dict[str, Any], context: ToolContext) -> ToolResult:
	query = params["query"]
	focus = params.get("focus", "internet")
	api_key = context.settings.get("apiKeys", {}).get("perplexity")

	body: dict[str, Any] = {
		"model": "sonar-pro" if focus == "scholar" else "sonar",
		"messages": [{"role": "user", "content": query}],
	}
	if focus == "scholar":
		body["search_domain_filter"] = _SCHOLAR_DOMAINS

	async with httpx.AsyncClient(timeout=60.0) as client:
		resp = await client.post(
			_PERPLEXITY_URL,
			json=body,
			headers={"Authorization": f"Bearer {api_key}"},
		)
	if resp.status_code != 200:
		return error_result(f"Perplexity API error {resp.status_code}: {resp.text[:500]}")

	data = resp.json()
	answer = data["choices"][0]["message"]["content"]
	citations = data.get("citations") or []
	lines = [answer]
	if citations:
		lines += ["", "Sources:", *(f"[{i}] {c}" for i, c in enumerate(citations, 1))]
	return text_result("\n".join(lines))


TOOLS = [
	ToolDescriptor(
		name="web_fetch",
		category="web",
		group="fetch",
		title="Web Fetch",
		description=(
			'Fetch a webpage and extract its content. Use mode "content" for clean readable text (default) '
			'or "raw_html" for raw HTML. Supports pagination with start_index/max_length to avoid '
			"returning too much content at once."
		),
		input_schema={
			"type": "object",
			"properties": {
				"url": {"type": "string", "format": "uri", "description": "URL to fetch"},
				"mode": {
					"type": "string",
					"enum": ["content", "raw_html"],
					"default": "content",
					"description": 'Extraction mode: "content" (clean text) or "raw_html"',
				},
				"start_index": {
					"type": "integer",
					"minimum": 0,
					"default": 0,
					"description": "Character offset to start from (for pagination)",
				},
				"max_length": {
					"type": "integer",
					"minimum": 1,
					"default": _FETCH_MAX_LENGTH,
					"description": "Maximum characters to return",
				},
			},
			"required": ["url"],
		},
		handler=web_fetch,
	),
	ToolDescriptor(
		name="http_headers",
		category="web",
		group="fetch",
		title="HTTP Headers",
		description=(
			"Inspect HTTP response headers from a URL. Useful for checking content types, "
			"caching, security headers, redirects, and server info."
		),
		input_schema={
			"type": "object",
			"properties": {
				"url": {"type": "string", "format": "uri", "description": "URL to inspect"},
				"method": {
					"type": "string",
					"enum": ["HEAD", "GET"],
					"default": "HEAD",
					"description": "HTTP method (HEAD is faster, GET for full response headers)",
				},
			},
			"required": ["url"],
		},
		handler=http_headers,
	),
	ToolDescriptor(
		name="web_search",
		category="web",
		group="perplexity",
		title="Web Search",
		description=(
			"Search the web using Perplexity AI. Returns an AI-generated answer with citations. "
			"Requires a Perplexity API key."
		),
		required_settings=("apiKeys.perplexity",),
		remote=True,
		input_schema={
			"type": "object",
			"properties": {
				"query": {"type": "string", "description": "Search query"},
				"focus": {
					"type": "string",
					"enum": ["internet", "scholar", "news", "writing"],
					"default": "internet",
					"description": "Search focus area",
				},
			},
			"required": ["query"],
		},
		handler=web_search,
	),
]
