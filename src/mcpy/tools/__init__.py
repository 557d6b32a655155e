"""Built-in tool catalog."""

from __future__ import annotations

from mcpy.catalog import Catalog
from mcpy.tools import github, packages, server, web

GROUPS = [
	server.GROUP,
	packages.GROUP,
	web.FETCH_GROUP,
	github.GROUP,
	web.PERPLEXITY_GROUP,
]

TOOLS = [
	*server.TOOLS,
	*packages.TOOLS,
	*web.TOOLS,
	*github.TOOLS,
]


def build_catalog() -> Catalog:
	return Catalog(GROUPS, TOOLS)
