"""mcpy -- a local tool server for AI assistants with a management dashboard."""

__version__ = "0.3.1"
