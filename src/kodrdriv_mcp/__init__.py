"""MCP server wrapping kodrdriv commands with live progress reporting."""

__version__ = "0.1.0"
