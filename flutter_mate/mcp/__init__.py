"""Tool surface for agent hosts that speak MCP."""

__all__ = ['main']


def __getattr__(name: str):
	"""Lazy import to avoid runpy warnings when running as module."""
	if name == 'main':
		from flutter_mate.mcp.server import main

		return main
	raise AttributeError(f'module {__name__!r} has no attribute {name!r}')
