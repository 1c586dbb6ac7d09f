"""Command-line interface for flutter-mate."""

__all__ = ['main']


def __getattr__(name: str):
	"""Lazy import to avoid runpy warnings when running as module."""
	if name == 'main':
		from flutter_mate.cli.main import main

		return main
	raise AttributeError(f'module {__name__!r} has no attribute {name!r}')
