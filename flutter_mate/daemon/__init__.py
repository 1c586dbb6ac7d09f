"""Session daemons: registry, transport, lifecycle and the daemon process itself.

The daemon entry point lives in `flutter_mate.daemon.server`; it is only
imported lazily here so `python -m flutter_mate.daemon.server` runs cleanly.
"""

__all__ = ['DaemonResult', 'DaemonServer', 'ensure_daemon', 'list_sessions', 'run_command', 'send_command', 'stop_daemon']


def __getattr__(name: str):
	"""Lazy import to avoid runpy warnings when running as module."""
	if name in ('DaemonResult', 'ensure_daemon', 'stop_daemon'):
		from flutter_mate.daemon import lifecycle

		return getattr(lifecycle, name)
	if name in ('run_command', 'send_command'):
		from flutter_mate.daemon import client

		return getattr(client, name)
	if name == 'list_sessions':
		from flutter_mate.daemon.sessions import list_sessions

		return list_sessions
	if name == 'DaemonServer':
		from flutter_mate.daemon.server import DaemonServer

		return DaemonServer
	raise AttributeError(f'module {__name__!r} has no attribute {name!r}')
