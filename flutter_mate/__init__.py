"""flutter-mate: drive a running Flutter app from agents and the shell.

A per-session background daemon holds the VM Service connection to the app;
the CLI and the MCP server send it one validated command at a time.

Usage:
    flutter-mate run -d macos
    flutter-mate snapshot
    flutter-mate tap w5
    flutter-mate fill w9 "hello"
    flutter-mate close
"""

__version__ = '0.1.0'

__all__ = [
	'__version__',
	# Protocol
	'parse',
	'Request',
	'Response',
	'tool_definitions',
	# Clients
	'ensure_daemon',
	'run_command',
	# Errors
	'FlutterMateError',
	'ProtocolError',
	'TransportError',
	'DaemonStartError',
]

_LAZY = {
	'parse': 'flutter_mate.protocol.service',
	'tool_definitions': 'flutter_mate.protocol.service',
	'Request': 'flutter_mate.protocol.views',
	'Response': 'flutter_mate.protocol.views',
	'ensure_daemon': 'flutter_mate.daemon.lifecycle',
	'run_command': 'flutter_mate.daemon.client',
	'FlutterMateError': 'flutter_mate.exceptions',
	'ProtocolError': 'flutter_mate.exceptions',
	'TransportError': 'flutter_mate.exceptions',
	'DaemonStartError': 'flutter_mate.exceptions',
}


def __getattr__(name: str):
	"""Lazy import so `python -m flutter_mate.daemon.server` stays light."""
	module_name = _LAZY.get(name)
	if module_name is None:
		raise AttributeError(f'module {__name__!r} has no attribute {name!r}')
	import importlib

	return getattr(importlib.import_module(module_name), name)
