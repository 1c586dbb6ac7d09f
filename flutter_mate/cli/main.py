#!/usr/bin/env python3
"""Thin CLI for flutter-mate.

Every subcommand becomes one command for the session daemon. Commands are
validated locally before anything is sent, and the daemon is started on
demand (except for status/close/session, which only look at what exists).

Exit codes: 0 success, 1 the action failed, 2 invalid input, 3 the daemon
could not be reached or started.
"""

import argparse
import base64
import binascii
import json
import logging
import sys
from pathlib import Path
from typing import Any

from flutter_mate import __version__
from flutter_mate.config import load_config
from flutter_mate.daemon.client import run_command
from flutter_mate.daemon.lifecycle import stop_daemon
from flutter_mate.daemon.sessions import list_sessions, validate_session_name
from flutter_mate.exceptions import (
	DaemonNotRunningError,
	DaemonStartError,
	ProtocolError,
	TransportError,
)
from flutter_mate.logging_config import setup_logging
from flutter_mate.protocol.views import Response
from flutter_mate.snapshot.formatter import format_snapshot

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_UNREACHABLE = 3

# argparse dests that are CLI options, not command fields
GLOBAL_KEYS = {'session', 'json', 'timeout', 'version', 'command', 'action', 'session_command', 'output', 'all'}

# argparse dests that would clash with global options, mapped to their field names
WIRE_KEYS = {'command_key': 'command', 'wait_timeout': 'timeout'}

# Global options that consume the next argument
_GLOBAL_VALUE_OPTIONS = {'-s', '--session', '--timeout'}


def _json_object(value: str) -> dict[str, Any]:
	try:
		parsed = json.loads(value)
	except ValueError as e:
		raise argparse.ArgumentTypeError(f'not valid JSON: {e}') from e
	if not isinstance(parsed, dict):
		raise argparse.ArgumentTypeError('expected a JSON object')
	return parsed


def build_parser() -> argparse.ArgumentParser:
	"""Build argument parser with all commands."""
	parser = argparse.ArgumentParser(
		prog='flutter-mate',
		description='Drive a running Flutter app from the command line',
		formatter_class=argparse.RawDescriptionHelpFormatter,
		epilog="""
Examples:
  flutter-mate run -d macos              # Launch the app and connect
  flutter-mate connect ws://127.0.0.1:50000/abc=/ws
  flutter-mate snapshot
  flutter-mate tap w5
  flutter-mate fill w9 "hello@example.com"
  flutter-mate wait-for "Welcome"
  flutter-mate -s other status
  flutter-mate close
""",
	)

	# Global flags
	parser.add_argument('--session', '-s', default=None, help='Session name (default: FLUTTER_MATE_SESSION or "default")')
	parser.add_argument('--json', action='store_true', help='Output the raw response as JSON')
	parser.add_argument('--timeout', type=float, help='Seconds to wait for a response')
	parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

	subparsers = parser.add_subparsers(dest='command', help='Command to execute')

	def add(name: str, action: str, help: str) -> argparse.ArgumentParser:
		p = subparsers.add_parser(name, help=help)
		p.set_defaults(action=action)
		return p

	# -------------------------------------------------------------------------
	# Connection
	# -------------------------------------------------------------------------

	p = add('connect', 'connect', 'Connect to a running app by VM Service URI')
	p.add_argument('uri', help='VM Service URI (http or ws)')

	# arguments after `run` are split off by parse_cli and passed to flutter untouched
	p = add('run', 'run', 'Launch the app with `flutter run` and connect')
	p.set_defaults(args=[])

	p = add('close', 'close', 'Disconnect and stop the session daemon')
	p.add_argument('--all', action='store_true', help='Close every running session')

	add('status', 'status', 'Show the session status')

	# -------------------------------------------------------------------------
	# Introspection
	# -------------------------------------------------------------------------

	p = add('snapshot', 'snapshot', 'Show the UI tree with element refs')
	p.add_argument('--all', dest='interactive', action='store_false', help='Include non-interactive elements')
	p.add_argument('--compact', '-c', action='store_true', help='Collapse layout-only wrappers')
	p.add_argument('--depth', '-d', dest='maxDepth', type=int, help='Maximum tree depth')
	p.add_argument('--from', dest='selector', help='Scope to the subtree under this ref')

	p = add('find', 'find', 'Show details for one element')
	p.add_argument('ref', help='Element ref')

	p = add('screenshot', 'screenshot', 'Capture a PNG screenshot')
	p.add_argument('output', nargs='?', help='Save path (prints base64 size if not provided)')
	p.add_argument('--ref', dest='selector', help='Capture only this element')
	p.add_argument('--full', dest='fullPage', action='store_true', help='Capture the entire scrollable area')

	p = add('get-text', 'getText', 'Get the text of an element')
	p.add_argument('ref', help='Element ref')

	p = add('is-visible', 'isVisible', 'Check whether an element is visible')
	p.add_argument('ref', help='Element ref')

	p = add('is-enabled', 'isEnabled', 'Check whether an element is enabled')
	p.add_argument('ref', help='Element ref')

	# -------------------------------------------------------------------------
	# Gestures
	# -------------------------------------------------------------------------

	p = add('tap', 'tap', 'Tap an element')
	p.add_argument('ref', help='Element ref')

	p = add('tap-at', 'tapAt', 'Tap at screen coordinates')
	p.add_argument('x', type=float, help='X coordinate')
	p.add_argument('y', type=float, help='Y coordinate')

	p = add('double-tap', 'doubleTap', 'Double-tap an element')
	p.add_argument('ref', help='Element ref')

	p = add('long-press', 'longPress', 'Long-press an element')
	p.add_argument('ref', help='Element ref')
	p.add_argument('--duration', dest='durationMs', type=int, help='Press duration in ms')

	p = add('hover', 'hover', 'Hover over an element')
	p.add_argument('ref', help='Element ref')

	p = add('drag', 'drag', 'Drag one element onto another')
	p.add_argument('from', help='Ref to drag from')
	p.add_argument('to', help='Ref to drop onto')

	p = add('swipe', 'swipe', 'Swipe across the screen')
	p.add_argument('direction', choices=['up', 'down', 'left', 'right'], help='Swipe direction')
	p.add_argument('--start-x', dest='startX', type=float, help='Start X')
	p.add_argument('--start-y', dest='startY', type=float, help='Start Y')
	p.add_argument('--distance', type=float, help='Distance in pixels')
	p.add_argument('--duration', dest='durationMs', type=int, help='Duration in ms')

	p = add('scroll', 'scroll', 'Scroll an element')
	p.add_argument('ref', help='Element ref')
	p.add_argument('direction', nargs='?', default='down', choices=['up', 'down', 'left', 'right'], help='Scroll direction')
	p.add_argument('--amount', type=float, help='Scroll amount in pixels')

	# -------------------------------------------------------------------------
	# Text and keyboard
	# -------------------------------------------------------------------------

	p = add('fill', 'fill', 'Replace the text of a field')
	p.add_argument('ref', help='Element ref')
	p.add_argument('text', help='Text to enter')

	p = add('type', 'typeText', 'Type text character by character')
	p.add_argument('ref', help='Element ref')
	p.add_argument('text', help='Text to type')
	p.add_argument('--delay', dest='delayMs', type=int, help='Delay between characters in ms')

	p = add('clear', 'clear', 'Clear a text field')
	p.add_argument('ref', help='Element ref')

	p = add('press', 'pressKey', 'Press and release a key')
	p.add_argument('key', help='Key name (e.g. enter, tab, escape)')

	for name, action, verb in (('key-down', 'keyDown', 'Press'), ('key-up', 'keyUp', 'Release')):
		p = add(name, action, f'{verb} a key')
		p.add_argument('key', help='Key name')
		p.add_argument('--control', action='store_true', help='Control modifier')
		p.add_argument('--shift', action='store_true', help='Shift modifier')
		p.add_argument('--alt', action='store_true', help='Alt modifier')
		p.add_argument('--command', dest='command_key', action='store_true', help='Command/Meta modifier')

	# -------------------------------------------------------------------------
	# Forms and navigation
	# -------------------------------------------------------------------------

	p = add('focus', 'focus', 'Focus an element')
	p.add_argument('ref', help='Element ref')

	p = add('toggle', 'toggle', 'Toggle a checkbox or switch')
	p.add_argument('ref', help='Element ref')
	group = p.add_mutually_exclusive_group()
	group.add_argument('--on', dest='value', action='store_const', const=True, help='Set checked')
	group.add_argument('--off', dest='value', action='store_const', const=False, help='Set unchecked')

	p = add('select', 'select', 'Select a dropdown option')
	p.add_argument('ref', help='Element ref')
	p.add_argument('value', help='Value or label to select')

	p = add('navigate', 'navigate', 'Push a named route')
	p.add_argument('route', help='Route name')
	p.add_argument('--arguments', type=_json_object, help='Route arguments as a JSON object')

	add('back', 'back', 'Pop the current route')

	# -------------------------------------------------------------------------
	# Waiting
	# -------------------------------------------------------------------------

	p = add('wait', 'wait', 'Wait a fixed time, or for an element state')
	p.add_argument('milliseconds', type=int, nargs='?', help='Duration (or timeout with --for) in ms')
	p.add_argument('--for', dest='for', help='Element ref to wait for')
	p.add_argument('--state', choices=['visible', 'hidden', 'enabled', 'disabled'], help='State to wait for')

	for name, action, help in (
		('wait-for', 'waitFor', 'Wait for an element whose text matches a pattern'),
		('wait-for-disappear', 'waitForDisappear', 'Wait until no element matches a pattern'),
	):
		p = add(name, action, help)
		p.add_argument('pattern', help='Case-insensitive regex')
		p.add_argument('--wait-timeout', dest='wait_timeout', type=int, help='Timeout in ms (default: 5000)')
		p.add_argument('--poll', type=int, help='Poll interval in ms (default: 200)')

	p = add('wait-for-value', 'waitForValue', 'Wait until a field value matches a pattern')
	p.add_argument('ref', help='Element ref')
	p.add_argument('pattern', help='Case-insensitive regex')
	p.add_argument('--wait-timeout', dest='wait_timeout', type=int, help='Timeout in ms (default: 5000)')
	p.add_argument('--poll', type=int, help='Poll interval in ms (default: 200)')

	# -------------------------------------------------------------------------
	# Sessions and integrations
	# -------------------------------------------------------------------------

	session_p = subparsers.add_parser('session', help='Session management')
	session_sub = session_p.add_subparsers(dest='session_command')
	session_sub.add_parser('list', help='List sessions with a running daemon')

	subparsers.add_parser('mcp', help='Run as MCP server (JSON-RPC via stdin/stdout)')

	return parser


def split_passthrough(argv: list[str]) -> tuple[list[str], list[str]]:
	"""Split off the arguments after a `run` subcommand; they belong to `flutter run`."""
	i = 0
	while i < len(argv):
		arg = argv[i]
		if arg in _GLOBAL_VALUE_OPTIONS:
			i += 2
		elif arg.startswith('-'):
			i += 1
		elif arg == 'run':
			return argv[: i + 1], argv[i + 1 :]
		else:
			break
	return argv, []


def parse_cli(argv: list[str] | None = None) -> tuple[argparse.ArgumentParser, argparse.Namespace]:
	parser = build_parser()
	head, passthrough = split_passthrough(list(sys.argv[1:] if argv is None else argv))
	args = parser.parse_args(head)
	if args.command == 'run':
		args.args = passthrough
	return parser, args


def payload_from_args(args: argparse.Namespace) -> dict[str, Any]:
	"""Turn parsed CLI args into a wire payload for `parse`."""
	payload: dict[str, Any] = {'action': args.action}
	for key, value in vars(args).items():
		if key in GLOBAL_KEYS or value is None:
			continue
		key = WIRE_KEYS.get(key, key)
		payload[key] = value
	return payload


# =============================================================================
# Output
# =============================================================================


def _print_data(action: str, data: Any) -> None:
	if data is None:
		print('OK')
		return
	if action == 'snapshot' and isinstance(data, dict) and isinstance(data.get('nodes'), list):
		lines = format_snapshot(data)
		print('\n'.join(lines) if lines else '(empty)')
		return
	if isinstance(data, dict):
		for key, value in data.items():
			if key.startswith('_'):
				continue
			if key == 'image' and len(str(value)) > 100:
				print(f'{key}: <{len(value)} bytes>')
			else:
				print(f'{key}: {value}')
		return
	print(data)


def _save_screenshot(data: Any, output: str) -> str | None:
	"""Write the decoded PNG; returns an error message on failure."""
	image = data.get('image') if isinstance(data, dict) else None
	if not image:
		return 'screenshot returned no image data'
	try:
		Path(output).write_bytes(base64.b64decode(image))
	except (binascii.Error, OSError) as e:
		return f'could not save screenshot: {e}'
	return None


def print_response(args: argparse.Namespace, response: Response) -> int:
	if args.json:
		print(json.dumps(response.to_dict()))
		return EXIT_OK if response.success else EXIT_FAILED

	if not response.success:
		print(f'Error: {response.error}', file=sys.stderr)
		return EXIT_FAILED

	output = getattr(args, 'output', None)
	if args.action == 'screenshot' and output:
		error = _save_screenshot(response.data, output)
		if error:
			print(f'Error: {error}', file=sys.stderr)
			return EXIT_FAILED
		print(f'Screenshot saved to {output}')
		return EXIT_OK

	_print_data(args.action, response.data)
	return EXIT_OK


# =============================================================================
# Commands that never start a daemon
# =============================================================================


def handle_session_list(args: argparse.Namespace) -> int:
	session_names = list_sessions()
	sessions = [{'name': name, 'status': 'running'} for name in session_names]

	if args.json:
		print(json.dumps(sessions))
	elif sessions:
		for s in sessions:
			print(f'  {s["name"]}: {s["status"]}')
	else:
		print('No active sessions')
	return EXIT_OK


def handle_close_all(args: argparse.Namespace) -> int:
	closed = [name for name in list_sessions() if stop_daemon(name)]

	if args.json:
		print(json.dumps({'closed': closed, 'count': len(closed)}))
	elif closed:
		print(f'Closed {len(closed)} session(s): {", ".join(closed)}')
	else:
		print('No active sessions')
	return EXIT_OK


def handle_not_running(args: argparse.Namespace, session: str) -> int:
	"""status/close against a session without a daemon is not an error."""
	if args.json:
		data = {'session': session, 'running': False}
		print(json.dumps(Response.ok('', data).to_dict()))
	else:
		print(f'No daemon running for session {session}')
	return EXIT_OK


# =============================================================================
# Entry point
# =============================================================================


def main(argv: list[str] | None = None) -> int:
	"""Main entry point."""
	parser, args = parse_cli(argv)

	if not args.command:
		parser.print_help()
		return EXIT_OK

	if args.command == 'mcp':
		from flutter_mate.mcp.server import main as mcp_main

		return mcp_main()

	setup_logging('warning')
	session = args.session or load_config().session
	try:
		validate_session_name(session)
	except ValueError as e:
		print(f'Error: {e}', file=sys.stderr)
		return EXIT_INVALID

	if args.command == 'session':
		if args.session_command == 'list':
			return handle_session_list(args)
		print('Error: missing session command (list)', file=sys.stderr)
		return EXIT_INVALID

	if args.command == 'close' and args.all:
		return handle_close_all(args)

	payload = payload_from_args(args)
	try:
		response = run_command(session, payload, timeout=args.timeout)
	except ProtocolError as e:
		print(f'Error: {e}', file=sys.stderr)
		return EXIT_INVALID
	except DaemonNotRunningError as e:
		if args.action in ('status', 'close'):
			return handle_not_running(args, session)
		print(f'Error: {e}', file=sys.stderr)
		return EXIT_UNREACHABLE
	except (TransportError, DaemonStartError) as e:
		print(f'Error: {e}', file=sys.stderr)
		return EXIT_UNREACHABLE

	return print_response(args, response)


if __name__ == '__main__':
	sys.exit(main())
