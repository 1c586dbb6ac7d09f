"""Validate-then-send helpers shared by the CLI and the MCP server."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from flutter_mate.config import load_config
from flutter_mate.daemon.lifecycle import ensure_daemon
from flutter_mate.daemon.transport import exchange
from flutter_mate.exceptions import ProtocolError
from flutter_mate.protocol.service import command_to_dict, generate_request_id, parse
from flutter_mate.protocol.views import BaseCommand, Request, Response

logger = logging.getLogger(__name__)

# Headroom so the daemon reports its own timeout before the client gives up
_CLIENT_GRACE = 5.0

# Actions that only make sense against a daemon that already exists
NO_AUTOSTART_ACTIONS = frozenset({'status', 'close'})


def build_command(payload: Mapping[str, Any] | str | bytes) -> BaseCommand:
	"""Validate a payload into a command, raising ProtocolError on any problem."""
	result = parse(payload)
	if not result.is_valid:
		raise ProtocolError(result)
	assert result.command is not None
	return result.command


def build_request(command: BaseCommand, request_id: str | None = None) -> Request:
	args = command_to_dict(command)
	action = args.pop('action')
	return Request(id=request_id or generate_request_id(), action=action, args=args)


def send_command(
	session: str,
	command: BaseCommand,
	timeout: float | None = None,
	connect_timeout: float | None = None,
) -> Response:
	"""Send an already validated command to a running daemon.

	A `ResponseTimeoutError` only means the reply did not arrive in time;
	the daemon keeps running the command and its effects may still land.
	"""
	config = load_config()
	if timeout is None:
		timeout = config.command_timeout + command.time_budget() + _CLIENT_GRACE
	request = build_request(command)
	logger.debug(f'Sending {request.action} (id={request.id}) to session {session}')
	return exchange(session, request, timeout=timeout, connect_timeout=connect_timeout or config.connect_timeout)


def run_command(
	session: str,
	payload: Mapping[str, Any] | BaseCommand,
	timeout: float | None = None,
	autostart: bool | None = None,
) -> Response:
	"""Validate, make sure the daemon is up (unless told not to), and send.

	Invalid payloads raise ProtocolError before anything touches the network.
	"""
	command = payload if isinstance(payload, BaseCommand) else build_command(payload)
	if autostart is None:
		autostart = command.action_name() not in NO_AUTOSTART_ACTIONS
	if autostart:
		ensure_daemon(session)
	return send_command(session, command, timeout=timeout)


async def arun_command(
	session: str,
	payload: Mapping[str, Any] | BaseCommand,
	timeout: float | None = None,
	autostart: bool | None = None,
) -> Response:
	"""`run_command` for async callers; the blocking socket work runs in a thread."""
	return await asyncio.to_thread(run_command, session, payload, timeout, autostart)
