"""Session daemon - keeps the VM Service connection to a Flutter app alive.

The daemon runs as a detached background process, one per session. It accepts
connections on a Unix socket (TCP on Windows); each connection carries exactly
one request line and gets exactly one response line back.

Run with: python -m flutter_mate.daemon.server --session NAME
"""

import argparse
import asyncio
import logging
import os
import signal
import socket
import sys
from collections.abc import Callable
from typing import Any

from flutter_mate.config import load_config
from flutter_mate.daemon.executor import CommandExecutor
from flutter_mate.daemon.sessions import cleanup, ensure_app_dir, paths_for, validate_session_name
from flutter_mate.daemon.state import SessionState
from flutter_mate.daemon.vm_service import VmServiceClient
from flutter_mate.exceptions import EndpointInUseError, FlutterMateError
from flutter_mate.logging_config import setup_logging
from flutter_mate.protocol.service import parse
from flutter_mate.protocol.views import BaseCommand, CloseCommand, ConnectCommand, Response, RunCommand, StatusCommand

try:
	import fcntl
except ImportError:  # Windows
	fcntl = None

logger = logging.getLogger(__name__)

# Upper bound for one request line (fill text can be long)
READ_LIMIT = 16 * 1024 * 1024


class DaemonServer:
	"""Accept loop plus dispatch for a single session."""

	def __init__(
		self,
		session: str,
		command_timeout: float | None = None,
		client_factory: Callable[[str], VmServiceClient] = VmServiceClient,
		install_signal_handlers: bool = True,
	) -> None:
		self.session = validate_session_name(session)
		self.paths = paths_for(session)
		self.command_timeout = command_timeout or load_config().command_timeout
		self.state = SessionState(session, client_factory=client_factory)
		self.install_signal_handlers = install_signal_handlers

		self._upstream_lock = asyncio.Lock()
		self._server: asyncio.Server | None = None
		self._shutdown_event = asyncio.Event()
		self._ready_event = asyncio.Event()
		self._close_requested = False
		self._lock_fd: int | None = None

	@property
	def ready(self) -> asyncio.Event:
		"""Set once the endpoint is bound and the pid file is written."""
		return self._ready_event

	# ── Connections ──────────────────────────────────────────────────────────

	async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
		"""Serve one request/response exchange, then close."""
		try:
			try:
				line = await asyncio.wait_for(reader.readline(), timeout=self.command_timeout)
			except TimeoutError:
				logger.debug('Connection timed out before sending a request')
				return
			except ValueError:
				response = Response.fail('', f'request exceeds {READ_LIMIT} bytes')
			else:
				if not line:
					return
				response = await self.process_line(line)

			writer.write((response.to_json() + '\n').encode())
			await writer.drain()
		except ConnectionError as e:
			logger.debug(f'Client went away: {e}')
		except Exception as e:
			logger.exception(f'Connection error: {e}')
		finally:
			writer.close()
			try:
				await writer.wait_closed()
			except Exception:
				pass

		if self._close_requested:
			self.request_shutdown()

	async def process_line(self, line: bytes | str) -> Response:
		"""Decode, dispatch and wrap the outcome. Never raises."""
		result = parse(line)
		if not result.is_valid:
			logger.info(f'Rejected request (id={result.id}): {result.error}')
			return Response.fail(result.id or '', result.error or 'invalid request')

		command = result.command
		assert command is not None
		request_id = result.id or ''
		action = command.action_name()
		logger.info(f'Dispatch: {action} (id={request_id})')

		timeout = self.command_timeout + command.time_budget()
		try:
			data = await asyncio.wait_for(self.dispatch(command), timeout=timeout)
		except TimeoutError:
			logger.warning(f'{action} timed out after {timeout:g}s')
			return Response.fail(request_id, f'{action} timed out after {timeout:g}s')
		except FlutterMateError as e:
			logger.info(f'{action} failed: {e}')
			return Response.fail(request_id, str(e))
		except Exception as e:
			logger.exception(f'Error dispatching {action}: {e}')
			return Response.fail(request_id, f'{action} failed: {e}')

		return Response.ok(request_id, data)

	async def dispatch(self, command: BaseCommand) -> Any:
		match command:
			case StatusCommand():
				return self.state.status()
			case CloseCommand():
				self._close_requested = True
				return {'closed': True}
			case ConnectCommand(uri=uri):
				async with self._upstream_lock:
					return await self.state.connect(uri)
			case RunCommand(args=args):
				async with self._upstream_lock:
					return await self.state.launch(args)
			case _:
				# fail fast without queueing behind the lock
				self.state.require_client()
				async with self._upstream_lock:
					client = self.state.require_client()
					return await CommandExecutor(client).execute(command)

	# ── Lifecycle ────────────────────────────────────────────────────────────

	def request_shutdown(self) -> None:
		if not self._shutdown_event.is_set():
			logger.info('Shutdown requested')
			self._shutdown_event.set()

	def _acquire_lock(self) -> None:
		if fcntl is None:
			return
		fd = os.open(self.paths.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
		try:
			fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
		except OSError:
			os.close(fd)
			raise EndpointInUseError(self.session)
		self._lock_fd = fd

	def _release_lock(self) -> None:
		if self._lock_fd is not None:
			os.close(self._lock_fd)
			self._lock_fd = None

	def _remove_stale_socket(self) -> None:
		sock_path = self.paths.socket_path
		if sock_path is None or not sock_path.exists():
			return

		check = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
		check.settimeout(0.2)
		try:
			check.connect(str(sock_path))
		except OSError:
			logger.info(f'Removing stale socket {sock_path}')
			sock_path.unlink(missing_ok=True)
		else:
			raise EndpointInUseError(self.session)
		finally:
			check.close()

	async def _bind(self) -> asyncio.Server:
		if self.paths.is_tcp:
			host, port = self.paths.address
			try:
				server = await asyncio.start_server(self.handle_connection, host, port, limit=READ_LIMIT)
			except OSError as e:
				raise EndpointInUseError(self.session) from e
			logger.info(f'Listening on TCP {host}:{port}')
			return server

		self._remove_stale_socket()
		server = await asyncio.start_unix_server(self.handle_connection, self.paths.endpoint, limit=READ_LIMIT)
		logger.info(f'Listening on Unix socket {self.paths.endpoint}')
		return server

	async def start(self) -> None:
		"""Claim the endpoint, then publish the pid file.

		Raises EndpointInUseError without touching any file when another
		daemon is live for this session.
		"""
		ensure_app_dir()
		self._acquire_lock()
		try:
			if self._lock_fd is not None:
				# holding the lock means any leftover files are stale
				cleanup(self.session)
			self._server = await self._bind()
		except BaseException:
			self._release_lock()
			raise

		self.paths.pid_path.write_text(str(os.getpid()))
		logger.info(f'PID file: {self.paths.pid_path}')
		self._ready_event.set()

	async def run(self) -> None:
		"""Run until shutdown is requested by `close` or a signal."""
		await self.start()
		assert self._server is not None

		loop = asyncio.get_running_loop()
		handled: list[signal.Signals] = []
		if self.install_signal_handlers:
			for name in ('SIGINT', 'SIGTERM', 'SIGHUP'):
				sig = getattr(signal, name, None)
				if sig is None:
					continue
				try:
					loop.add_signal_handler(sig, self.request_shutdown)
					handled.append(sig)
				except (NotImplementedError, RuntimeError):
					# Windows / non-main thread
					pass

		try:
			await self._shutdown_event.wait()
		finally:
			for sig in handled:
				loop.remove_signal_handler(sig)
			await self._stop()

	async def _stop(self) -> None:
		# upstream first, so in-flight commands fail fast
		await self.state.close()
		if self._server is not None:
			self._server.close()
			await self._server.wait_closed()
			self._server = None
		cleanup(self.session)
		self._release_lock()
		logger.info('Server stopped')


def main(argv: list[str] | None = None) -> int:
	"""Entry point for the daemon process."""
	config = load_config()
	parser = argparse.ArgumentParser(description='flutter-mate session daemon')
	parser.add_argument('--session', default=config.session, help='Session name')
	parser.add_argument('--log-level', default=config.logging_level, help='Logging level')
	args = parser.parse_args(argv)

	setup_logging(args.log_level)

	try:
		validate_session_name(args.session)
	except ValueError as e:
		logger.error(str(e))
		return 2

	logger.info(f'Starting daemon for session: {args.session}')

	async def _serve() -> None:
		await DaemonServer(args.session).run()

	try:
		asyncio.run(_serve())
	except EndpointInUseError as e:
		logger.error(str(e))
		return 1
	except KeyboardInterrupt:
		logger.info('Interrupted')
	except Exception as e:
		logger.exception(f'Daemon error: {e}')
		return 1
	return 0


if __name__ == '__main__':
	sys.exit(main())
