"""Client side of the daemon IPC: one newline-terminated JSON exchange per connection.

Blocking sockets keep the CLI free of an event loop; async callers wrap
`exchange` in `asyncio.to_thread`.
"""

import logging
import socket
import time

from flutter_mate.config import DEFAULT_COMMAND_TIMEOUT, DEFAULT_CONNECT_TIMEOUT
from flutter_mate.daemon.sessions import paths_for
from flutter_mate.exceptions import (
	ConnectionClosedError,
	DaemonNotRunningError,
	ResponseDecodeError,
	ResponseTimeoutError,
)
from flutter_mate.protocol.views import Request, Response

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 65536


class DaemonConnection:
	"""An open stream to a session's daemon. Closed after one exchange."""

	def __init__(self, session: str, sock: socket.socket) -> None:
		self.session = session
		self._sock = sock
		self._buffer = b''
		self._closed = False

	def send(self, request: Request | bytes | str) -> None:
		"""Write one request line. A trailing newline is added if missing."""
		if isinstance(request, Request):
			data = request.to_json().encode('utf-8')
		elif isinstance(request, str):
			data = request.encode('utf-8')
		else:
			data = request
		if not data.endswith(b'\n'):
			data += b'\n'

		try:
			self._sock.sendall(data)
		except (BrokenPipeError, ConnectionResetError) as e:
			raise ConnectionClosedError(f'daemon closed the connection while sending: {e}', self.session) from e
		except OSError as e:
			raise ConnectionClosedError(f'failed to send to daemon: {e}', self.session) from e

	def receive(self, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Response:
		"""Read until the first newline and decode it. Bytes after it are ignored.

		Giving up on the timeout does not cancel anything: the daemon may still
		finish the command after the caller has moved on.
		"""
		deadline = time.monotonic() + timeout

		while b'\n' not in self._buffer:
			remaining = deadline - time.monotonic()
			if remaining <= 0:
				raise ResponseTimeoutError(f'no response from daemon within {timeout:g}s', self.session)
			self._sock.settimeout(remaining)
			try:
				chunk = self._sock.recv(_CHUNK_SIZE)
			except TimeoutError as e:
				raise ResponseTimeoutError(f'no response from daemon within {timeout:g}s', self.session) from e
			except (ConnectionResetError, BrokenPipeError) as e:
				raise ConnectionClosedError(f'daemon reset the connection: {e}', self.session) from e
			if not chunk:
				raise ConnectionClosedError('daemon closed the connection before responding', self.session)
			self._buffer += chunk

		line, _, _ = self._buffer.partition(b'\n')
		try:
			return Response.from_json(line.decode('utf-8'))
		except (UnicodeDecodeError, ValueError, TypeError) as e:
			raise ResponseDecodeError(f'invalid response from daemon: {e}', self.session) from e

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		try:
			self._sock.close()
		except OSError:
			pass

	def __enter__(self) -> 'DaemonConnection':
		return self

	def __exit__(self, *exc) -> None:
		self.close()


def _open_socket(session: str, timeout: float) -> socket.socket:
	paths = paths_for(session)
	if paths.is_tcp:
		sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
		target: str | tuple[str, int] = paths.address
	else:
		sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
		target = paths.endpoint

	sock.settimeout(timeout)
	try:
		sock.connect(target)
	except BaseException:
		sock.close()
		raise
	return sock


def connect(session: str, timeout: float = DEFAULT_CONNECT_TIMEOUT) -> DaemonConnection:
	"""Open a stream to the session's daemon endpoint."""
	try:
		sock = _open_socket(session, timeout)
	except (FileNotFoundError, ConnectionRefusedError) as e:
		raise DaemonNotRunningError(f'daemon for session {session!r} is not running', session) from e
	except TimeoutError as e:
		raise DaemonNotRunningError(f'timed out connecting to daemon for session {session!r}', session) from e
	except OSError as e:
		raise DaemonNotRunningError(f'cannot connect to daemon for session {session!r}: {e}', session) from e
	return DaemonConnection(session, sock)


def can_connect(session: str, timeout: float = 0.1) -> bool:
	"""True if the endpoint accepts a connection right now."""
	try:
		conn = connect(session, timeout)
	except DaemonNotRunningError:
		return False
	conn.close()
	return True


def exchange(
	session: str,
	request: Request,
	timeout: float = DEFAULT_COMMAND_TIMEOUT,
	connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> Response:
	"""Send one request and wait for its response. The socket is always closed."""
	with connect(session, connect_timeout) as conn:
		conn.send(request)
		response = conn.receive(timeout)

	if response.id and response.id != request.id:
		raise ResponseDecodeError(f'response id {response.id!r} does not match request id {request.id!r}', session)
	logger.debug(f'{request.action} (id={request.id}) -> success={response.success}')
	return response
