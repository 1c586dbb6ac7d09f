"""Exception hierarchy for flutter-mate.

Errors fall into four families, and callers are expected to tell them apart:

- ProtocolError: the request itself is malformed (never retried)
- TransportError: the daemon could not be reached or did not answer
- UpstreamError / ActionFailedError: the Flutter app is missing or rejected the action
- DaemonStartError: the daemon could not be made reachable in time
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from flutter_mate.protocol.views import ParseResult


class FlutterMateError(Exception):
	"""Base class for all flutter-mate errors."""


# ── Validation ───────────────────────────────────────────────────────────────


class ProtocolError(FlutterMateError):
	"""A request failed validation before it reached the wire."""

	def __init__(self, result: 'ParseResult') -> None:
		self.result = result
		super().__init__(result.error or 'invalid command')


# ── Transport ────────────────────────────────────────────────────────────────


class TransportError(FlutterMateError):
	"""Base class for IPC failures between a client and the daemon."""

	def __init__(self, message: str, session: str | None = None) -> None:
		self.session = session
		super().__init__(message)


class DaemonNotRunningError(TransportError):
	"""The daemon endpoint does not exist or refused the connection."""


class ResponseTimeoutError(TransportError):
	"""No complete response line arrived before the timeout."""


class ResponseDecodeError(TransportError):
	"""The response line could not be decoded into a Response."""


class ConnectionClosedError(TransportError):
	"""The daemon closed the connection before sending a full response."""


# ── Lifecycle ────────────────────────────────────────────────────────────────


class DaemonStartError(FlutterMateError):
	"""The daemon could not be made reachable within the retry budget."""

	def __init__(self, session: str, attempts: int, interval: float) -> None:
		self.session = session
		self.attempts = attempts
		self.interval = interval
		super().__init__(
			f'daemon failed to start for session {session!r} after {attempts} attempts over {attempts * interval:.1f}s'
		)


class EndpointInUseError(FlutterMateError):
	"""Another live daemon already owns the session's endpoint."""

	def __init__(self, session: str) -> None:
		self.session = session
		super().__init__(f'a daemon for session {session!r} is already running')


# ── Upstream (target application) ────────────────────────────────────────────


class UpstreamError(FlutterMateError):
	"""The VM Service connection failed or returned a protocol error."""


class NotConnectedError(UpstreamError):
	"""An action needed the Flutter app but no connection is established."""

	def __init__(self) -> None:
		super().__init__('not connected: use "connect" or "run" first')


class AlreadyConnectedError(UpstreamError):
	"""A connect/run was issued while a connection is already held."""

	def __init__(self, uri: str | None) -> None:
		self.uri = uri
		super().__init__(f'already connected to {uri}; use "close" first')


class ActionFailedError(UpstreamError):
	"""The Flutter app rejected an action (element missing, not tappable, ...)."""
