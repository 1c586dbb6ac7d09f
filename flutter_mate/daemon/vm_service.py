"""Dart VM Service client - JSON-RPC 2.0 over a WebSocket.

The daemon holds one of these per session. Requests are matched to replies by
id through a table of pending futures filled by a background read loop.
"""

import asyncio
import json
import logging
import re
from typing import Any

import aiohttp

from flutter_mate.exceptions import UpstreamError

logger = logging.getLogger(__name__)

EXTENSION_PREFIX = 'ext.flutter_mate.'

_WS_URI_RE = re.compile(r'ws://[^\s]+')
_HTTP_URI_RE = re.compile(r'http://127\.0\.0\.1:\d+/[^\s]+')

_MAX_MSG_SIZE = 64 * 1024 * 1024


def normalize_vm_service_uri(uri: str) -> str:
	"""Turn a printed VM Service URL into its WebSocket endpoint.

	http -> ws, https -> wss, and the path always ends in /ws.
	"""
	normalized = uri.strip()
	if normalized.startswith('http://'):
		normalized = 'ws://' + normalized[len('http://') :]
	elif normalized.startswith('https://'):
		normalized = 'wss://' + normalized[len('https://') :]

	if not normalized.endswith('/ws'):
		normalized = normalized + 'ws' if normalized.endswith('/') else normalized + '/ws'
	return normalized


def parse_vm_service_uri(output: str) -> str | None:
	"""Find the VM Service URI in `flutter run` console output."""
	match = _WS_URI_RE.search(output)
	if match:
		return match.group(0)
	match = _HTTP_URI_RE.search(output)
	if match:
		return normalize_vm_service_uri(match.group(0))
	return None


def _stringify(value: Any) -> str:
	if isinstance(value, bool):
		return 'true' if value else 'false'
	if isinstance(value, (dict, list)):
		return json.dumps(value)
	return str(value)


def normalize_extension_result(raw: Any) -> dict[str, Any]:
	"""Reduce a service extension reply to `{success, error?, result}`."""
	inner = raw.get('result', raw) if isinstance(raw, dict) else raw

	if isinstance(inner, str):
		try:
			decoded = json.loads(inner)
		except ValueError:
			decoded = None
		parsed = decoded if isinstance(decoded, dict) else {'success': True, 'result': inner}
	elif isinstance(inner, dict):
		parsed = dict(inner)
	else:
		parsed = {'success': True, 'result': inner}

	normalized: dict[str, Any] = {'success': parsed.get('success', True) is not False}
	if parsed.get('error') is not None:
		normalized['error'] = str(parsed['error'])
	normalized['result'] = parsed
	return normalized


class VmServiceClient:
	"""Connection to one Flutter app's VM Service."""

	def __init__(self, ws_uri: str, request_timeout: float = 30.0) -> None:
		self.ws_uri = ws_uri
		self.request_timeout = request_timeout
		self.isolate_id: str | None = None
		self._session: aiohttp.ClientSession | None = None
		self._ws: aiohttp.ClientWebSocketResponse | None = None
		self._msg_id = 0
		self._pending: dict[str, asyncio.Future] = {}
		self._reader_task: asyncio.Task | None = None
		self._closed = False
		self._semantics_ensured = False

	@property
	def is_connected(self) -> bool:
		return (
			not self._closed
			and self._ws is not None
			and not self._ws.closed
			and self._reader_task is not None
			and not self._reader_task.done()
		)

	async def connect(self) -> None:
		"""Open the WebSocket and pick the main isolate (or the first one)."""
		self._session = aiohttp.ClientSession()
		try:
			self._ws = await self._session.ws_connect(self.ws_uri, max_msg_size=_MAX_MSG_SIZE)
		except (aiohttp.ClientError, OSError) as e:
			await self._session.close()
			self._session = None
			raise UpstreamError(f'failed to connect to VM Service at {self.ws_uri}: {e}') from e

		self._closed = False
		self._reader_task = asyncio.create_task(self._read_loop())

		try:
			vm = await self.call('getVM')
			isolates = vm.get('isolates') or []
			main = next((i for i in isolates if i.get('name') == 'main'), None)
			chosen = main or (isolates[0] if isolates else None)
			if chosen is None:
				raise UpstreamError('no isolates found in the VM')
			self.isolate_id = chosen['id']
		except BaseException:
			await self.disconnect()
			raise

		logger.info(f'Connected to VM Service {self.ws_uri} (isolate {self.isolate_id})')

	async def disconnect(self) -> None:
		self._closed = True
		self._semantics_ensured = False
		if self._reader_task:
			self._reader_task.cancel()
			try:
				await self._reader_task
			except asyncio.CancelledError:
				pass
			self._reader_task = None
		if self._ws:
			await self._ws.close()
			self._ws = None
		if self._session:
			await self._session.close()
			self._session = None
		self._fail_pending(UpstreamError('VM Service connection closed'))

	def _fail_pending(self, error: Exception) -> None:
		for future in self._pending.values():
			if not future.done():
				future.set_exception(error)
		self._pending.clear()

	async def _read_loop(self) -> None:
		assert self._ws is not None
		try:
			async for msg in self._ws:
				if msg.type == aiohttp.WSMsgType.TEXT:
					try:
						data = json.loads(msg.data)
					except ValueError:
						logger.debug(f'Ignoring non-JSON VM Service message: {msg.data[:200]!r}')
						continue
					msg_id = data.get('id') if isinstance(data, dict) else None
					future = self._pending.get(str(msg_id)) if msg_id is not None else None
					if future is not None and not future.done():
						future.set_result(data)
				elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
					break
		except asyncio.CancelledError:
			pass
		finally:
			self._fail_pending(UpstreamError('VM Service connection closed'))

	async def call(self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> dict[str, Any]:
		"""Send one JSON-RPC request and return its `result` object."""
		if not self.is_connected:
			raise UpstreamError('VM Service connection is closed')
		assert self._ws is not None

		self._msg_id += 1
		msg_id = str(self._msg_id)
		message = {'jsonrpc': '2.0', 'id': msg_id, 'method': method, 'params': params or {}}

		future: asyncio.Future = asyncio.get_running_loop().create_future()
		self._pending[msg_id] = future

		try:
			await self._ws.send_json(message)
			reply = await asyncio.wait_for(future, timeout=timeout or self.request_timeout)
		except TimeoutError as e:
			raise UpstreamError(f'{method} timed out after {timeout or self.request_timeout:g}s') from e
		except (aiohttp.ClientError, ConnectionResetError) as e:
			raise UpstreamError(f'{method} failed: {e}') from e
		finally:
			self._pending.pop(msg_id, None)

		if 'error' in reply:
			error = reply['error'] or {}
			message_text = error.get('message', 'unknown error') if isinstance(error, dict) else str(error)
			details = error.get('data', {}).get('details') if isinstance(error, dict) and isinstance(error.get('data'), dict) else None
			raise UpstreamError(f'{method} failed: {details or message_text}')
		result = reply.get('result')
		return result if isinstance(result, dict) else {'result': result}

	async def call_extension(self, extension: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
		"""Call a service extension in the app isolate.

		`extension` may be the short name (`tap`) or fully qualified
		(`ext.flutter_mate.tap`). None-valued args are dropped; the rest are
		sent as strings, which is all the extension protocol carries.
		"""
		method = extension if extension.startswith('ext.') else EXTENSION_PREFIX + extension
		params: dict[str, Any] = {'isolateId': self.isolate_id}
		for key, value in (args or {}).items():
			if value is not None:
				params[key] = _stringify(value)

		raw = await self.call(method, params)
		return normalize_extension_result(raw)

	async def ensure_semantics(self) -> bool:
		"""Turn on the semantics tree once per connection."""
		if self._semantics_ensured:
			return True
		result = await self.call_extension('ensureSemantics')
		self._semantics_ensured = result['success']
		return self._semantics_ensured

	async def __aenter__(self) -> 'VmServiceClient':
		await self.connect()
		return self

	async def __aexit__(self, *args) -> None:
		await self.disconnect()
