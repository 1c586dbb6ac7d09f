"""Per-daemon session state: the upstream VM Service connection and, when the
daemon launched the app itself, the `flutter run` process."""

import asyncio
import logging
import os
import shutil
import sys
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from flutter_mate.config import LAUNCH_TIMEOUT
from flutter_mate.daemon.sessions import write_uri
from flutter_mate.daemon.vm_service import VmServiceClient, normalize_vm_service_uri, parse_vm_service_uri
from flutter_mate.exceptions import AlreadyConnectedError, NotConnectedError, UpstreamError

logger = logging.getLogger(__name__)


def find_flutter() -> str:
	"""Locate the flutter executable: FLUTTER_ROOT, common install dirs, then PATH."""
	executable = 'flutter.bat' if sys.platform == 'win32' else 'flutter'

	flutter_root = os.environ.get('FLUTTER_ROOT')
	if flutter_root:
		candidate = Path(flutter_root) / 'bin' / executable
		if candidate.exists():
			return str(candidate)

	home = Path.home()
	for candidate in (
		Path('/usr/local/bin/flutter'),
		home / 'flutter' / 'bin' / executable,
		home / 'Development' / 'flutter' / 'bin' / executable,
	):
		if candidate.exists():
			return str(candidate)

	return shutil.which(executable) or executable


class SessionState:
	"""Everything a daemon knows about its one session."""

	def __init__(
		self,
		name: str,
		client_factory: Callable[[str], VmServiceClient] = VmServiceClient,
	) -> None:
		self.name = name
		self.client_factory = client_factory
		self.client: VmServiceClient | None = None
		self.uri: str | None = None
		self.flutter_process: asyncio.subprocess.Process | None = None
		self.started_at = time.monotonic()
		self._output_tasks: list[asyncio.Task] = []

	@property
	def is_connected(self) -> bool:
		return self.client is not None and self.client.is_connected

	@property
	def app_running(self) -> bool:
		return self.flutter_process is not None and self.flutter_process.returncode is None

	def require_client(self) -> VmServiceClient:
		if self.client is None or not self.client.is_connected:
			raise NotConnectedError()
		return self.client

	def status(self) -> dict[str, Any]:
		return {
			'session': self.name,
			'connected': self.is_connected,
			'uri': self.uri,
			'pid': os.getpid(),
			'uptime': round(time.monotonic() - self.started_at, 1),
			'appRunning': self.app_running,
		}

	async def connect(self, uri: str) -> dict[str, Any]:
		"""Attach to an already running app."""
		if self.is_connected:
			raise AlreadyConnectedError(self.uri)
		await self._release_stale()

		normalized = normalize_vm_service_uri(uri)
		await self._attach(normalized)
		return {'uri': normalized, 'launched': False}

	async def launch(self, args: list[str]) -> dict[str, Any]:
		"""Start `flutter run`, wait for its VM Service URI and attach to it."""
		if self.is_connected:
			raise AlreadyConnectedError(self.uri)
		await self._release_stale()

		flutter = find_flutter()
		logger.info(f'Launching: {flutter} run {" ".join(args)}')
		try:
			process = await asyncio.create_subprocess_exec(
				flutter,
				'run',
				*args,
				stdin=asyncio.subprocess.DEVNULL,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
			)
		except OSError as e:
			raise UpstreamError(f'failed to launch app: {e}') from e
		self.flutter_process = process

		try:
			uri = await asyncio.wait_for(self._read_vm_service_uri(process), timeout=LAUNCH_TIMEOUT)
		except TimeoutError as e:
			await self._stop_app()
			raise UpstreamError(f'failed to launch app: timed out waiting for VM Service URI after {LAUNCH_TIMEOUT:g}s') from e
		except UpstreamError:
			await self._stop_app()
			raise

		try:
			await self._attach(uri)
		except UpstreamError:
			await self._stop_app()
			raise
		return {'uri': uri, 'launched': True}

	async def _read_vm_service_uri(self, process: asyncio.subprocess.Process) -> str:
		assert process.stdout is not None and process.stderr is not None
		self._output_tasks.append(asyncio.create_task(self._drain(process.stderr, 'stderr')))

		output = ''
		while True:
			line = await process.stdout.readline()
			if not line:
				raise UpstreamError(f'failed to launch app: flutter exited with code {await process.wait()}')
			text = line.decode('utf-8', errors='replace')
			logger.debug(f'[flutter] {text.rstrip()}')
			output += text
			uri = parse_vm_service_uri(output)
			if uri is not None:
				self._output_tasks.append(asyncio.create_task(self._drain(process.stdout, 'stdout')))
				return normalize_vm_service_uri(uri)

	async def _drain(self, stream: asyncio.StreamReader, label: str) -> None:
		while True:
			line = await stream.readline()
			if not line:
				return
			logger.debug(f'[flutter {label}] {line.decode("utf-8", errors="replace").rstrip()}')

	async def _attach(self, uri: str) -> None:
		client = self.client_factory(uri)
		try:
			await client.connect()
		except UpstreamError:
			raise
		except Exception as e:
			raise UpstreamError(f'failed to connect: {e}') from e

		self.client = client
		self.uri = uri
		write_uri(self.name, uri)

		try:
			if not await client.ensure_semantics():
				logger.warning('Semantics could not be enabled; snapshots may be incomplete')
		except UpstreamError as e:
			logger.warning(f'ensureSemantics failed: {e}')

	async def _release_stale(self) -> None:
		"""Drop a connection that went away on its own, and the app launched with it."""
		if self.client is not None or self.flutter_process is not None:
			logger.info('Releasing stale connection before reattaching')
			await self.close()

	async def disconnect(self) -> None:
		client, self.client = self.client, None
		self.uri = None
		if client is not None:
			try:
				await client.disconnect()
			except Exception as e:
				logger.debug(f'Error while disconnecting: {e}')

	async def _stop_app(self) -> None:
		process, self.flutter_process = self.flutter_process, None
		if process is not None and process.returncode is None:
			logger.info(f'Stopping flutter process {process.pid}')
			try:
				process.terminate()
				await asyncio.wait_for(process.wait(), timeout=5.0)
			except ProcessLookupError:
				pass
			except TimeoutError:
				process.kill()
				await process.wait()
		for task in self._output_tasks:
			task.cancel()
		self._output_tasks.clear()

	async def close(self) -> None:
		"""Disconnect and stop a launched app."""
		await self.disconnect()
		await self._stop_app()
