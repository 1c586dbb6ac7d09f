"""Tests for the daemon process, run in-process on a real socket."""

import asyncio
import json
import os
import sys
from dataclasses import dataclass

import pytest
from conftest import FakeVmClient

from flutter_mate.daemon.server import DaemonServer
from flutter_mate.daemon.sessions import paths_for, read_last_uri
from flutter_mate.daemon.state import SessionState
from flutter_mate.daemon.transport import connect, exchange
from flutter_mate.exceptions import EndpointInUseError, ResponseTimeoutError
from flutter_mate.protocol.views import Request

SESSION = 'test'


@dataclass
class RunningDaemon:
	server: DaemonServer
	task: asyncio.Task

	async def send(self, action: str, request_id: str = 'r1', timeout: float = 5.0, **args):
		request = Request(id=request_id, action=action, args=args)
		return await asyncio.to_thread(exchange, SESSION, request, timeout)

	async def send_raw(self, line: bytes):
		def _send():
			with connect(SESSION) as conn:
				conn.send(line)
				return conn.receive(5.0)

		return await asyncio.to_thread(_send)

	@property
	def client(self) -> FakeVmClient:
		return self.server.state.client


async def start_daemon(**kwargs) -> RunningDaemon:
	server = DaemonServer(SESSION, client_factory=FakeVmClient, install_signal_handlers=False, **kwargs)
	task = asyncio.create_task(server.run())
	await asyncio.wait_for(server.ready.wait(), timeout=5)
	return RunningDaemon(server, task)


@pytest.fixture
async def daemon():
	running = await start_daemon()
	yield running
	running.server.request_shutdown()
	await asyncio.wait_for(running.task, timeout=5)


class TestStartup:
	async def test_publishes_pid_and_endpoint(self, daemon):
		paths = paths_for(SESSION)
		assert paths.pid_path.read_text() == str(os.getpid())
		if paths.socket_path is not None:
			assert paths.socket_path.exists()

	async def test_second_daemon_is_refused(self, daemon):
		second = DaemonServer(SESSION, client_factory=FakeVmClient, install_signal_handlers=False)
		with pytest.raises(EndpointInUseError):
			await second.start()

		# the first daemon is untouched
		assert paths_for(SESSION).pid_path.read_text() == str(os.getpid())
		assert (await daemon.send('status')).success

	async def test_stale_files_are_replaced(self):
		paths = paths_for(SESSION)
		paths.pid_path.parent.mkdir(parents=True, exist_ok=True)
		paths.pid_path.write_text('999999')
		paths.uri_path.write_text('ws://old/ws')

		running = await start_daemon()
		try:
			assert paths.pid_path.read_text() == str(os.getpid())
			assert not paths.uri_path.exists()
		finally:
			running.server.request_shutdown()
			await asyncio.wait_for(running.task, timeout=5)


class TestDispatch:
	async def test_status_while_disconnected(self, daemon):
		response = await daemon.send('status', request_id='s1')
		assert response.success
		assert response.id == 's1'
		assert response.data['session'] == SESSION
		assert response.data['connected'] is False
		assert response.data['uri'] is None
		assert response.data['pid'] == os.getpid()

	async def test_unknown_action(self, daemon):
		response = await daemon.send('explode', request_id='u1')
		assert not response.success
		assert response.id == 'u1'
		assert response.error == 'unknown action: explode'

	async def test_invalid_fields(self, daemon):
		response = await daemon.send('tap')
		assert response.error == 'missing required field: ref'

	async def test_malformed_line(self, daemon):
		response = await daemon.send_raw(b'{"action": "tap"')
		assert not response.success
		assert response.error.startswith('parse error')

	async def test_action_before_connect(self, daemon):
		response = await daemon.send('tap', ref='w5')
		assert response.error == 'not connected: use "connect" or "run" first'

	async def test_connect_and_act(self, daemon):
		response = await daemon.send('connect', uri='http://127.0.0.1:8181/abc=/')
		assert response.success
		assert response.data == {'uri': 'ws://127.0.0.1:8181/abc=/ws', 'launched': False}
		assert read_last_uri(SESSION) == 'ws://127.0.0.1:8181/abc=/ws'

		status = await daemon.send('status')
		assert status.data['connected'] is True

		response = await daemon.send('tap', ref='w5')
		assert response.success
		assert daemon.client.calls == [('tap', {'ref': 'w5'})]

	async def test_second_connect_is_rejected(self, daemon):
		await daemon.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
		response = await daemon.send('connect', uri='ws://127.0.0.1:9999/other=/ws')
		assert not response.success
		assert response.error.startswith('already connected to ws://127.0.0.1:8181/abc=/ws')

	async def test_failure_does_not_poison_the_daemon(self, daemon):
		await daemon.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
		daemon.client.responses['tap'] = {'success': False, 'error': 'Element not found: w99', 'result': {}}

		failed = await daemon.send('tap', ref='w99')
		assert failed.error == 'Element not found: w99'

		ok = await daemon.send('find', ref='w5')
		assert ok.success
		assert ok.data['widget'] == 'ElevatedButton'

	async def test_unexpected_exception_becomes_failed_response(self, daemon):
		await daemon.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')

		def explode(args):
			raise RuntimeError('kaboom')

		daemon.client.responses['hover'] = explode
		response = await daemon.send('hover', ref='w1')
		assert not response.success
		assert 'kaboom' in response.error
		assert (await daemon.send('status')).success

	async def test_concurrent_requests(self, daemon):
		await daemon.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
		responses = await asyncio.gather(*(daemon.send('tap', request_id=f'r{i}', ref=f'w{i}') for i in range(5)))
		assert [r.id for r in responses] == [f'r{i}' for i in range(5)]
		assert all(r.success for r in responses)
		assert sorted(args['ref'] for _, args in daemon.client.calls) == [f'w{i}' for i in range(5)]


class TestReconnect:
	async def test_dropped_connection_is_released_before_reconnect(self, daemon):
		await daemon.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
		first = daemon.client
		# the app went away; the read loop ended but the client is still held
		first.connected = False

		response = await daemon.send('connect', uri='ws://127.0.0.1:9999/new=/ws')

		assert response.success
		assert first.disconnects == 1
		assert daemon.client is not first
		assert daemon.client.uri == 'ws://127.0.0.1:9999/new=/ws'
		assert read_last_uri(SESSION) == 'ws://127.0.0.1:9999/new=/ws'

	async def test_leftover_app_process_is_stopped(self):
		state = SessionState(SESSION, client_factory=FakeVmClient)
		await state.connect('ws://127.0.0.1:8181/abc=/ws')
		old_client = state.client
		old_client.connected = False
		app = await asyncio.create_subprocess_exec(sys.executable, '-c', 'import time; time.sleep(30)')
		state.flutter_process = app

		try:
			await state.connect('ws://127.0.0.1:9999/new=/ws')
			assert app.returncode is not None
			assert state.flutter_process is None
			assert old_client.disconnects == 1
			assert state.is_connected
		finally:
			if app.returncode is None:
				app.kill()
				await app.wait()
			await state.close()


class TestTimeouts:
	async def test_slow_command_times_out(self):
		running = await start_daemon(command_timeout=0.2)
		try:
			await running.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
			running.client.delay = 2.0
			response = await running.send('tap', ref='w1')
			assert not response.success
			assert response.error == 'tap timed out after 0.2s'
		finally:
			running.server.request_shutdown()
			await asyncio.wait_for(running.task, timeout=5)

	async def test_client_timeout_does_not_cancel_the_command(self):
		running = await start_daemon(command_timeout=5.0)
		finished = []

		def record(args):
			finished.append(args['ref'])
			return {'success': True, 'result': {}}

		try:
			await running.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
			running.client.delay = 0.3
			running.client.responses['tap'] = record
			with pytest.raises(ResponseTimeoutError):
				await running.send('tap', timeout=0.1, ref='w1')

			await asyncio.sleep(0.5)
			assert finished == ['w1']
			assert (await running.send('status')).success
		finally:
			running.server.request_shutdown()
			await asyncio.wait_for(running.task, timeout=5)

	async def test_waits_get_their_own_budget(self):
		running = await start_daemon(command_timeout=0.2)
		try:
			await running.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
			response = await running.send('wait', milliseconds=400)
			assert response.success
			assert response.data == {'waited': 400}
		finally:
			running.server.request_shutdown()
			await asyncio.wait_for(running.task, timeout=5)


class TestClose:
	async def test_close_stops_daemon_and_cleans_up(self, daemon):
		await daemon.send('connect', uri='ws://127.0.0.1:8181/abc=/ws')
		client = daemon.client

		response = await daemon.send('close')
		assert response.success
		assert response.data == {'closed': True}

		await asyncio.wait_for(daemon.task, timeout=5)
		paths = paths_for(SESSION)
		assert not paths.pid_path.exists()
		assert not paths.uri_path.exists()
		if paths.socket_path is not None:
			assert not paths.socket_path.exists()
		assert not client.is_connected

	async def test_restart_after_close(self, daemon):
		await daemon.send('close')
		await asyncio.wait_for(daemon.task, timeout=5)

		running = await start_daemon()
		try:
			assert (await running.send('status')).success
		finally:
			running.server.request_shutdown()
			await asyncio.wait_for(running.task, timeout=5)


class TestProcessLine:
	async def test_without_a_socket(self):
		server = DaemonServer(SESSION, client_factory=FakeVmClient, install_signal_handlers=False)
		response = await server.process_line(json.dumps({'id': 'p1', 'action': 'status'}).encode())
		assert response.success
		assert response.id == 'p1'
