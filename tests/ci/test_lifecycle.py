"""Tests for the lifecycle manager: reuse, spawn, retry budget and shutdown."""

import multiprocessing
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from flutter_mate.daemon import lifecycle
from flutter_mate.daemon.client import run_command
from flutter_mate.daemon.lifecycle import ensure_daemon, spawn_daemon, stop_daemon
from flutter_mate.daemon.sessions import is_running, list_sessions, paths_for
from flutter_mate.exceptions import DaemonStartError


def sequence(*values):
	"""Callable returning the given values in order, then the last one forever."""
	items = list(values)

	def next_value(*args, **kwargs):
		return items.pop(0) if len(items) > 1 else items[0]

	return next_value


class TestEnsureDaemon:
	def test_reuses_live_daemon(self):
		with (
			patch.object(lifecycle, 'is_running', return_value=True),
			patch.object(lifecycle, 'can_connect', return_value=True),
			patch.object(lifecycle, 'spawn_daemon') as spawn,
		):
			result = ensure_daemon('demo')

		assert result.already_running is True
		spawn.assert_not_called()

	def test_spawns_when_not_running(self):
		with (
			patch.object(lifecycle, 'is_running', return_value=False),
			patch.object(lifecycle, 'can_connect', side_effect=sequence(False, False, True)),
			patch.object(lifecycle, 'spawn_daemon') as spawn,
		):
			result = ensure_daemon('demo', start_interval=0)

		assert result.already_running is False
		spawn.assert_called_once_with('demo')

	def test_live_pid_that_never_answers_gets_replaced(self):
		# confirm budget (3 attempts) fails, then the new daemon answers
		with (
			patch.object(lifecycle, 'is_running', return_value=True),
			patch.object(lifecycle, 'can_connect', side_effect=sequence(False, False, False, True)),
			patch.object(lifecycle, 'spawn_daemon') as spawn,
		):
			result = ensure_daemon('demo', confirm_attempts=3, confirm_interval=0, start_interval=0)

		assert result.already_running is False
		spawn.assert_called_once()

	def test_gives_up_after_budget(self):
		with (
			patch.object(lifecycle, 'is_running', return_value=False),
			patch.object(lifecycle, 'can_connect', return_value=False) as can_connect,
			patch.object(lifecycle, 'spawn_daemon'),
		):
			with pytest.raises(DaemonStartError) as exc_info:
				ensure_daemon('demo', start_attempts=4, start_interval=0)

		assert can_connect.call_count == 4
		assert exc_info.value.session == 'demo'
		assert exc_info.value.attempts == 4

	def test_error_message_names_the_budget(self):
		assert str(DaemonStartError('S', 50, 0.1)) == "daemon failed to start for session 'S' after 50 attempts over 5.0s"

	def test_invalid_session_name(self):
		with pytest.raises(ValueError):
			ensure_daemon('../nope')


class TestSpawn:
	def test_detached_daemon_command(self, app_dir):
		with patch.object(lifecycle.subprocess, 'Popen', return_value=MagicMock()) as popen:
			spawn_daemon('demo')

		args, kwargs = popen.call_args
		assert args[0] == [sys.executable, '-m', 'flutter_mate.daemon.server', '--session', 'demo']
		assert kwargs['env']['FLUTTER_MATE_SESSION'] == 'demo'
		assert kwargs['env']['FLUTTER_MATE_DIR'] == str(app_dir)
		assert kwargs['stdin'] is lifecycle.subprocess.DEVNULL
		assert kwargs['stdout'] is lifecycle.subprocess.DEVNULL
		if sys.platform == 'win32':
			assert kwargs['creationflags']
		else:
			assert kwargs['start_new_session'] is True
		assert paths_for('demo').log_path.exists()


class TestStopDaemon:
	def test_nothing_to_stop(self):
		assert stop_daemon('demo') is False


class TestRealDaemon:
	def test_spawn_status_and_close(self):
		"""Full path: a detached daemon process is started, answers, and stops on close."""
		try:
			first = ensure_daemon('e2e')
			assert first.already_running is False
			assert ensure_daemon('e2e').already_running is True

			response = run_command('e2e', {'action': 'status'})
			assert response.success
			assert response.data['session'] == 'e2e'
			assert response.data['connected'] is False

			response = run_command('e2e', {'action': 'tap', 'ref': 'w1'})
			assert not response.success
			assert response.error.startswith('not connected')
		finally:
			stopped = stop_daemon('e2e')

		assert stopped is True
		assert not is_running('e2e')


def _start_and_report(session: str) -> tuple[bool, int]:
	"""Runs in a separate process: ensure the daemon, then ask it for its pid."""
	result = ensure_daemon(session)
	response = run_command(session, {'action': 'status'})
	return result.already_running, response.data['pid']


class TestSelfHealing:
	def test_dead_pid_file_gets_a_fresh_daemon(self):
		dead = subprocess.Popen([sys.executable, '-c', 'pass'])
		dead.wait()
		paths = paths_for('heal')
		paths.pid_path.write_text(str(dead.pid))
		paths.uri_path.write_text('ws://127.0.0.1:8181/old=/ws')

		try:
			result = ensure_daemon('heal')
			assert result.already_running is False

			live_pid = int(paths.pid_path.read_text())
			assert live_pid != dead.pid
			status = run_command('heal', {'action': 'status'})
			assert status.data['pid'] == live_pid
			assert status.data['uri'] is None
		finally:
			stop_daemon('heal')


class TestConcurrentStart:
	def test_racing_callers_share_one_daemon(self):
		ctx = multiprocessing.get_context('spawn')
		try:
			with ctx.Pool(4) as pool:
				results = pool.map(_start_and_report, ['race'] * 4)

			pids = {pid for _, pid in results}
			assert len(pids) == 1
			assert list_sessions() == ['race']
			assert int(paths_for('race').pid_path.read_text()) == pids.pop()
		finally:
			assert stop_daemon('race') is True
		assert list_sessions() == []
