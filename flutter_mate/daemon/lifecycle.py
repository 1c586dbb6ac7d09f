"""Daemon lifecycle: make sure a session's daemon is up, start it if not."""

import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass

from flutter_mate.config import get_app_dir
from flutter_mate.daemon.sessions import ensure_app_dir, is_running, paths_for, validate_session_name
from flutter_mate.daemon.transport import can_connect, exchange
from flutter_mate.exceptions import DaemonStartError, TransportError
from flutter_mate.protocol.service import generate_request_id
from flutter_mate.protocol.views import Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DaemonResult:
	already_running: bool


def spawn_daemon(session: str) -> subprocess.Popen:
	"""Start the daemon as a detached background process.

	stdin/stdout are detached; stderr (where the daemon logs) is appended to
	the session log file.
	"""
	paths = paths_for(session)
	ensure_app_dir()

	cmd = [sys.executable, '-m', 'flutter_mate.daemon.server', '--session', session]
	env = os.environ.copy()
	env['FLUTTER_MATE_SESSION'] = session
	env['FLUTTER_MATE_DIR'] = str(get_app_dir())

	logger.debug(f'Spawning daemon: {" ".join(cmd)}')
	with open(paths.log_path, 'ab') as log_file:
		if sys.platform == 'win32':
			return subprocess.Popen(
				cmd,
				env=env,
				stdin=subprocess.DEVNULL,
				stdout=subprocess.DEVNULL,
				stderr=log_file,
				creationflags=subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS,
			)
		return subprocess.Popen(
			cmd,
			env=env,
			stdin=subprocess.DEVNULL,
			stdout=subprocess.DEVNULL,
			stderr=log_file,
			start_new_session=True,
		)


def ensure_daemon(
	session: str,
	confirm_attempts: int = 10,
	confirm_interval: float = 0.05,
	start_attempts: int = 50,
	start_interval: float = 0.1,
) -> DaemonResult:
	"""Return once the session's daemon accepts connections.

	A live daemon gets a few quick connection attempts. Otherwise a new one is
	spawned and polled until it answers or the start budget runs out. Two
	callers racing here may both spawn; the loser fails to claim the endpoint
	and exits, and both callers then reach the winner.
	"""
	validate_session_name(session)

	if is_running(session):
		for _ in range(confirm_attempts):
			if can_connect(session):
				return DaemonResult(already_running=True)
			time.sleep(confirm_interval)
		logger.warning(f'Daemon for session {session} has a live pid but does not answer; starting a new one')

	spawn_daemon(session)

	for _ in range(start_attempts):
		if can_connect(session):
			logger.debug(f'Daemon for session {session} is up')
			return DaemonResult(already_running=False)
		time.sleep(start_interval)

	raise DaemonStartError(session, start_attempts, start_interval)


def stop_daemon(session: str, timeout: float = 5.0) -> bool:
	"""Ask a running daemon to close. Returns False if none was reachable."""
	if not is_running(session) and not can_connect(session):
		return False

	request = Request(id=generate_request_id(), action='close')
	try:
		response = exchange(session, request, timeout=timeout)
	except TransportError as e:
		logger.debug(f'Could not stop daemon for session {session}: {e}')
		return False

	# the daemon removes its own files once the reply is out
	deadline = time.monotonic() + timeout
	while time.monotonic() < deadline and paths_for(session).pid_path.exists():
		time.sleep(0.05)
	return response.success
