"""Session registry - where each session's daemon lives on disk.

Every session owns a set of files in the app directory:

    <dir>/<session>.sock   Unix socket (TCP port on Windows)
    <dir>/<session>.pid    daemon process id
    <dir>/<session>.uri    VM Service URI of the connected app
    <dir>/<session>.log    daemon log output
    <dir>/<session>.lock   held by the live daemon (never removed)
"""

import hashlib
import logging
import os
import re
import socket
import sys
from dataclasses import dataclass
from pathlib import Path

from flutter_mate.config import get_app_dir

logger = logging.getLogger(__name__)

SESSION_NAME_RE = re.compile(r'^[A-Za-z0-9_.-]{1,64}$')

# Dynamic/private port range for the TCP fallback
_PORT_BASE = 49152
_PORT_SPAN = 16383


def validate_session_name(session: str) -> str:
	"""Return the name unchanged, or raise ValueError if it is unsafe as a file name."""
	if not isinstance(session, str) or not SESSION_NAME_RE.match(session) or session in ('.', '..'):
		raise ValueError(f'invalid session name {session!r}: use 1-64 letters, digits, "_", "." or "-"')
	return session


def uses_tcp() -> bool:
	"""Platforms without Unix sockets fall back to loopback TCP."""
	return sys.platform == 'win32' or not hasattr(socket, 'AF_UNIX')


def get_port(session: str) -> int:
	"""Deterministic loopback port for a session (49152-65534)."""
	return _PORT_BASE + (int(hashlib.md5(session.encode()).hexdigest()[:4], 16) % _PORT_SPAN)


@dataclass(frozen=True)
class SessionPaths:
	"""Filesystem layout for one session."""

	session: str
	endpoint: str
	pid_path: Path
	uri_path: Path
	log_path: Path
	lock_path: Path

	@property
	def is_tcp(self) -> bool:
		return self.endpoint.startswith('tcp://')

	@property
	def socket_path(self) -> Path | None:
		return None if self.is_tcp else Path(self.endpoint)

	@property
	def address(self) -> tuple[str, int]:
		"""(host, port) for a TCP endpoint."""
		_, hostport = self.endpoint.split('://', 1)
		host, port = hostport.rsplit(':', 1)
		return host, int(port)


def paths_for(session: str) -> SessionPaths:
	"""Compute the file layout for a session. Pure: nothing is created."""
	validate_session_name(session)
	base = get_app_dir()

	if uses_tcp():
		endpoint = f'tcp://127.0.0.1:{get_port(session)}'
	else:
		endpoint = str(base / f'{session}.sock')

	return SessionPaths(
		session=session,
		endpoint=endpoint,
		pid_path=base / f'{session}.pid',
		uri_path=base / f'{session}.uri',
		log_path=base / f'{session}.log',
		lock_path=base / f'{session}.lock',
	)


def ensure_app_dir() -> Path:
	base = get_app_dir()
	base.mkdir(parents=True, exist_ok=True)
	return base


def _pid_alive(pid: int) -> bool:
	if pid <= 0:
		return False
	if sys.platform == 'win32':
		import ctypes

		process_query_limited_information = 0x1000
		still_active = 259
		kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
		handle = kernel32.OpenProcess(process_query_limited_information, False, pid)
		if not handle:
			return False
		try:
			exit_code = ctypes.c_ulong()
			if not kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code)):
				return False
			return exit_code.value == still_active
		finally:
			kernel32.CloseHandle(handle)
	try:
		os.kill(pid, 0)
	except ProcessLookupError:
		return False
	except PermissionError:
		# exists, owned by someone else
		return True
	except OSError:
		return False
	return True


def read_pid(session: str) -> int | None:
	"""PID recorded for the session, or None if absent or malformed."""
	pid_path = paths_for(session).pid_path
	try:
		return int(pid_path.read_text().strip())
	except (OSError, ValueError):
		return None


def is_running(session: str) -> bool:
	"""Check whether the session's daemon process is alive.

	Stale artifacts (malformed pid file, dead pid) are removed as a side
	effect, so a later start is not confused by them.
	"""
	paths = paths_for(session)
	if not paths.pid_path.exists():
		return False

	pid = read_pid(session)
	if pid is not None and _pid_alive(pid):
		return True

	logger.debug(f'Removing stale files for session {session} (pid={pid})')
	cleanup(session)
	return False


def cleanup(session: str) -> None:
	"""Remove all of a session's files. Missing files are not an error."""
	paths = paths_for(session)
	candidates = [paths.pid_path, paths.uri_path]
	if paths.socket_path is not None:
		candidates.append(paths.socket_path)

	for path in candidates:
		try:
			path.unlink()
		except FileNotFoundError:
			pass
		except OSError as e:
			logger.debug(f'Could not remove {path}: {e}')


def list_sessions() -> list[str]:
	"""Names of sessions with a live daemon, found by scanning pid files."""
	base = get_app_dir()
	if not base.is_dir():
		return []

	sessions = []
	for pid_file in sorted(base.glob('*.pid')):
		name = pid_file.stem
		if not SESSION_NAME_RE.match(name):
			continue
		if is_running(name):
			sessions.append(name)
	return sessions


def write_uri(session: str, uri: str) -> None:
	paths_for(session).uri_path.write_text(uri)


def read_last_uri(session: str) -> str | None:
	"""VM Service URI last stored for the session, if any."""
	try:
		uri = paths_for(session).uri_path.read_text().strip()
	except OSError:
		return None
	return uri or None
