"""Configuration loaded from the environment (and an optional .env file)."""

import logging
import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

load_dotenv(override=False)

DEFAULT_SESSION = 'default'
DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 5.0

# How long `flutter run` may take to print its VM Service URI
LAUNCH_TIMEOUT = 120.0

LOG_LEVELS = ('debug', 'info', 'warning', 'error', 'critical')


class MateConfig(BaseModel):
	"""Process-wide settings, resolved once per invocation."""

	app_dir: Path
	session: str = DEFAULT_SESSION
	logging_level: str = 'info'
	command_timeout: float = Field(default=DEFAULT_COMMAND_TIMEOUT, gt=0)
	connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)


def get_app_dir() -> Path:
	"""Get the directory holding session sockets, pid and uri files.

	Priority: FLUTTER_MATE_DIR > XDG_RUNTIME_DIR > ~/.flutter_mate > temp dir
	"""
	override = os.environ.get('FLUTTER_MATE_DIR')
	if override:
		return Path(override)

	xdg_runtime = os.environ.get('XDG_RUNTIME_DIR')
	if xdg_runtime:
		return Path(xdg_runtime) / 'flutter_mate'

	home = os.environ.get('HOME') or os.environ.get('USERPROFILE')
	if home:
		return Path(home) / '.flutter_mate'

	return Path(tempfile.gettempdir()) / 'flutter_mate'


def _env_float(name: str, default: float) -> float:
	raw = os.environ.get(name)
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError:
		logger.warning(f'Ignoring invalid {name}={raw!r}, using {default}')
		return default
	if value <= 0:
		logger.warning(f'Ignoring non-positive {name}={raw!r}, using {default}')
		return default
	return value


def load_config() -> MateConfig:
	"""Build a MateConfig from the current environment."""
	level = os.environ.get('FLUTTER_MATE_LOGGING_LEVEL', 'info').lower()
	if level not in LOG_LEVELS:
		logger.warning(f'Unknown FLUTTER_MATE_LOGGING_LEVEL={level!r}, using info')
		level = 'info'

	return MateConfig(
		app_dir=get_app_dir(),
		session=os.environ.get('FLUTTER_MATE_SESSION') or DEFAULT_SESSION,
		logging_level=level,
		command_timeout=_env_float('FLUTTER_MATE_COMMAND_TIMEOUT', DEFAULT_COMMAND_TIMEOUT),
		connect_timeout=_env_float('FLUTTER_MATE_CONNECT_TIMEOUT', DEFAULT_CONNECT_TIMEOUT),
	)
