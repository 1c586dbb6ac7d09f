import logging
import sys

from flutter_mate.config import load_config

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def setup_logging(level: str | None = None, stream=None, force: bool = False) -> logging.Logger:
	"""Configure the flutter_mate logger hierarchy.

	The daemon logs at the configured level to stderr (which the spawner points
	at the session log file). The CLI passes level='warning' to stay quiet, and
	MCP mode must never write logs to stdout because stdout carries the protocol.
	"""
	if level is None:
		level = load_config().logging_level

	log_level = getattr(logging, level.upper(), logging.INFO)

	root = logging.getLogger('flutter_mate')
	if root.handlers and not force:
		root.setLevel(log_level)
		return root

	for handler in list(root.handlers):
		root.removeHandler(handler)

	handler = logging.StreamHandler(stream or sys.stderr)
	handler.setFormatter(logging.Formatter(LOG_FORMAT))
	root.addHandler(handler)
	root.setLevel(log_level)
	root.propagate = False

	# aiohttp is chatty at debug level
	logging.getLogger('aiohttp').setLevel(logging.WARNING)
	return root
