"""Shared fixtures: an isolated app directory and a scripted VM Service client."""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

import pytest


@pytest.fixture(autouse=True)
def app_dir(monkeypatch):
	"""Point FLUTTER_MATE_DIR at a fresh short directory (Unix socket paths are length-limited)."""
	path = Path(tempfile.mkdtemp(prefix='fm'))
	monkeypatch.setenv('FLUTTER_MATE_DIR', str(path))
	monkeypatch.delenv('FLUTTER_MATE_SESSION', raising=False)
	monkeypatch.delenv('FLUTTER_MATE_COMMAND_TIMEOUT', raising=False)
	monkeypatch.delenv('FLUTTER_MATE_CONNECT_TIMEOUT', raising=False)
	yield path
	shutil.rmtree(path, ignore_errors=True)


@pytest.fixture(autouse=True)
def reset_logging():
	"""Drop handlers installed by setup_logging so they never outlive a captured stream."""
	yield
	logger = logging.getLogger('flutter_mate')
	for handler in list(logger.handlers):
		logger.removeHandler(handler)
	logger.propagate = True


def make_node(
	ref: str,
	widget: str,
	depth: int = 0,
	bounds: tuple[float, float, float, float] | None = (0, 0, 100, 40),
	children: list[str] | None = None,
	semantics: dict[str, Any] | None = None,
	text: str | None = None,
) -> dict[str, Any]:
	node: dict[str, Any] = {'ref': ref, 'widget': widget, 'depth': depth, 'children': children or []}
	if bounds is not None:
		x, y, w, h = bounds
		node['bounds'] = {'x': x, 'y': y, 'width': w, 'height': h}
	if semantics is not None:
		node['semantics'] = {'id': 1, 'flags': [], 'actions': [], **semantics}
	if text is not None:
		node['textContent'] = text
	return node


def login_snapshot(email_value: str = '') -> dict[str, Any]:
	"""A small login screen as the snapshot extension would return it."""
	return {
		'success': True,
		'timestamp': '2026-01-01T12:00:00',
		'nodes': [
			make_node('w0', 'MaterialApp', 0, (0, 0, 400, 800), ['w1']),
			make_node('w1', 'Scaffold', 1, (0, 0, 400, 800), ['w2']),
			make_node('w2', 'Column', 2, (0, 0, 400, 300), ['w3', 'w4', 'w5', 'w6']),
			make_node('w3', 'Text', 3, (0, 0, 400, 30), text='Welcome back'),
			make_node(
				'w4',
				'TextField',
				3,
				(0, 40, 400, 48),
				semantics={
					'label': 'Email',
					'value': email_value,
					'flags': ['isTextField', 'hasEnabledState', 'isEnabled'],
					'actions': ['tap', 'setText'],
				},
			),
			make_node(
				'w5',
				'ElevatedButton',
				3,
				(0, 100, 400, 48),
				semantics={'label': 'Login', 'flags': ['isButton', 'hasEnabledState'], 'actions': ['tap']},
			),
			make_node('w6', 'Icon', 3, (0, 0, 0, 0)),
		],
	}


class FakeVmClient:
	"""Stands in for VmServiceClient; records extension calls.

	`responses` maps an extension name to a normalized result dict, or to a
	callable taking the args and returning one.
	"""

	def __init__(self, uri: str = 'ws://127.0.0.1:8181/abc=/ws') -> None:
		self.uri = uri
		self.connected = False
		self.calls: list[tuple[str, dict[str, Any]]] = []
		self.responses: dict[str, Any] = {'snapshot': {'success': True, 'result': login_snapshot()}}
		self.delay = 0.0
		self.disconnects = 0

	@property
	def is_connected(self) -> bool:
		return self.connected

	async def connect(self) -> None:
		self.connected = True

	async def disconnect(self) -> None:
		self.connected = False
		self.disconnects += 1

	async def ensure_semantics(self) -> bool:
		return True

	async def call_extension(self, extension: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
		args = args or {}
		self.calls.append((extension, args))
		if self.delay:
			await asyncio.sleep(self.delay)
		response = self.responses.get(extension)
		if callable(response):
			return response(args)
		if response is not None:
			return response
		return {'success': True, 'result': {'success': True}}

	def extension_names(self) -> list[str]:
		return [name for name, _ in self.calls]


@pytest.fixture
def fake_client():
	client = FakeVmClient()
	client.connected = True
	return client
