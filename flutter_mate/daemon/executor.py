"""Executes validated commands against a connected Flutter app.

Gestures, text input, keys and navigation map one-to-one onto
`ext.flutter_mate.*` service extensions. Lookups (find, getText, isVisible,
isEnabled) and every wait are answered here from fresh snapshots.
"""

import asyncio
import logging
import re
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar, assert_never

from flutter_mate.exceptions import ActionFailedError
from flutter_mate.protocol.views import (
	BackCommand,
	ClearCommand,
	CloseCommand,
	Command,
	ConnectCommand,
	DoubleTapCommand,
	DragCommand,
	FillCommand,
	FindCommand,
	FocusCommand,
	GetTextCommand,
	HoverCommand,
	IsEnabledCommand,
	IsVisibleCommand,
	KeyDownCommand,
	KeyUpCommand,
	LongPressCommand,
	NavigateCommand,
	PressKeyCommand,
	RunCommand,
	ScreenshotCommand,
	ScrollCommand,
	SelectCommand,
	SnapshotCommand,
	StatusCommand,
	SwipeCommand,
	TapAtCommand,
	TapCommand,
	ToggleCommand,
	TypeTextCommand,
	WaitCommand,
	WaitForCommand,
	WaitForDisappearCommand,
	WaitForValueCommand,
)
from flutter_mate.snapshot.views import Snapshot, SnapshotNode

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_WAIT_MS = 1000
DEFAULT_WAIT_FOR_STATE_MS = 10_000
WAIT_POLL_MS = 200


class ExtensionClient(Protocol):
	async def call_extension(self, extension: str, args: dict[str, Any] | None = None) -> dict[str, Any]: ...


def _compile(pattern: str) -> re.Pattern[str]:
	try:
		return re.compile(pattern, re.IGNORECASE)
	except re.error as e:
		raise ActionFailedError(f'invalid pattern {pattern!r}: {e}') from e


def _is_visible(node: SnapshotNode | None) -> bool:
	return node is not None and node.bounds is not None and not node.bounds.is_zero_area


def _is_enabled(node: SnapshotNode | None) -> bool:
	if node is None:
		return False
	sem = node.semantics
	if sem is None or not sem.has_flag('hasEnabledState'):
		return True
	return sem.has_flag('isEnabled')


_STATE_CHECKS: dict[str, Callable[[SnapshotNode | None], bool]] = {
	'visible': _is_visible,
	'hidden': lambda node: not _is_visible(node),
	'enabled': _is_enabled,
	'disabled': lambda node: node is not None and not _is_enabled(node),
}


class CommandExecutor:
	"""Runs one command at a time against a VM Service client.

	The daemon serializes calls with its upstream lock; the executor itself
	keeps no state between commands.
	"""

	def __init__(self, client: ExtensionClient) -> None:
		self.client = client

	async def execute(self, command: Command) -> Any:
		match command:
			case SnapshotCommand():
				return await self._snapshot(command)
			case FindCommand(ref=ref):
				return self._require_node(await self.fetch_snapshot(), ref).to_dict()
			case ScreenshotCommand(selector=selector, full_page=full_page):
				return await self._extension('screenshot', ref=selector, fullPage=full_page or None)
			case GetTextCommand(ref=ref):
				return self._get_text(self._require_node(await self.fetch_snapshot(), ref))
			case IsVisibleCommand(ref=ref):
				return {'ref': ref, 'visible': _is_visible((await self.fetch_snapshot()).get(ref))}
			case IsEnabledCommand(ref=ref):
				return {'ref': ref, 'enabled': _is_enabled((await self.fetch_snapshot()).get(ref))}
			case TapCommand(ref=ref):
				return await self._extension('tap', ref=ref)
			case TapAtCommand(x=x, y=y):
				return await self._extension('tapAt', x=x, y=y)
			case DoubleTapCommand(ref=ref):
				return await self._extension('doubleTap', ref=ref)
			case LongPressCommand(ref=ref, duration_ms=duration_ms):
				return await self._extension('longPress', ref=ref, durationMs=duration_ms)
			case HoverCommand(ref=ref):
				return await self._extension('hover', ref=ref)
			case DragCommand(from_ref=from_ref, to_ref=to_ref):
				return await self._extension('drag', fromRef=from_ref, toRef=to_ref)
			case SwipeCommand():
				return await self._extension(
					'swipe',
					direction=command.direction,
					startX=command.start_x,
					startY=command.start_y,
					distance=command.distance,
					durationMs=command.duration_ms,
				)
			case ScrollCommand(ref=ref, direction=direction, amount=amount):
				return await self._extension('scroll', ref=ref, direction=direction, distance=amount)
			case FillCommand(ref=ref, text=text):
				return await self._extension('setText', ref=ref, text=text)
			case TypeTextCommand(ref=ref, text=text, delay_ms=delay_ms):
				return await self._extension('typeText', ref=ref, text=text, delayMs=delay_ms)
			case ClearCommand(ref=ref):
				await self._extension('focus', ref=ref)
				return await self._extension('clearText')
			case FocusCommand(ref=ref):
				return await self._extension('focus', ref=ref)
			case PressKeyCommand(key=key):
				return await self._extension('pressKey', key=key)
			case KeyDownCommand() | KeyUpCommand():
				return await self._extension(
					command.action,
					key=command.key,
					control=command.control,
					shift=command.shift,
					alt=command.alt,
					command=command.command,
				)
			case ToggleCommand(ref=ref, value=value):
				return await self._extension('toggle', ref=ref, value=value)
			case SelectCommand(ref=ref, value=value):
				return await self._extension('select', ref=ref, value=value)
			case NavigateCommand(route=route, arguments=arguments):
				return await self._extension('navigate', route=route, arguments=arguments)
			case BackCommand():
				return await self._extension('back')
			case WaitCommand():
				return await self._wait(command)
			case WaitForCommand(pattern=pattern, timeout=timeout, poll=poll):
				return await self._wait_for(pattern, timeout, poll)
			case WaitForDisappearCommand(pattern=pattern, timeout=timeout, poll=poll):
				return await self._wait_for_disappear(pattern, timeout, poll)
			case WaitForValueCommand(ref=ref, pattern=pattern, timeout=timeout, poll=poll):
				return await self._wait_for_value(ref, pattern, timeout, poll)
			case ConnectCommand() | RunCommand() | CloseCommand() | StatusCommand():
				raise ValueError(f'{command.action} is handled by the daemon, not the executor')
			case _:
				assert_never(command)

	# ── Extension calls ──────────────────────────────────────────────────────

	async def _extension(self, name: str, **args: Any) -> Any:
		result = await self.client.call_extension(name, {k: v for k, v in args.items() if v is not None})
		if not result.get('success'):
			raise ActionFailedError(result.get('error') or f'{name} failed')
		return result.get('result')

	async def _snapshot(self, command: SnapshotCommand) -> Any:
		return await self._extension(
			'snapshot',
			interactive=command.interactive,
			compact=command.compact,
			depth=command.max_depth,
			fromRef=command.selector,
		)

	async def fetch_snapshot(self) -> Snapshot:
		"""Full, fresh snapshot used for lookups and waits."""
		payload = await self._extension('snapshot', interactive=False)
		if not isinstance(payload, dict):
			raise ActionFailedError('snapshot returned an invalid payload')
		snapshot = Snapshot.from_dict(payload)
		if not snapshot.success and snapshot.error:
			raise ActionFailedError(snapshot.error)
		return snapshot

	# ── Lookups ──────────────────────────────────────────────────────────────

	@staticmethod
	def _require_node(snapshot: Snapshot, ref: str) -> SnapshotNode:
		node = snapshot.get(ref)
		if node is None:
			raise ActionFailedError(f'Element not found: {ref}')
		return node

	@staticmethod
	def _get_text(node: SnapshotNode) -> dict[str, Any]:
		label = node.semantics.label if node.semantics else None
		value = node.semantics.value if node.semantics else None
		return {
			'ref': node.ref,
			'text': label or value or node.text_content or '',
			'label': label,
			'value': value,
		}

	# ── Waits ────────────────────────────────────────────────────────────────

	async def _poll(self, check: Callable[[Snapshot], T | None], timeout_ms: int, poll_ms: int) -> T | None:
		"""Re-snapshot until `check` returns non-None or the deadline passes. Checks at least once."""
		deadline = time.monotonic() + timeout_ms / 1000
		while True:
			found = check(await self.fetch_snapshot())
			if found is not None:
				return found
			remaining = deadline - time.monotonic()
			if remaining <= 0:
				return None
			await asyncio.sleep(min(poll_ms / 1000, remaining))

	async def _wait(self, command: WaitCommand) -> dict[str, Any]:
		if command.for_ref is None:
			ms = command.milliseconds if command.milliseconds is not None else DEFAULT_WAIT_MS
			await asyncio.sleep(ms / 1000)
			return {'waited': ms}

		ref = command.for_ref
		state = command.state or 'visible'
		timeout = command.milliseconds if command.milliseconds is not None else DEFAULT_WAIT_FOR_STATE_MS
		state_check = _STATE_CHECKS[state]
		started = time.monotonic()

		found = await self._poll(lambda snap: True if state_check(snap.get(ref)) else None, timeout, WAIT_POLL_MS)
		if found is None:
			raise ActionFailedError(f'Timeout waiting for {ref} to be {state}')
		return {'ref': ref, 'state': state, 'waited': round((time.monotonic() - started) * 1000)}

	async def _wait_for(self, pattern: str, timeout: int, poll: int) -> dict[str, Any]:
		regex = _compile(pattern)

		def match(snapshot: Snapshot) -> dict[str, Any] | None:
			for node in snapshot.nodes:
				sem = node.semantics
				for key, text in (
					('label', sem.label if sem else None),
					('value', sem.value if sem else None),
					('text', node.text_content),
				):
					if text and regex.search(text):
						return {'ref': node.ref, key: text}
			return None

		found = await self._poll(match, timeout, poll)
		if found is None:
			raise ActionFailedError(f'Timeout waiting for element matching: {pattern}')
		return found

	async def _wait_for_disappear(self, pattern: str, timeout: int, poll: int) -> dict[str, Any]:
		regex = _compile(pattern)

		def gone(snapshot: Snapshot) -> bool | None:
			for node in snapshot.nodes:
				sem = node.semantics
				texts = (sem.label if sem else None, sem.value if sem else None, node.text_content)
				if any(t and regex.search(t) for t in texts):
					return None
			return True

		if await self._poll(gone, timeout, poll) is None:
			raise ActionFailedError(f'Timeout waiting for element to disappear: {pattern}')
		return {'disappeared': True, 'pattern': pattern}

	async def _wait_for_value(self, ref: str, pattern: str, timeout: int, poll: int) -> dict[str, Any]:
		regex = _compile(pattern)

		def matches(snapshot: Snapshot) -> dict[str, Any] | None:
			node = snapshot.get(ref)
			value = node.semantics.value if node is not None and node.semantics else None
			if value is not None and regex.search(value):
				return {'ref': ref, 'value': value}
			return None

		found = await self._poll(matches, timeout, poll)
		if found is None:
			raise ActionFailedError(f'Timeout waiting for value of {ref} to match: {pattern}')
		return found
