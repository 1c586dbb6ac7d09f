"""Command and wire models for the flutter-mate protocol.

Every action is a closed pydantic model whose `action` literal acts as the tag.
Wire names are camelCase (aliases); Python attributes are snake_case. Optional
fields use None for "not specified", which is distinct from an explicit empty
value and is omitted on serialization.

Requests and responses travel as newline-delimited JSON over the daemon
socket. Request arguments are flattened next to `id` and `action`.
"""

import json
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field

from flutter_mate.config import LAUNCH_TIMEOUT

Direction = Literal['up', 'down', 'left', 'right']
WaitState = Literal['visible', 'hidden', 'enabled', 'disabled']

Ref = Annotated[str, Field(min_length=1, description='Element ref from snapshot (e.g. "w5").')]


class BaseCommand(BaseModel):
	"""Base for all command variants. The docstring of a subclass is its tool description."""

	model_config = ConfigDict(populate_by_name=True, extra='ignore')

	@classmethod
	def action_name(cls) -> str:
		return cls.model_fields['action'].default

	def time_budget(self) -> float:
		"""Seconds the command may legitimately run on top of the regular timeout."""
		return 0.0


# ── Connection ───────────────────────────────────────────────────────────────


class ConnectCommand(BaseCommand):
	"""Connect to a running Flutter app via its VM Service URI (http:// or ws://)."""

	action: Literal['connect'] = 'connect'
	uri: str = Field(min_length=1, description='VM Service URI printed by `flutter run`.')


class RunCommand(BaseCommand):
	"""Launch the app with `flutter run` and connect to it once the VM Service is up."""

	action: Literal['run'] = 'run'
	args: list[str] = Field(default_factory=list, description='Extra arguments passed to `flutter run`.')

	def time_budget(self) -> float:
		return LAUNCH_TIMEOUT


class CloseCommand(BaseCommand):
	"""Disconnect from the app and stop the session daemon."""

	action: Literal['close'] = 'close'


class StatusCommand(BaseCommand):
	"""Report daemon health and whether a Flutter app is connected."""

	action: Literal['status'] = 'status'


# ── Inspection ───────────────────────────────────────────────────────────────


class SnapshotCommand(BaseCommand):
	"""Capture the current UI state of the Flutter app.

	Returns a tree of widgets with refs (w0, w1, w2...) that can be used for
	subsequent interactions. Each element includes its ref, widget type, text
	content, bounds and semantics (label, value, actions, flags).
	Refs are only valid until the tree changes; re-snapshot after navigation.
	"""

	action: Literal['snapshot'] = 'snapshot'
	interactive: bool = Field(default=True, description='Only include elements that can be interacted with.')
	compact: bool = Field(default=False, description='Collapse layout-only wrappers.')
	max_depth: int | None = Field(default=None, alias='maxDepth', ge=0, description='Maximum tree depth to return.')
	selector: str | None = Field(default=None, description='Scope to the subtree under this ref.')


class FindCommand(BaseCommand):
	"""Get detailed information about a single element."""

	action: Literal['find'] = 'find'
	ref: Ref


class ScreenshotCommand(BaseCommand):
	"""Take a screenshot. Returns a base64-encoded PNG."""

	action: Literal['screenshot'] = 'screenshot'
	selector: str | None = Field(default=None, description='Capture only this element.')
	full_page: bool = Field(default=False, alias='fullPage', description='Capture the entire scrollable area.')


class GetTextCommand(BaseCommand):
	"""Get the text content of an element."""

	action: Literal['getText'] = 'getText'
	ref: Ref


class IsVisibleCommand(BaseCommand):
	"""Check if an element is visible on screen."""

	action: Literal['isVisible'] = 'isVisible'
	ref: Ref


class IsEnabledCommand(BaseCommand):
	"""Check if an element is enabled."""

	action: Literal['isEnabled'] = 'isEnabled'
	ref: Ref


# ── Touch ────────────────────────────────────────────────────────────────────


class TapCommand(BaseCommand):
	"""Tap on an element by ref. Use snapshot first to get refs."""

	action: Literal['tap'] = 'tap'
	ref: Ref


class TapAtCommand(BaseCommand):
	"""Tap at specific screen coordinates (logical pixels from top-left)."""

	action: Literal['tapAt'] = 'tapAt'
	x: float = Field(description='X coordinate.')
	y: float = Field(description='Y coordinate.')


class DoubleTapCommand(BaseCommand):
	"""Double tap on an element."""

	action: Literal['doubleTap'] = 'doubleTap'
	ref: Ref


class LongPressCommand(BaseCommand):
	"""Long press on an element."""

	action: Literal['longPress'] = 'longPress'
	ref: Ref
	duration_ms: int | None = Field(default=None, alias='durationMs', ge=0, description='Press duration in ms. Default: 500.')


class HoverCommand(BaseCommand):
	"""Hover over an element (triggers onHover/onEnter)."""

	action: Literal['hover'] = 'hover'
	ref: Ref


class DragCommand(BaseCommand):
	"""Drag from one element to another."""

	action: Literal['drag'] = 'drag'
	from_ref: str = Field(alias='from', min_length=1, description='Ref of the element to drag from.')
	to_ref: str = Field(alias='to', min_length=1, description='Ref of the element to drop onto.')


class SwipeCommand(BaseCommand):
	"""Perform a swipe gesture. Useful for dismissing or paging."""

	action: Literal['swipe'] = 'swipe'
	direction: Direction = Field(description='Swipe direction.')
	start_x: float | None = Field(default=None, alias='startX', description='Start X. Default: center of screen.')
	start_y: float | None = Field(default=None, alias='startY', description='Start Y. Default: center of screen.')
	distance: float | None = Field(default=None, description='Swipe distance in pixels. Default: 200.')
	duration_ms: int | None = Field(default=None, alias='durationMs', ge=0, description='Swipe duration in ms. Default: 300.')


class ScrollCommand(BaseCommand):
	"""Scroll a scrollable element."""

	action: Literal['scroll'] = 'scroll'
	ref: Ref
	direction: Direction = Field(description='Scroll direction.')
	amount: float | None = Field(default=None, description='Scroll amount in pixels. Default: 300.')


# ── Text input ───────────────────────────────────────────────────────────────


class FillCommand(BaseCommand):
	"""Fill a text field with text. Replaces existing content."""

	action: Literal['fill'] = 'fill'
	ref: Ref
	text: str = Field(description='Text to enter.')


class TypeTextCommand(BaseCommand):
	"""Type text into a widget using keyboard simulation.

	Use this for TextField widgets. For Semantics widgets, use fill instead.
	"""

	action: Literal['typeText'] = 'typeText'
	ref: Ref
	text: str = Field(description='Text to type.')
	delay_ms: int | None = Field(default=None, alias='delayMs', ge=0, description='Delay between characters in ms.')


class ClearCommand(BaseCommand):
	"""Clear all text from a text field."""

	action: Literal['clear'] = 'clear'
	ref: Ref


# ── Keyboard ─────────────────────────────────────────────────────────────────


class PressKeyCommand(BaseCommand):
	"""Press a keyboard key.

	Common keys: enter, tab, escape, backspace, delete,
	arrowUp, arrowDown, arrowLeft, arrowRight
	"""

	action: Literal['pressKey'] = 'pressKey'
	key: str = Field(min_length=1, description='Key name to press.')


class KeyDownCommand(BaseCommand):
	"""Press a key down without releasing it."""

	action: Literal['keyDown'] = 'keyDown'
	key: str = Field(min_length=1, description='Key name.')
	control: bool = Field(default=False, description='Hold Control.')
	shift: bool = Field(default=False, description='Hold Shift.')
	alt: bool = Field(default=False, description='Hold Alt.')
	command: bool = Field(default=False, description='Hold Command/Meta.')


class KeyUpCommand(BaseCommand):
	"""Release a key previously pressed with keyDown."""

	action: Literal['keyUp'] = 'keyUp'
	key: str = Field(min_length=1, description='Key name.')
	control: bool = Field(default=False, description='Control modifier.')
	shift: bool = Field(default=False, description='Shift modifier.')
	alt: bool = Field(default=False, description='Alt modifier.')
	command: bool = Field(default=False, description='Command/Meta modifier.')


# ── Form controls ────────────────────────────────────────────────────────────


class FocusCommand(BaseCommand):
	"""Focus on an element (for text input, etc.)."""

	action: Literal['focus'] = 'focus'
	ref: Ref


class ToggleCommand(BaseCommand):
	"""Toggle a switch or checkbox. Optionally set to a specific value."""

	action: Literal['toggle'] = 'toggle'
	ref: Ref
	value: bool | None = Field(default=None, description='Set to this value, or toggle if not provided.')


class SelectCommand(BaseCommand):
	"""Select an option from a dropdown menu."""

	action: Literal['select'] = 'select'
	ref: Ref
	value: str = Field(description='Value or label to select.')


# ── Navigation ───────────────────────────────────────────────────────────────


class NavigateCommand(BaseCommand):
	"""Navigate to a named route."""

	action: Literal['navigate'] = 'navigate'
	route: str = Field(min_length=1, description='Route name.')
	arguments: dict[str, Any] | None = Field(default=None, description='Route arguments.')


class BackCommand(BaseCommand):
	"""Navigate back (pop the navigation stack)."""

	action: Literal['back'] = 'back'


# ── Waiting ──────────────────────────────────────────────────────────────────


class WaitCommand(BaseCommand):
	"""Wait for a duration or condition.

	Either specify milliseconds for a fixed wait, or wait for an element
	to reach a specific state.
	"""

	action: Literal['wait'] = 'wait'
	milliseconds: int | None = Field(default=None, ge=0, description='Fixed wait duration, or the timeout when waiting for an element.')
	for_ref: str | None = Field(default=None, alias='for', description='Wait for this element ref.')
	state: WaitState | None = Field(default=None, description='State to wait for. Default: visible.')

	def time_budget(self) -> float:
		if self.milliseconds is not None:
			return self.milliseconds / 1000
		return 10.0 if self.for_ref is not None else 1.0


class WaitForCommand(BaseCommand):
	"""Wait for an element whose label, value or text matches a pattern to appear."""

	action: Literal['waitFor'] = 'waitFor'
	pattern: str = Field(min_length=1, description='Case-insensitive regex.')
	timeout: int = Field(default=5000, ge=0, description='Timeout in ms.')
	poll: int = Field(default=200, gt=0, description='Poll interval in ms.')

	def time_budget(self) -> float:
		return self.timeout / 1000


class WaitForDisappearCommand(BaseCommand):
	"""Wait until no element matches a pattern."""

	action: Literal['waitForDisappear'] = 'waitForDisappear'
	pattern: str = Field(min_length=1, description='Case-insensitive regex.')
	timeout: int = Field(default=5000, ge=0, description='Timeout in ms.')
	poll: int = Field(default=200, gt=0, description='Poll interval in ms.')

	def time_budget(self) -> float:
		return self.timeout / 1000


class WaitForValueCommand(BaseCommand):
	"""Wait until an element's value matches a pattern."""

	action: Literal['waitForValue'] = 'waitForValue'
	ref: Ref
	pattern: str = Field(min_length=1, description='Case-insensitive regex.')
	timeout: int = Field(default=5000, ge=0, description='Timeout in ms.')
	poll: int = Field(default=200, gt=0, description='Poll interval in ms.')

	def time_budget(self) -> float:
		return self.timeout / 1000


Command = Annotated[
	Union[
		ConnectCommand,
		RunCommand,
		CloseCommand,
		StatusCommand,
		SnapshotCommand,
		FindCommand,
		ScreenshotCommand,
		GetTextCommand,
		IsVisibleCommand,
		IsEnabledCommand,
		TapCommand,
		TapAtCommand,
		DoubleTapCommand,
		LongPressCommand,
		HoverCommand,
		DragCommand,
		SwipeCommand,
		ScrollCommand,
		FillCommand,
		TypeTextCommand,
		ClearCommand,
		PressKeyCommand,
		KeyDownCommand,
		KeyUpCommand,
		FocusCommand,
		ToggleCommand,
		SelectCommand,
		NavigateCommand,
		BackCommand,
		WaitCommand,
		WaitForCommand,
		WaitForDisappearCommand,
		WaitForValueCommand,
	],
	Field(discriminator='action'),
]

COMMAND_TYPES: dict[str, type[BaseCommand]] = {cls.action_name(): cls for cls in get_args(get_args(Command)[0])}

ACTIONS = frozenset(COMMAND_TYPES)


# ── Parse result ─────────────────────────────────────────────────────────────


@dataclass
class ParseResult:
	"""Outcome of parsing a request: a command or an error, never both."""

	command: BaseCommand | None = None
	error: str | None = None
	id: str | None = None
	raw: Any = None

	def __post_init__(self) -> None:
		if (self.command is None) == (self.error is None):
			raise ValueError('ParseResult must hold exactly one of command or error')

	@property
	def is_valid(self) -> bool:
		return self.command is not None

	@classmethod
	def ok(cls, command: BaseCommand, request_id: str | None = None, raw: Any = None) -> 'ParseResult':
		return cls(command=command, id=request_id, raw=raw)

	@classmethod
	def fail(cls, error: str, request_id: str | None = None, raw: Any = None) -> 'ParseResult':
		return cls(error=error, id=request_id, raw=raw)


# ── Wire envelopes ───────────────────────────────────────────────────────────


@dataclass
class Request:
	"""Command request from a client to the daemon."""

	id: str
	action: str
	args: dict[str, Any] = field(default_factory=dict)

	def to_dict(self) -> dict[str, Any]:
		return {'id': self.id, 'action': self.action, **self.args}

	def to_json(self) -> str:
		return json.dumps(self.to_dict())


@dataclass
class Response:
	"""Response from the daemon to a client."""

	id: str
	success: bool
	data: Any = None
	error: str | None = None

	def __post_init__(self) -> None:
		if self.success and self.error is not None:
			raise ValueError('successful response cannot carry an error')
		if not self.success and self.data is not None:
			raise ValueError('failed response cannot carry data')
		if not self.success and not self.error:
			raise ValueError('failed response must carry an error message')

	@classmethod
	def ok(cls, request_id: str, data: Any = None) -> 'Response':
		return cls(id=request_id, success=True, data=data)

	@classmethod
	def fail(cls, request_id: str, error: str) -> 'Response':
		return cls(id=request_id, success=False, error=error)

	def to_dict(self) -> dict[str, Any]:
		d: dict[str, Any] = {'id': self.id, 'success': self.success}
		if self.data is not None:
			d['data'] = self.data
		if self.error is not None:
			d['error'] = self.error
		return d

	def to_json(self) -> str:
		return json.dumps(self.to_dict())

	@classmethod
	def from_json(cls, data: str | bytes) -> 'Response':
		d = json.loads(data)
		if not isinstance(d, dict):
			raise ValueError(f'response must be a JSON object, got {type(d).__name__}')
		if not isinstance(d.get('success'), bool):
			raise ValueError('response is missing a boolean "success" field')
		return cls(
			id=d.get('id') or '',
			success=d['success'],
			data=d.get('data'),
			error=d.get('error'),
		)
