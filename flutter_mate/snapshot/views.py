"""Snapshot payload returned by the Flutter app's `snapshot` extension.

Decoding is tolerant: missing keys fall back to defaults so a snapshot from an
older or newer app build still loads.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def _str(value: Any) -> str | None:
	return value if isinstance(value, str) else None


def _int(value: Any) -> int | None:
	if isinstance(value, bool):
		return None
	if isinstance(value, int):
		return value
	if isinstance(value, float) and value.is_integer():
		return int(value)
	return None


def _float(value: Any) -> float | None:
	if isinstance(value, bool) or not isinstance(value, (int, float)):
		return None
	return float(value)


def _names(value: Any) -> tuple[str, ...]:
	"""Ordered, de-duplicated list of strings."""
	if not isinstance(value, (list, tuple, set, frozenset)):
		return ()
	return tuple(dict.fromkeys(v for v in value if isinstance(v, str)))


@dataclass(frozen=True)
class Rect:
	x: float = 0.0
	y: float = 0.0
	width: float = 0.0
	height: float = 0.0

	@property
	def center(self) -> tuple[float, float]:
		return (self.x + self.width / 2, self.y + self.height / 2)

	@property
	def is_zero_area(self) -> bool:
		return self.width <= 0 or self.height <= 0

	def same_bounds_as(self, other: 'Rect', tolerance: float = 1.0) -> bool:
		return (
			abs(self.x - other.x) <= tolerance
			and abs(self.y - other.y) <= tolerance
			and abs(self.width - other.width) <= tolerance
			and abs(self.height - other.height) <= tolerance
		)

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> 'Rect':
		return cls(
			x=_float(data.get('x')) or 0.0,
			y=_float(data.get('y')) or 0.0,
			width=_float(data.get('width')) or 0.0,
			height=_float(data.get('height')) or 0.0,
		)

	def to_dict(self) -> dict[str, float]:
		return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}


@dataclass
class SemanticsInfo:
	"""Accessibility information attached to a widget."""

	id: int = 0
	identifier: str | None = None
	label: str | None = None
	value: str | None = None
	hint: str | None = None
	tooltip: str | None = None
	increased_value: str | None = None
	decreased_value: str | None = None
	flags: tuple[str, ...] = ()
	actions: tuple[str, ...] = ()
	text_direction: str | None = None
	text_selection_base: int | None = None
	text_selection_extent: int | None = None
	max_value_length: int | None = None
	current_value_length: int | None = None
	scroll_child_count: int | None = None
	scroll_index: int | None = None
	scroll_position: float | None = None
	scroll_extent_max: float | None = None
	scroll_extent_min: float | None = None
	heading_level: int | None = None
	link_url: str | None = None
	role: str | None = None
	input_type: str | None = None
	validation_result: str | None = None
	platform_view_id: int | None = None
	controls_nodes: tuple[str, ...] | None = None

	def has_action(self, action: str) -> bool:
		return action in self.actions

	def has_flag(self, flag: str) -> bool:
		return flag in self.flags

	@property
	def is_scrollable(self) -> bool:
		return any(a in self.actions for a in ('scrollUp', 'scrollDown', 'scrollLeft', 'scrollRight'))

	@property
	def has_validation_error(self) -> bool:
		return self.validation_result == 'invalid'

	@property
	def is_valid(self) -> bool:
		return self.validation_result == 'valid'

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> 'SemanticsInfo':
		controls = data.get('controlsNodes')
		return cls(
			id=_int(data.get('id')) or 0,
			identifier=_str(data.get('identifier')),
			label=_str(data.get('label')),
			value=_str(data.get('value')),
			hint=_str(data.get('hint')),
			tooltip=_str(data.get('tooltip')),
			increased_value=_str(data.get('increasedValue')),
			decreased_value=_str(data.get('decreasedValue')),
			flags=_names(data.get('flags')),
			actions=_names(data.get('actions')),
			text_direction=_str(data.get('textDirection')),
			text_selection_base=_int(data.get('textSelectionBase')),
			text_selection_extent=_int(data.get('textSelectionExtent')),
			max_value_length=_int(data.get('maxValueLength')),
			current_value_length=_int(data.get('currentValueLength')),
			scroll_child_count=_int(data.get('scrollChildCount')),
			scroll_index=_int(data.get('scrollIndex')),
			scroll_position=_float(data.get('scrollPosition')),
			scroll_extent_max=_float(data.get('scrollExtentMax')),
			scroll_extent_min=_float(data.get('scrollExtentMin')),
			heading_level=_int(data.get('headingLevel')),
			link_url=_str(data.get('linkUrl')),
			role=_str(data.get('role')),
			input_type=_str(data.get('inputType')),
			validation_result=_str(data.get('validationResult')),
			platform_view_id=_int(data.get('platformViewId')),
			controls_nodes=_names(controls) if controls is not None else None,
		)

	def to_dict(self) -> dict[str, Any]:
		d: dict[str, Any] = {'id': self.id}
		optional = {
			'identifier': self.identifier,
			'label': self.label,
			'value': self.value or None,
			'hint': self.hint,
			'tooltip': self.tooltip,
			'increasedValue': self.increased_value,
			'decreasedValue': self.decreased_value,
		}
		d.update({k: v for k, v in optional.items() if v is not None})
		d['flags'] = list(self.flags)
		d['actions'] = list(self.actions)
		optional = {
			'textDirection': self.text_direction,
			'textSelectionBase': self.text_selection_base,
			'textSelectionExtent': self.text_selection_extent,
			'maxValueLength': self.max_value_length,
			'currentValueLength': self.current_value_length,
			'scrollChildCount': self.scroll_child_count,
			'scrollIndex': self.scroll_index,
			'scrollPosition': self.scroll_position,
			'scrollExtentMax': self.scroll_extent_max
			if self.scroll_extent_max is not None and math.isfinite(self.scroll_extent_max)
			else None,
			'scrollExtentMin': self.scroll_extent_min,
			'headingLevel': self.heading_level if self.heading_level else None,
			'linkUrl': self.link_url,
			'role': self.role if self.role != 'none' else None,
			'inputType': self.input_type if self.input_type != 'none' else None,
			'validationResult': self.validation_result if self.validation_result != 'none' else None,
			'platformViewId': self.platform_view_id,
			'controlsNodes': list(self.controls_nodes) if self.controls_nodes else None,
		}
		d.update({k: v for k, v in optional.items() if v is not None})
		return d


@dataclass
class SnapshotNode:
	"""One widget in the flattened tree. `children` holds child refs."""

	ref: str = ''
	widget: str = '?'
	depth: int = 0
	bounds: Rect | None = None
	children: tuple[str, ...] = ()
	semantics: SemanticsInfo | None = None
	text_content: str | None = None

	@property
	def has_semantics(self) -> bool:
		return self.semantics is not None

	@property
	def is_interactive(self) -> bool:
		return self.semantics is not None and bool(self.semantics.actions)

	@property
	def center(self) -> tuple[float, float] | None:
		return self.bounds.center if self.bounds is not None else None

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> 'SnapshotNode':
		bounds = data.get('bounds')
		semantics = data.get('semantics')
		children = data.get('children')
		return cls(
			ref=_str(data.get('ref')) or '',
			widget=_str(data.get('widget')) or '?',
			depth=_int(data.get('depth')) or 0,
			bounds=Rect.from_dict(bounds) if isinstance(bounds, dict) else None,
			children=tuple(c for c in children if isinstance(c, str)) if isinstance(children, list) else (),
			semantics=SemanticsInfo.from_dict(semantics) if isinstance(semantics, dict) else None,
			text_content=_str(data.get('textContent')),
		)

	def to_dict(self) -> dict[str, Any]:
		d: dict[str, Any] = {'ref': self.ref, 'widget': self.widget, 'depth': self.depth}
		if self.bounds is not None:
			d['bounds'] = self.bounds.to_dict()
		d['children'] = list(self.children)
		if self.semantics is not None:
			d['semantics'] = self.semantics.to_dict()
		if self.text_content is not None:
			d['textContent'] = self.text_content
		return d


@dataclass
class Snapshot:
	"""A captured widget tree, indexed by ref."""

	success: bool
	nodes: list[SnapshotNode] = field(default_factory=list)
	error: str | None = None
	timestamp: datetime = field(default_factory=datetime.now)
	_by_ref: dict[str, SnapshotNode] = field(init=False, repr=False, compare=False)

	def __post_init__(self) -> None:
		self._by_ref = {node.ref: node for node in self.nodes}

	def get(self, ref: str) -> SnapshotNode | None:
		"""Look up a node by ref; unknown refs give None."""
		return self._by_ref.get(ref)

	def __contains__(self, ref: object) -> bool:
		return ref in self._by_ref

	@property
	def with_semantics(self) -> list[SnapshotNode]:
		return [n for n in self.nodes if n.semantics is not None]

	@property
	def roots(self) -> list[SnapshotNode]:
		return [n for n in self.nodes if n.depth == 0]

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> 'Snapshot':
		timestamp = datetime.now()
		raw_ts = data.get('timestamp')
		if isinstance(raw_ts, str):
			try:
				timestamp = datetime.fromisoformat(raw_ts)
			except ValueError:
				pass
		raw_nodes = data.get('nodes')
		nodes = [SnapshotNode.from_dict(n) for n in raw_nodes if isinstance(n, dict)] if isinstance(raw_nodes, list) else []
		return cls(
			success=data.get('success') is True,
			nodes=nodes,
			error=_str(data.get('error')),
			timestamp=timestamp,
		)

	def to_dict(self) -> dict[str, Any]:
		d: dict[str, Any] = {'success': self.success}
		if self.error is not None:
			d['error'] = self.error
		d['timestamp'] = self.timestamp.isoformat()
		d['nodeCount'] = len(self.nodes)
		d['nodesWithSemantics'] = len(self.with_semantics)
		d['nodes'] = [n.to_dict() for n in self.nodes]
		return d
