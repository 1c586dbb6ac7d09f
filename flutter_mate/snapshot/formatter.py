"""Human-readable rendering of snapshots.

Chains of single-child widgets that occupy the same area are collapsed into
one line (`[w1] MyApp → [w3] LoginScreen`), layout-only wrappers are hidden,
and semantic details are appended in a compact suffix.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from flutter_mate.snapshot.views import SemanticsInfo, Snapshot, SnapshotNode

# Purely structural widgets, always collapsed through and hidden from the chain
LAYOUT_WRAPPERS = frozenset(
	{
		# spacing and sizing
		'Padding',
		'SizedBox',
		'ConstrainedBox',
		'LimitedBox',
		'OverflowBox',
		'FractionallySizedBox',
		'IntrinsicHeight',
		'IntrinsicWidth',
		# alignment
		'Center',
		'Align',
		# flex children
		'Expanded',
		'Flexible',
		'Positioned',
		'Spacer',
		# decoration
		'Container',
		'DecoratedBox',
		'ColoredBox',
		'DefaultTextStyle',
		# transforms
		'Transform',
		'RotatedBox',
		'FittedBox',
		'AspectRatio',
		# clipping
		'ClipRect',
		'ClipRRect',
		'ClipOval',
		'ClipPath',
		# effects
		'Opacity',
		'ImageFiltered',
		'BackdropFilter',
		'ShaderMask',
		'ColorFiltered',
		# animations
		'AnimatedBuilder',
		'AnimatedContainer',
		'AnimatedDefaultTextStyle',
		'AnimatedOpacity',
		'AnimatedPositioned',
		'AnimatedSize',
		'AnimatedSwitcher',
		'TweenAnimationBuilder',
		'SlideTransition',
		'FadeTransition',
		'ScaleTransition',
		'RotationTransition',
		'SizeTransition',
		'DecoratedBoxTransition',
		'PositionedTransition',
		'RelativePositionedTransition',
		'AnimatedModalBarrier',
		# builders
		'ValueListenableBuilder',
		'StreamBuilder',
		'FutureBuilder',
		'LayoutBuilder',
		'OrientationBuilder',
		# other
		'MetaData',
		'KeyedSubtree',
		'RepaintBoundary',
		'Builder',
		'StatefulBuilder',
		'NotificationListener',
		'MediaQuery',
		'Theme',
		'DefaultTextEditingShortcuts',
	}
)

# Skipped when they sit between siblings
SIBLING_SPACERS = frozenset({'SizedBox', 'Spacer', 'Divider', 'VerticalDivider', 'Gap'})


@dataclass
class CollapsedEntry:
	"""One display line: a chain of (ref, widget) pairs plus aggregated info."""

	chain: list[tuple[str, str]]
	depth: int
	semantics: SemanticsInfo | None = None
	text_content: str | None = None
	children: tuple[str, ...] = field(default_factory=tuple)


def _is_hidden_spacer(node: SnapshotNode) -> bool:
	if node.widget not in ('SizedBox', 'Spacer'):
		return False
	return node.bounds is None or node.bounds.is_zero_area


def collapse_nodes(nodes: Iterable[SnapshotNode]) -> list[CollapsedEntry]:
	"""Collapse same-bounds single-child chains into display entries, depth-first from the roots."""
	node_map = {node.ref: node for node in nodes}
	result: list[CollapsedEntry] = []
	visited: set[str] = set()

	def process(node: SnapshotNode, display_depth: int) -> None:
		if node.ref in visited:
			return
		if _is_hidden_spacer(node):
			visited.add(node.ref)
			return

		chain: list[tuple[str, str]] = []
		current = node
		semantics: SemanticsInfo | None = None
		text: str | None = None

		while True:
			visited.add(current.ref)
			chain.append((current.ref, current.widget))
			if semantics is None:
				semantics = current.semantics
			if text is None and current.text_content:
				text = current.text_content

			if len(current.children) != 1 or current.widget == 'Semantics':
				break

			child_ref = current.children[0]
			child = node_map.get(child_ref)
			if child is None or child_ref in visited:
				break
			if _is_hidden_spacer(child):
				visited.add(child_ref)
				break
			if child.widget == 'Semantics':
				break

			if current.widget in LAYOUT_WRAPPERS:
				current = child
				continue
			if current.bounds is not None and child.bounds is not None and current.bounds.same_bounds_as(child.bounds):
				current = child
				continue
			break

		result.append(
			CollapsedEntry(
				chain=chain,
				depth=display_depth,
				semantics=semantics,
				text_content=text,
				children=current.children,
			)
		)

		has_siblings = len(current.children) > 1
		for child_ref in current.children:
			child = node_map.get(child_ref)
			if child is None or child_ref in visited:
				continue
			if has_siblings and child.widget in SIBLING_SPACERS and not child.children:
				visited.add(child_ref)
				continue
			process(child, display_depth + 1)

	for node in list(node_map.values()):
		if node.depth == 0:
			process(node, 0)

	return result


def escape_string(s: str, escape_dollar: bool = True) -> str:
	"""Escape control characters and quotes for single-line display."""
	escaped = (
		s.replace('\\', '\\\\')
		.replace('\r\n', '\\n')
		.replace('\n', '\\n')
		.replace('\r', '')
		.replace('\t', '\\t')
		.replace("'", "\\'")
		.replace('"', '\\"')
	)
	return escaped.replace('$', '\\$') if escape_dollar else escaped


def _format_number(value: float) -> str:
	return f'{value:.0f}'


def format_entry(entry: CollapsedEntry) -> str:
	indent = '  ' * entry.depth

	meaningful = [item for item in entry.chain if item[1] not in LAYOUT_WRAPPERS]
	display = meaningful or entry.chain[:1]
	chain_str = ' → '.join(f'[{ref}] {widget}' for ref, widget in display)

	parts: list[str] = []
	texts: list[str] = []

	def add_text(text: str | None) -> None:
		if text is None or not text.strip():
			return
		# single private-use glyphs are icons
		if len(text) == 1 and ord(text) >= 0xE000:
			return
		texts.append(escape_string(text.strip(), escape_dollar=False))

	if entry.text_content is not None:
		for t in entry.text_content.split(' | '):
			add_text(t)

	sem = entry.semantics
	if sem is not None:
		add_text(sem.label)
		if sem.value:
			parts.append(f'value = "{sem.value}"')

	if texts:
		parts.append(f'({", ".join(texts)})')

	if sem is not None:
		extra: list[str] = []
		if sem.validation_result == 'invalid':
			extra.append('invalid')
		elif sem.validation_result == 'valid':
			extra.append('valid')
		if sem.tooltip:
			extra.append(f'tooltip: "{sem.tooltip}"')
		if sem.heading_level:
			extra.append(f'heading: {sem.heading_level}')
		if sem.link_url:
			extra.append('link')
		if sem.input_type is not None and sem.input_type not in ('none', 'text'):
			extra.append(f'type: {sem.input_type}')
		elif sem.role is not None and sem.role != 'none':
			extra.append(f'role: {sem.role}')
		if extra:
			parts.append('{' + ', '.join(extra) + '}')

		if sem.actions:
			parts.append(f'[{", ".join(sem.actions)}]')

		flags = [f[2:] for f in sem.flags if f.startswith('is')]
		if flags:
			parts.append(f'({", ".join(flags)})')

		if sem.scroll_position is not None:
			max_str = _format_number(sem.scroll_extent_max) if sem.scroll_extent_max is not None else '?'
			parts.append(f'{{scroll: {_format_number(sem.scroll_position)}/{max_str}}}')

	suffix = f' {" ".join(parts)}' if parts else ''
	return f'{indent}• {chain_str}{suffix}'


def format_snapshot(snapshot: Snapshot | dict[str, Any] | list[Any]) -> list[str]:
	"""Render a snapshot (typed, raw payload, or raw node list) as display lines."""
	if isinstance(snapshot, list):
		nodes = [SnapshotNode.from_dict(n) for n in snapshot if isinstance(n, dict)]
	elif isinstance(snapshot, dict):
		nodes = Snapshot.from_dict(snapshot).nodes
	else:
		nodes = snapshot.nodes
	return [format_entry(entry) for entry in collapse_nodes(nodes)]
