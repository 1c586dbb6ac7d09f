from flutter_mate.snapshot.formatter import format_snapshot
from flutter_mate.snapshot.views import Rect, SemanticsInfo, Snapshot, SnapshotNode

__all__ = ['Rect', 'SemanticsInfo', 'Snapshot', 'SnapshotNode', 'format_snapshot']
