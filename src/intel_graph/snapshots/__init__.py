"""Point-in-time graph snapshots generated in the background."""

from intel_graph.snapshots.tasks import InlineTaskRunner, TaskRunner, ThreadedTaskRunner
from intel_graph.snapshots.manager import SnapshotManager, diff_snapshots

__all__ = [
    "InlineTaskRunner",
    "TaskRunner",
    "ThreadedTaskRunner",
    "SnapshotManager",
    "diff_snapshots",
]
