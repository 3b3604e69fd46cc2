"""
wbstrack: Work-Breakdown-Structure task lifecycle engine.

Tracks a tree of tasks linked by precedence edges, each carrying artifact
references and completion conditions, and keeps every task's status in sync
with its dependees and its subtree.

Key features:
- Hierarchical tasks with cycle-safe moves
- Dependency graph with per-edge artifact links
- Status engine with ancestor propagation and cycle guard
- Transactional lifecycle service with optimistic concurrency
"""

__version__ = "0.1.0"
__license__ = "MIT"

from wbstrack.runtime import WbsRuntime

__all__ = [
    "__version__",
    "WbsRuntime",
]
