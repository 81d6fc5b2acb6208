"""
GitLab Inventory Agent - Sizes every project of one or more GitLab groups.

Produces a per-project statistics CSV and a report of project names that
collide across groups, for migration planning.
No write operations are performed.
"""

__version__ = "0.1.0"

from .conflicts import ConflictIndex
from .crawler import ResourceCrawler
from .gitlab_client import GitLabClient, PageResult
from .orchestrator import GroupWalker, InventoryOrchestrator, WalkTarget, run_inventory
from .visitor import AggregationFlags, ProjectVisitor

__all__ = [
    "AggregationFlags",
    "ConflictIndex",
    "GitLabClient",
    "GroupWalker",
    "InventoryOrchestrator",
    "PageResult",
    "ProjectVisitor",
    "ResourceCrawler",
    "WalkTarget",
    "run_inventory",
    "__version__",
]
