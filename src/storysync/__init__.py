"""storysync - reconcile user-story CSV files with GitHub issues.

High-level public API:

from storysync import SyncOrchestrator, load_config
from storysync.runtime import build_client

cfg = load_config('storysync.config.yaml')
orch = SyncOrchestrator(cfg, build_client(cfg))
summary = orch.run(dry_run=True)
print(summary.totals())

The CSV files stay the source of truth; issues are patched section by section
so manual edits outside the managed sections survive.
"""

from __future__ import annotations

from .composer import ComposeResult, ComposeSettings, compose_body
from .config import SyncConfig, load_config
from .csv_loader import load_all, load_records
from .github_rest import ApiError, GitHubRestClient, RateLimitExceeded
from .matcher import MatchResult, match_records
from .models import CsvRecord, DuplicateGroup, Issue, Link
from .orchestrator import SyncOrchestrator, SyncSummary

__version__ = "0.2.0"

__all__ = [
    "__version__",
    "ApiError",
    "ComposeResult",
    "ComposeSettings",
    "CsvRecord",
    "DuplicateGroup",
    "GitHubRestClient",
    "Issue",
    "Link",
    "MatchResult",
    "RateLimitExceeded",
    "SyncConfig",
    "SyncOrchestrator",
    "SyncSummary",
    "compose_body",
    "load_all",
    "load_config",
    "load_records",
    "match_records",
]
