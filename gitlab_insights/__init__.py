"""
GitLab Insights - Polls a GitLab instance and scores its projects.

Produces health, security, quality, cost, adoption and DevOps maturity
reports as CSV files and an HTML dashboard. Runs are checkpointed so an
interrupted run resumes where it stopped. No write operations are
performed against GitLab.
"""

__version__ = "0.1.0"

from .checkpoint import CheckpointStore
from .config import InsightsConfig
from .gitlab_client import GitLabClient
from .orchestrator import FatalStartupError, InsightsOrchestrator, run_insights
from .rate_limiting import RateLimiter

__all__ = [
    "CheckpointStore",
    "FatalStartupError",
    "GitLabClient",
    "InsightsConfig",
    "InsightsOrchestrator",
    "RateLimiter",
    "run_insights",
    "__version__",
]
