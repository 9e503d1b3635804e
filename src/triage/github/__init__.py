"""GitHub API access for labeling, billing warnings and the engineer agent.

Includes rate limiting and retry logic for API resilience, and GitHub App
installation token handling.
"""

from src.triage.github.auth import GitHubAppAuth
from src.triage.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from src.triage.github.models import InstallationToken, Label

__all__ = [
    "GitHubAPIError",
    "GitHubAppAuth",
    "GitHubClient",
    "InstallationToken",
    "Label",
    "RateLimitError",
]
