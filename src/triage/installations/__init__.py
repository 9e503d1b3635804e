"""GitHub App installation lifecycle handling."""

from src.triage.installations.sync import InstallationSynchronizer, SyncResult

__all__ = ["InstallationSynchronizer", "SyncResult"]
