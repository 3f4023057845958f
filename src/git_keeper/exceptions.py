"""Exceptions for git-keeper.

Lower layers raise these to describe what failed; the backup orchestrator
decides whether a failure ends the run.
"""


class KeeperError(RuntimeError):
    """Base class for all git-keeper failures."""


class ConfigError(KeeperError):
    """Raised when the configuration file is missing, unreadable, or incomplete."""


class TrustError(KeeperError):
    """Raised when SSH key or known-hosts material is missing or cannot be written."""


class GitError(KeeperError):
    """Raised when a git command exits with a non-zero status.

    Attributes:
        operation (str): The git subcommand that failed (e.g. ``clone``).
        stderr (str): The diagnostic output captured from git.
    """

    def __init__(self, operation: str, stderr: str = "") -> None:
        self.operation = operation
        self.stderr = stderr.strip()
        message = f"git {operation} failed"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class SyncError(KeeperError):
    """Raised when the working copy cannot be brought in sync with its remote."""


class RemoteMismatchError(SyncError):
    """Raised when an existing working copy points at a different remote."""


class PushRejectedError(SyncError):
    """Raised when the push ladder cannot deliver the backup commit."""


class DiscoveryError(KeeperError):
    """Raised when a discovery pass produces an unusable result."""


class DestinationCollisionError(DiscoveryError):
    """Raised when two source files map onto the same working-copy path."""


class ScheduleError(KeeperError):
    """Raised when the periodic job cannot be read, validated, or installed."""
