"""git-keeper: Scheduled backups of personal files to a git repository.

This package provides file discovery, the working-copy synchronisation state
machine, the backup orchestrator run by cron, and the command-line interface
used to configure it.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    exceptions,
    git_wrapper,
    repository,
    scanner,
    service,
    trust,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "exceptions",
    "git_wrapper",
    "repository",
    "scanner",
    "service",
    "trust",
]
