import os
from pathlib import Path

"""Global constants and default path definitions for git-keeper.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the default discovery and branch settings used across
the application.
"""

# --- Identity ---
APP_NAME = "git-keeper"
"""str: The human-readable application name (also the logger name)."""

CRON_TAG = "# git-keeper backup job"
"""str: Marker appended to crontab entries owned by this tool."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

_XDG_DATA = os.environ.get("XDG_DATA_HOME")
_BASE_DATA = Path(_XDG_DATA) if _XDG_DATA else Path.home() / ".local/share"

STATE_DIR = _BASE_STATE / "git-keeper"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "git-keeper.log"
"""Path: The default durable log file."""

WORKSPACE_DIR = _BASE_DATA / "git-keeper"
"""Path: The parent directory holding working copies of backup repositories."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-keeper"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

SSH_KEY_FILE: Path = Path.home() / ".ssh/id_rsa"
"""Path: The default private key used for SSH authentication."""

KNOWN_HOSTS_FILE: Path = Path.home() / ".ssh/known_hosts"
"""Path: The default SSH trust store."""

# --- Git Constants ---
DEFAULT_REMOTE = "origin"
DEFAULT_PRIMARY_BRANCH = "main"
DEFAULT_SECONDARY_BRANCH = "alternate"
DEFAULT_COMMIT_TEMPLATE = "Backup on %Y-%m-%d %H:%M:%S"
DEFAULT_SCHEDULE = "0 * * * *"

# --- Discovery Constants ---
MAX_FILE_SIZE = 100 * 1024 * 1024
"""int: Files larger than this many bytes are excluded from backups."""

MIN_TEXT_RATIO = 0.8
"""float: Minimum fraction of ASCII bytes for a file to be treated as text."""

JUNK_FILE_NAMES = (".DS_Store", "Thumbs.db")
"""tuple[str, ...]: Operating-system clutter that is never backed up."""

JUNK_FILE_SUFFIXES = (".log",)
"""tuple[str, ...]: File name endings that are never backed up."""

IGNORE_FILE_NAMES = (".ignore", ".gitignore")
"""
tuple[str, ...]: Per-directory ignore files honoured during discovery,
in order of precedence.
"""
