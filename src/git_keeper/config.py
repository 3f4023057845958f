import json
import logging
import re
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_COMMIT_TEMPLATE,
    DEFAULT_PRIMARY_BRANCH,
    DEFAULT_REMOTE,
    DEFAULT_SCHEDULE,
    DEFAULT_SECONDARY_BRANCH,
    IGNORE_FILE_NAMES,
    JUNK_FILE_NAMES,
    JUNK_FILE_SUFFIXES,
    KNOWN_HOSTS_FILE,
    LOG_FILE,
    MAX_FILE_SIZE,
    MIN_TEXT_RATIO,
    SSH_KEY_FILE,
    WORKSPACE_DIR,
)
from .exceptions import ConfigError
from .repository import resolve_clone_url, working_copy_name
from .scanner import DiscoveryOptions

logger = logging.getLogger(APP_NAME)

AUTH_MODES = ("ssh", "https")

_PATH_KEYS = {"workspace_dir", "log_file", "ssh_key", "known_hosts"}


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def expand_path(value: str | Path) -> Path:
    """Expands `~` and makes a configured path absolute."""
    return Path(value).expanduser().absolute()


@dataclass
class RemoteConfig:
    """Remote repository settings.

    Attributes:
        url (str): The remote repository URL as entered by the user.
        auth (str): Authentication mode, 'ssh' or 'https'.
        name (str): The git remote name inside the working copy.
        primary_branch (str): The branch backups normally land on.
        secondary_branch (str): The fallback branch used when the primary diverged.
    """

    url: str = ""
    auth: str = "ssh"
    name: str = DEFAULT_REMOTE
    primary_branch: str = DEFAULT_PRIMARY_BRANCH
    secondary_branch: str = DEFAULT_SECONDARY_BRANCH


@dataclass
class BackupConfig:
    """What to back up and when.

    Attributes:
        roots (list[Path]): Files and directories to mirror, in order.
        schedule (str): A cron expression or preset name.
        commit_message_template (str): A strftime template for commit messages.
    """

    roots: list[Path] = field(default_factory=list)
    schedule: str = DEFAULT_SCHEDULE
    commit_message_template: str = DEFAULT_COMMIT_TEMPLATE


@dataclass
class LimitsConfig:
    """Discovery thresholds.

    Attributes:
        max_file_size (int): Max bytes for a file before it is excluded.
        min_text_ratio (float): Minimum share of ASCII bytes for a text file.
    """

    max_file_size: int = MAX_FILE_SIZE
    min_text_ratio: float = MIN_TEXT_RATIO


@dataclass
class FilesConfig:
    """File filtering settings.

    Attributes:
        junk_names (list[str]): Exact file names that are never backed up.
        junk_suffixes (list[str]): File name endings that are never backed up.
        skip_hidden (bool): Whether dot-files and dot-directories are skipped.
    """

    junk_names: list[str] = field(default_factory=lambda: list(JUNK_FILE_NAMES))
    junk_suffixes: list[str] = field(default_factory=lambda: list(JUNK_FILE_SUFFIXES))
    skip_hidden: bool = False


@dataclass
class PathsConfig:
    """Local filesystem locations.

    Attributes:
        workspace_dir (Path): Parent directory of the working copy.
        log_file (Path): The durable, append-only log.
        ssh_key (Path): Private key used for SSH authentication.
        known_hosts (Path): SSH trust store.
    """

    workspace_dir: Path = WORKSPACE_DIR
    log_file: Path = LOG_FILE
    ssh_key: Path = SSH_KEY_FILE
    known_hosts: Path = KNOWN_HOSTS_FILE


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        remote (RemoteConfig): Remote repository settings.
        backup (BackupConfig): Backup roots and schedule.
        limits (LimitsConfig): Discovery thresholds.
        files (FilesConfig): File filtering settings.
        paths (PathsConfig): Local paths.
    """

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    files: FilesConfig = field(default_factory=FilesConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)

    @property
    def working_copy(self) -> Path:
        """Path: The local clone of the remote repository."""
        return self.paths.workspace_dir / working_copy_name(self.remote.url)

    @property
    def clone_url(self) -> str:
        """str: The remote URL in the form git should use for the auth mode."""
        return resolve_clone_url(self.remote.url, self.remote.auth)

    def discovery_options(self) -> DiscoveryOptions:
        """Builds the scanner options from the limits and files sections."""
        return DiscoveryOptions(
            max_file_size=self.limits.max_file_size,
            min_text_ratio=self.limits.min_text_ratio,
            junk_names=frozenset(self.files.junk_names),
            junk_suffixes=tuple(self.files.junk_suffixes),
            ignore_files=IGNORE_FILE_NAMES,
            skip_hidden=self.files.skip_hidden,
        )

    @classmethod
    def exists(cls, path: Path | None = None) -> bool:
        """Returns True if a configuration file is present."""
        return (path or CONFIG_FILE).exists()

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from disk, applying defaults where necessary.

        Args:
            path (Path | None): Overrides the default configuration file.

        Returns:
            Config: The populated configuration object.

        Raises:
            ConfigError: If the file is missing, malformed, or incomplete.
        """
        config_path = path or CONFIG_FILE
        if not config_path.exists():
            raise ConfigError(
                f"Configuration not found at {config_path}. Run 'git-keeper init'."
            )

        instance = cls()
        instance._merge_from_file(config_path)
        instance.validate()
        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Could not read config {path}: {e}") from e

        for section in ("remote", "backup", "limits", "files", "paths"):
            if section in data:
                updated = self._update_dataclass(
                    section, getattr(self, section), data[section]
                )
                setattr(self, section, updated)

        unknown = set(data) - {"remote", "backup", "limits", "files", "paths"}
        if unknown:
            logger.warning(
                f"Unknown config sections: {', '.join(sorted(unknown))}. Ignoring."
            )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_file_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "min_text_ratio":
                    ratio = float(v)
                    if not 0.0 <= ratio <= 1.0:
                        raise ValueError(f"Ratio {v} outside 0..1")
                    filtered_updates[k] = ratio
                elif k in _PATH_KEYS:
                    filtered_updates[k] = expand_path(v)
                elif k == "roots":
                    filtered_updates[k] = [expand_path(p) for p in v]
                else:
                    filtered_updates[k] = v
            except (TypeError, ValueError) as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

    def validate(self) -> None:
        """Checks that the fields a backup run cannot do without are present.

        Raises:
            ConfigError: Describing the first missing or invalid setting.
        """
        if not self.remote.url:
            raise ConfigError("Config is missing [remote].url.")
        if self.remote.auth not in AUTH_MODES:
            raise ConfigError(
                f"Invalid [remote].auth '{self.remote.auth}'. "
                f"Expected one of: {', '.join(AUTH_MODES)}."
            )
        if not self.backup.roots:
            raise ConfigError("Config is missing [backup].roots.")

    def save(self, path: Path | None = None) -> Path:
        """Writes the configuration to disk as TOML.

        Args:
            path (Path | None): Overrides the default configuration file.

        Returns:
            Path: The file that was written.
        """
        config_path = path or CONFIG_FILE
        config_path.parent.mkdir(parents=True, exist_ok=True)

        lines = ["# git-keeper configuration", ""]
        for section in ("remote", "backup", "limits", "files", "paths"):
            lines.append(f"[{section}]")
            obj = getattr(self, section)
            for f in fields(obj):
                lines.append(f"{f.name} = {_toml_value(getattr(obj, f.name))}")
            lines.append("")

        config_path.write_text("\n".join(lines))
        return config_path


def _toml_value(value: Any) -> str:
    """Renders a config value as a TOML literal.

    JSON string escaping is a subset of TOML basic-string escaping.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, Path):
        return json.dumps(str(value))
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    return json.dumps(str(value))
