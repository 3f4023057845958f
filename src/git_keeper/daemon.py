import dataclasses
import datetime
import logging
import shutil
import sys
from pathlib import Path, PurePosixPath

from rich.console import Console

from .config import Config
from .constants import APP_NAME, LOG_FILE
from .exceptions import KeeperError
from .git_wrapper import CommandExecutor
from .repository import RepositorySync
from .scanner import discover
from .trust import TrustPrompt, ensure_trust_material

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

console = Console()

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

GENERATED_IGNORE = PurePosixPath(".gitignore")
"""PurePosixPath: Working-copy path reserved for the generated ignore patterns."""


def setup_logging(log_file: Path = LOG_FILE, interactive: bool = False) -> None:
    """Configures the logging subsystem.

    The durable log is opened in append mode and never rotated. Calling this
    again replaces the handlers from the previous call.

    Args:
        log_file (Path, optional): The durable log. Defaults to the state dir log.
        interactive (bool, optional): If True, operator output goes through the
            rich console only. If False, records are also written to stderr
            (captured by cron).
    """
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        console.print(f"[yellow]Could not open log file {log_file}: {e}[/yellow]")

    if not interactive:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)


def _report(
    message: str, level: int = logging.INFO, style: str = "", interactive: bool = True
) -> None:
    """Sends a stage outcome to the durable log and, when attended, the console."""
    logger.log(level, message)
    if interactive:
        console.print(message, style=style or None, markup=False)


def copy_file_to_repo(
    source: Path, working_copy: Path, destination: PurePosixPath
) -> Path:
    """Copies one eligible file into the working copy.

    Args:
        source (Path): The file on the local filesystem.
        working_copy (Path): The root of the working copy.
        destination (PurePosixPath): Where the file lives inside the working copy.

    Returns:
        Path: The written file.

    Raises:
        OSError: If the file cannot be read or written.
    """
    target = working_copy.joinpath(*destination.parts)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)
    return target


def run_backup(
    config: Config | None = None,
    dry_run: bool = False,
    interactive: bool = False,
    executor: CommandExecutor | None = None,
    ask: TrustPrompt | None = None,
) -> bool:
    """Runs one backup pass from discovery to push.

    Args:
        config (Config | None, optional): Pre-loaded configuration. Loaded from
            disk when omitted.
        dry_run (bool, optional): Simulate the commit and skip the push.
        interactive (bool, optional): Print stage outcomes to the console.
        executor (CommandExecutor | None, optional): Runs git and ssh-keyscan.
        ask (TrustPrompt | None, optional): Supplies missing SSH material.

    Returns:
        bool: True if the pass completed, False if a fatal error stopped it.
    """
    try:
        if config is None:
            config = Config.load()
        setup_logging(config.paths.log_file, interactive)
        _report(
            f"Starting {'dry run' if dry_run else 'backup'} of "
            f"{len(config.backup.roots)} root(s) to {config.remote.url}",
            style="bold blue",
            interactive=interactive,
        )

        ensure_trust_material(config, ask=ask, executor=executor)

        sync = RepositorySync(
            config.remote,
            config.working_copy,
            executor=executor,
            ssh_key=config.paths.ssh_key,
        )
        sync.ensure_repository()
        _report(
            f"Working copy ready at {sync.path}.",
            style="green",
            interactive=interactive,
        )

        options = dataclasses.replace(
            config.discovery_options(),
            exclude_paths=frozenset({config.paths.workspace_dir}),
        )
        result = discover(config.backup.roots, options)
        if interactive:
            # Already logged by the scanner.
            for error in result.errors:
                console.print(error, style="yellow", markup=False)

        ignore_file = sync.path / ".gitignore"
        ignore_file.write_text(result.gitignore_content())
        _report(
            f"Wrote {len(result.ignore_patterns)} ignore pattern(s) to {ignore_file}.",
            interactive=interactive,
        )

        copied = 0
        for item in result.files:
            if item.destination == GENERATED_IGNORE:
                logger.info(f"Not copying {item.source} over the generated .gitignore.")
                continue
            try:
                copy_file_to_repo(item.source, sync.path, item.destination)
                copied += 1
            except OSError as e:
                _report(
                    f"Failed to copy {item.source}: {e}",
                    logging.WARNING,
                    "yellow",
                    interactive,
                )
        _report(
            f"Copied {copied} of {len(result.files)} file(s).",
            interactive=interactive,
        )

        message = datetime.datetime.now().strftime(
            config.backup.commit_message_template
        )
        committed = sync.commit(message, dry_run=dry_run)

        if dry_run:
            _report("Dry run successful.", style="bold green", interactive=interactive)
            return True

        if not committed:
            _report(
                "No changes since the last backup, skipping push.",
                interactive=interactive,
            )
        else:
            outcome = sync.push()
            _report(
                f"Pushed to '{outcome.branch}'"
                f"{' (forced)' if outcome.forced else ''}.",
                style="green",
                interactive=interactive,
            )

        _report("Backup successful.", style="bold green", interactive=interactive)
        return True

    except (KeeperError, OSError) as e:
        _report(f"Backup failed: {e}", logging.ERROR, "bold red", interactive)
        return False


def main() -> None:
    """Entry point for scheduled runs: one unattended backup pass."""
    setup_logging(LOG_FILE, interactive=False)
    if not run_backup(interactive=False):
        sys.exit(1)


if __name__ == "__main__":
    main()
