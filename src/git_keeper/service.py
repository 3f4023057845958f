import logging
import re
import shutil
import sys

from rich.console import Console

from .constants import APP_NAME, CRON_TAG
from .exceptions import ScheduleError
from .git_wrapper import CommandExecutor, SubprocessExecutor

console = Console()
logger = logging.getLogger(APP_NAME)

SCHEDULE_PRESETS = {
    "hourly": "0 * * * *",
    "daily": "0 0 * * *",
    "weekly": "0 0 * * 0",
    "monthly": "0 0 1 * *",
    "every 5 minutes": "*/5 * * * *",
    "every 15 minutes": "*/15 * * * *",
    "every 30 minutes": "*/30 * * * *",
}
"""dict[str, str]: Human-friendly schedule names and their cron expressions."""

CRON_MACROS = {
    "@reboot",
    "@yearly",
    "@annually",
    "@monthly",
    "@weekly",
    "@daily",
    "@midnight",
    "@hourly",
}

_CRON_FIELD = re.compile(r"^[0-9A-Za-z*/,\-?]+$")


def resolve_schedule(value: str) -> str:
    """Turns a preset name, cron macro, or cron expression into a cron spec.

    Args:
        value (str): e.g. 'hourly', '@daily', or '*/10 * * * *'.

    Returns:
        str: A crontab schedule.

    Raises:
        ScheduleError: If the value is not recognised.
    """
    cleaned = " ".join(value.split())
    if cleaned.lower() in SCHEDULE_PRESETS:
        return SCHEDULE_PRESETS[cleaned.lower()]
    if cleaned.lower() in CRON_MACROS:
        return cleaned.lower()

    parts = cleaned.split(" ")
    if len(parts) == 5 and all(_CRON_FIELD.match(p) for p in parts):
        return cleaned
    raise ScheduleError(f"Unsupported schedule format: '{value}'")


def get_executable() -> str:
    """Locates the installed daemon executable in the system path.

    Returns:
        str: The absolute path to the 'git-keeper-daemon' executable.

    Raises:
        SystemExit: If the executable is not found in the PATH.
    """
    exe = shutil.which("git-keeper-daemon")
    if not exe:
        console.print(
            "[bold red]ERROR:[/bold red] Could not find 'git-keeper-daemon'. "
            "Ensure the package is installed."
        )
        sys.exit(1)
    return exe


def read_crontab(executor: CommandExecutor | None = None) -> str:
    """Reads the current user's crontab.

    Returns:
        str: The crontab contents, or an empty string if the user has none.

    Raises:
        ScheduleError: If crontab cannot be read for another reason.
    """
    executor = executor or SubprocessExecutor()
    res = executor.run(["crontab", "-l"])
    if res.ok:
        return res.stdout
    if "no crontab for" in res.output.lower():
        return ""
    raise ScheduleError(f"Error reading crontab: {res.output}")


def _without_own_jobs(crontab: str) -> list[str]:
    return [line for line in crontab.splitlines() if CRON_TAG not in line]


def _write_crontab(lines: list[str], executor: CommandExecutor) -> None:
    content = "\n".join(lines).strip("\n")
    content = f"{content}\n" if content else ""
    res = executor.run(["crontab", "-"], input=content)
    if not res.ok:
        raise ScheduleError(f"Error writing crontab: {res.output}")


def install_periodic_job(
    schedule: str, command: str, executor: CommandExecutor | None = None
) -> str:
    """Installs (or replaces) this tool's crontab entry.

    Any entry previously tagged as belonging to git-keeper is removed first,
    so repeated installs leave exactly one job.

    Args:
        schedule (str): A cron expression, macro, or preset name.
        command (str): The command line cron should run.
        executor (CommandExecutor | None, optional): Runs crontab.

    Returns:
        str: The crontab line that was installed.

    Raises:
        ScheduleError: If the schedule is invalid or crontab fails.
    """
    executor = executor or SubprocessExecutor()
    spec = resolve_schedule(schedule)
    entry = f"{spec} {command} {CRON_TAG}"

    lines = _without_own_jobs(read_crontab(executor))
    lines.append(entry)
    _write_crontab(lines, executor)

    logger.info(f"Cron job set up with schedule: {spec}")
    return entry


def uninstall(executor: CommandExecutor | None = None) -> bool:
    """Removes this tool's crontab entry.

    Returns:
        bool: True if an entry was removed.
    """
    executor = executor or SubprocessExecutor()
    current = read_crontab(executor)
    lines = _without_own_jobs(current)
    if len(lines) == len(current.splitlines()):
        return False
    _write_crontab(lines, executor)
    logger.info("Cron job removed.")
    return True


def is_installed(executor: CommandExecutor | None = None) -> bool:
    """Checks whether a git-keeper crontab entry exists."""
    try:
        return CRON_TAG in read_crontab(executor)
    except ScheduleError as e:
        logger.debug(f"Could not inspect crontab: {e}")
        return False
