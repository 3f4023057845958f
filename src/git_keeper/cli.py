import argparse
import logging
import subprocess
import sys
from collections import deque
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import daemon, service
from .config import AUTH_MODES, Config, expand_path
from .constants import APP_NAME, CONFIG_FILE, LOG_FILE
from .exceptions import ConfigError, KeeperError
from .repository import RepositorySync
from .service import SCHEDULE_PRESETS
from .trust import ensure_trust_material

logger = logging.getLogger(APP_NAME)
console = Console()


class ConsoleTrustPrompt:
    """Asks the operator for missing SSH material on the terminal."""

    def confirm(self, question: str) -> bool:
        return Confirm.ask(question, default=True, console=console)

    def read_private_key(self) -> str:
        """Reads a pasted private key, ending at its END line or a blank line."""
        console.print(
            "Paste your SSH private key. Input ends after the "
            "'-----END ... PRIVATE KEY-----' line or an empty line."
        )
        lines: list[str] = []
        while True:
            line = console.input()
            if not line.strip() and lines:
                break
            if line.strip():
                lines.append(line.rstrip())
            if line.startswith("-----END") and "PRIVATE KEY" in line:
                break
        return "\n".join(lines) + "\n"


def _load_config(path: Path | None = None) -> Config:
    """Loads the config or exits with a readable error."""
    try:
        return Config.load(path)
    except ConfigError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)


def _ask_roots() -> list[Path]:
    while True:
        raw = Prompt.ask(
            "Files or directories to back up (comma-separated)", console=console
        )
        roots = [expand_path(p.strip()) for p in raw.split(",") if p.strip()]
        if not roots:
            console.print("[yellow]At least one path is required.[/yellow]")
            continue
        for root in roots:
            if not root.exists():
                console.print(f"[yellow]Warning: {root} does not exist yet.[/yellow]")
        return roots


def run_wizard(config_path: Path | None = None) -> Config:
    """Interactively builds and saves a configuration.

    Args:
        config_path (Path | None, optional): Where to save. Defaults to the
            user config file.

    Returns:
        Config: The saved configuration.
    """
    console.print(
        Panel(
            "Let's set up your backup repository.",
            title="git-keeper setup",
            expand=False,
        )
    )
    config = Config()

    url = ""
    while not url:
        url = Prompt.ask("Remote repository URL", console=console).strip()
    config.remote.url = url
    config.remote.auth = Prompt.ask(
        "Authentication", choices=list(AUTH_MODES), default="ssh", console=console
    )
    config.backup.roots = _ask_roots()

    while True:
        schedule = Prompt.ask(
            f"Schedule ({', '.join(SCHEDULE_PRESETS)}, or a cron expression)",
            default="hourly",
            console=console,
        )
        try:
            service.resolve_schedule(schedule)
        except KeeperError as e:
            console.print(f"[yellow]{e}[/yellow]")
            continue
        config.backup.schedule = schedule
        break

    config.backup.commit_message_template = Prompt.ask(
        "Commit message template (strftime)",
        default=config.backup.commit_message_template,
        console=console,
    )

    saved = config.save(config_path)
    console.print(f"[green]✔ Configuration saved to {saved}[/green]")
    return config


def init(config_path: Path | None = None) -> Config:
    """Runs the setup wizard, then prepares trust, schedule and working copy."""
    config = run_wizard(config_path)
    try:
        ensure_trust_material(config, ask=ConsoleTrustPrompt())
        install_schedule(config)
        with console.status("Preparing working copy...", spinner="dots"):
            RepositorySync(
                config.remote, config.working_copy, ssh_key=config.paths.ssh_key
            ).ensure_repository()
    except KeeperError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)
    console.print(f"[bold green]✔ Working copy ready at {config.working_copy}[/]")
    return config


def install_schedule(config: Config) -> None:
    """Installs the periodic job for the configured schedule."""
    entry = service.install_periodic_job(
        config.backup.schedule, service.get_executable()
    )
    console.print(f"[bold green]✔ Scheduled:[/bold green] {entry}")


def show_status(config_path: Path | None = None) -> None:
    """Displays the configuration and whether the periodic job is installed."""
    if not Config.exists(config_path):
        console.print(
            f"[yellow]Not configured. No config at {config_path or CONFIG_FILE}. "
            "Run 'git-keeper init'.[/yellow]"
        )
        return
    config = _load_config(config_path)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Remote", config.remote.url)
    table.add_row("Auth", config.remote.auth)
    table.add_row(
        "Branches",
        f"{config.remote.primary_branch} (fallback: {config.remote.secondary_branch})",
    )
    table.add_row("Roots", "\n".join(str(r) for r in config.backup.roots))
    table.add_row("Working copy", str(config.working_copy))
    table.add_row("Schedule", config.backup.schedule)
    table.add_row("Log", str(config.paths.log_file))
    console.print(table)

    if service.is_installed():
        console.print("Schedule: [bold green]Installed[/bold green]")
    else:
        console.print("Schedule: [bold red]Not installed[/bold red]")


def tail_log(log_file: Path = LOG_FILE, lines: int = 50, follow: bool = False) -> None:
    """Prints the last lines of the durable log, optionally following it."""
    if not log_file.exists():
        console.print(f"[red]No log file found yet at {log_file}.[/red]")
        return

    if follow:
        console.print(f"Tailing [bold cyan]{log_file}[/bold cyan] (Ctrl+C to stop)...")
        try:
            subprocess.run(["tail", "-n", str(lines), "-f", str(log_file)])
        except KeyboardInterrupt:
            console.print("\nStopped.", style="dim")
        return

    with open(log_file, encoding="utf-8", errors="replace") as f:
        for line in deque(f, maxlen=lines):
            console.print(line.rstrip("\n"), markup=False, highlight=False)


def _log_path() -> Path:
    if Config.exists():
        try:
            return Config.load().paths.log_file
        except ConfigError as e:
            logger.debug(f"Falling back to default log path: {e}")
    return LOG_FILE


def main() -> None:
    """Main entry point for the git-keeper CLI."""
    parser = argparse.ArgumentParser(
        prog="git-keeper",
        description="Back up files and directories to a git repository.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init", help="Run the setup wizard")
    subparsers.add_parser("now", help="Run a backup immediately")
    subparsers.add_parser("dry-run", help="Simulate a backup without pushing")
    subparsers.add_parser("status", help="Show configuration and schedule status")
    subparsers.add_parser("schedule", help="Install or update the periodic job")
    subparsers.add_parser("unschedule", help="Remove the periodic job")
    log_parser = subparsers.add_parser("log", help="Show the backup log")
    log_parser.add_argument(
        "--lines", "-n", type=int, default=50, help="Number of lines (default: 50)"
    )
    log_parser.add_argument(
        "--follow", "-f", action="store_true", help="Keep printing new entries"
    )

    args = parser.parse_args()

    if args.command in (None, "init", "now", "dry-run"):
        daemon.setup_logging(LOG_FILE, interactive=True)

    if args.command == "init":
        init()
        return
    elif args.command == "now":
        ok = daemon.run_backup(
            _load_config(), interactive=True, ask=ConsoleTrustPrompt()
        )
        sys.exit(0 if ok else 1)
    elif args.command == "dry-run":
        ok = daemon.run_backup(
            _load_config(), dry_run=True, interactive=True, ask=ConsoleTrustPrompt()
        )
        sys.exit(0 if ok else 1)
    elif args.command == "status":
        show_status()
        return
    elif args.command == "schedule":
        try:
            install_schedule(_load_config())
        except KeeperError as e:
            console.print(f"[bold red]ERROR:[/bold red] {e}")
            sys.exit(1)
        return
    elif args.command == "unschedule":
        try:
            removed = service.uninstall()
        except KeeperError as e:
            console.print(f"[bold red]ERROR:[/bold red] {e}")
            sys.exit(1)
        if removed:
            console.print("[bold green]✔ Schedule removed.[/bold green]")
        else:
            console.print("No git-keeper schedule installed.", style="dim")
        return
    elif args.command == "log":
        tail_log(_log_path(), lines=args.lines, follow=args.follow)
        return

    # Default Action (if no subcommand is run)
    if Config.exists():
        config = _load_config()
    else:
        config = init()
    ok = daemon.run_backup(config, interactive=True, ask=ConsoleTrustPrompt())
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
