import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .constants import APP_NAME
from .exceptions import GitError

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class CommandResult:
    """The outcome of a single external command.

    Attributes:
        returncode (int): The process exit status.
        stdout (str): Captured standard output.
        stderr (str): Captured standard error.
    """

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """bool: True if the command exited successfully."""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """str: Both captured streams, for diagnostics that git splits across them."""
        return "\n".join(s for s in (self.stdout, self.stderr) if s).strip()


class CommandExecutor(Protocol):
    """Port for running external tools (git, crontab, ssh-keyscan)."""

    def run(
        self,
        args: list[str],
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
    ) -> CommandResult: ...


class SubprocessExecutor:
    """Runs commands synchronously with `subprocess`, capturing both streams."""

    def run(
        self,
        args: list[str],
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
    ) -> CommandResult:
        """Executes a command and returns its status and captured output.

        Args:
            args (list[str]): The full command line.
            cwd (Path | None, optional): Working directory. Defaults to None.
            env (dict[str, str] | None, optional): Variables layered over the
                current environment. Defaults to None.
            input (str | None, optional): Text fed to stdin. Defaults to None.

        Returns:
            CommandResult: The exit status and captured output. A missing
            executable is reported as exit status 127.
        """
        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)
        try:
            res = subprocess.run(
                args,
                cwd=cwd,
                env=full_env,
                input=input,
                capture_output=True,
                text=True,
                check=False,
            )
        except (FileNotFoundError, NotADirectoryError) as e:
            return CommandResult(127, "", str(e))
        return CommandResult(res.returncode, res.stdout or "", res.stderr or "")


class GitRepo:
    """A wrapper around the git command line for a single working copy.

    Every command goes through a `CommandExecutor`, so tests can substitute a
    fake. Each invocation is logged before it runs and again with its outcome.

    Attributes:
        path (Path): The working copy root (may not exist yet before a clone).
        executor (CommandExecutor): The port used to run git.
        env (dict[str, str]): Extra environment variables for every git call.
    """

    def __init__(
        self,
        path: Path,
        executor: CommandExecutor | None = None,
        env: dict[str, str] | None = None,
    ):
        self.path = path
        self.executor = executor or SubprocessExecutor()
        self.env = dict(env or {})

    def is_initialized(self) -> bool:
        """Returns True if the working copy has a .git directory."""
        return (self.path / ".git").exists()

    def _exec(
        self, args: list[str], cwd: Path | None = None, quiet_failure: bool = False
    ) -> CommandResult:
        """Executes a git command and logs it, without raising on failure.

        Args:
            args (list[str]): Arguments to pass to git.
            cwd (Path | None, optional): Overrides the working directory.
            quiet_failure (bool, optional): Log a failure at debug level, for
                commands whose failure is an expected answer.

        Returns:
            CommandResult: The raw result of the command.
        """
        op = args[0]
        logger.info(f"Executing git {op}")
        res = self.executor.run(
            ["git", *args], cwd=cwd or self.path, env=self.env or None
        )
        if res.ok:
            logger.info(f"git {op} successful")
        else:
            level = logging.DEBUG if quiet_failure else logging.WARNING
            logger.log(level, f"git {op} failed ({res.returncode}): {res.output}")
        return res

    def _run(self, args: list[str], cwd: Path | None = None) -> str:
        """Executes a git command within the repository context.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        res = self._exec(args, cwd=cwd)
        if not res.ok:
            raise GitError(args[0], res.output)
        return res.stdout.strip()

    def clone(self, url: str) -> None:
        """Clones `url` into this working copy's path.

        Raises:
            GitError: If the clone fails.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._run(["clone", url, str(self.path)], cwd=self.path.parent)

    def fetch(self, remote: str) -> None:
        """Fetches all branches from `remote`."""
        self._run(["fetch", remote])

    def remote_branches(self, remote: str) -> list[str]:
        """Lists branch names the working copy knows on `remote`.

        Returns:
            list[str]: Short branch names (e.g. ``main``), without the remote prefix.
        """
        output = self._run(["branch", "-r", "--format=%(refname:short)"])
        prefix = f"{remote}/"
        branches = []
        for line in output.splitlines():
            name = line.strip()
            if name.startswith(prefix) and name != f"{remote}/HEAD":
                branches.append(name[len(prefix) :])
        return branches

    def remotes(self) -> str:
        """Returns the verbose remote listing (``git remote -v``)."""
        return self._run(["remote", "-v"])

    def checkout_new_branch(self, branch: str) -> CommandResult:
        """Creates `branch` and switches to it. Failure is returned, not raised."""
        return self._exec(["checkout", "-b", branch])

    def create_branch(self, branch: str) -> CommandResult:
        """Creates `branch` at HEAD without switching. Failure is returned."""
        return self._exec(["branch", branch])

    def has_commits(self) -> bool:
        """Returns False while HEAD is unborn (freshly cloned empty repository)."""
        res = self._exec(
            ["rev-parse", "--verify", "--quiet", "HEAD"], quiet_failure=True
        )
        return res.ok

    def commit_empty(self, message: str) -> None:
        """Creates a commit with no changes, giving a new branch something to push."""
        self._run(["commit", "--allow-empty", "-m", message])

    def reset_hard(self, ref: str) -> None:
        """Discards local state and moves the current branch to `ref`."""
        self._run(["reset", "--hard", ref])

    def add_all(self) -> None:
        """
        Stages all changes (modified, deleted, and untracked files)
        in the working directory.
        """
        self._run(["add", "-A"])

    def commit(self, message: str, dry_run: bool = False) -> CommandResult:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
            dry_run (bool, optional): Only report what would be committed
                (``--dry-run``). Defaults to False.

        Returns:
            CommandResult: The raw result, so callers can recognise an empty commit.
        """
        cmd = ["commit", "-m", message]
        if dry_run:
            cmd.append("--dry-run")
        return self._exec(cmd)

    def push(
        self,
        remote: str,
        refspec: str,
        force: bool = False,
        set_upstream: bool = False,
    ) -> CommandResult:
        """Pushes `refspec` to `remote`. Failure is returned, not raised.

        Args:
            remote (str): The remote name.
            refspec (str): The refspec to push (e.g. ``HEAD:refs/heads/main``).
            force (bool, optional): Overwrite remote history. Defaults to False.
            set_upstream (bool, optional): Record upstream tracking. Defaults to False.
        """
        cmd = ["push"]
        if set_upstream:
            cmd.append("-u")
        if force:
            cmd.append("--force")
        cmd.extend([remote, refspec])
        return self._exec(cmd)
