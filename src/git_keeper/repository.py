"""Synchronisation of the backup working copy with its remote.

`RepositorySync` decides, from the state of the working copy and the branches
the remote exposes, whether to clone, fast-forward by hard reset, or bootstrap
the primary branch. It then commits and delivers the commit through an
escalating push ladder: primary branch, secondary branch, and finally a forced
update of the secondary branch. Only rejections caused by divergent history
move the ladder forward; anything else stops it at once.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

from .constants import APP_NAME
from .exceptions import GitError, PushRejectedError, RemoteMismatchError
from .git_wrapper import CommandExecutor, CommandResult, GitRepo

if TYPE_CHECKING:
    from .config import RemoteConfig

logger = logging.getLogger(APP_NAME)

_DIVERGENCE_MARKERS = (
    "non-fast-forward",
    "fetch first",
    "[rejected]",
    "behind its remote counterpart",
)

_NOTHING_TO_COMMIT = (
    "nothing to commit",
    "nothing added to commit",
    "no changes added to commit",
)


def to_ssh_url(url: str) -> str:
    """Rewrites a GitHub HTTPS URL into its SSH form without the `.git` suffix."""
    ssh = url.replace("https://github.com/", "git@github.com:")
    return ssh.removesuffix(".git")


def resolve_clone_url(url: str, auth: str) -> str:
    """Returns the URL git should use for the given auth mode."""
    return to_ssh_url(url) if auth == "ssh" else url


def working_copy_name(url: str) -> str:
    """Derives the working copy directory name from a remote URL.

    Example: ``https://github.com/me/dotfiles.git`` -> ``dotfiles``.
    """
    name = url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    return name.removesuffix(".git") or "git-keeper-backup"


class RepoState(Enum):
    """Lifecycle of the working copy during one run."""

    ABSENT = "absent"
    CLONED_STALE = "cloned-stale"
    CLONED_SYNCED = "cloned-synced"
    COMMITTED = "committed"
    PUSHED_PRIMARY = "pushed-primary"
    PUSHED_SECONDARY = "pushed-secondary"
    PUSHED_SECONDARY_FORCED = "pushed-secondary-forced"
    FAILED = "failed"


class PushStatus(Enum):
    ACCEPTED = "accepted"
    REJECTED_DIVERGENT = "rejected-divergent"
    REJECTED_OTHER = "rejected-other"


@dataclass(frozen=True)
class PushOutcome:
    """The classified result of one push attempt.

    Attributes:
        status (PushStatus): Accepted, rejected for divergence, or rejected otherwise.
        branch (str): The remote branch the attempt targeted.
        forced (bool): Whether the attempt overwrote remote history.
        detail (str): Git's diagnostic output.
    """

    status: PushStatus
    branch: str
    forced: bool = False
    detail: str = ""

    @classmethod
    def from_result(
        cls, result: CommandResult, branch: str, forced: bool = False
    ) -> "PushOutcome":
        """Classifies a raw push result."""
        if result.ok:
            return cls(PushStatus.ACCEPTED, branch, forced, result.output)
        lowered = result.output.lower()
        if any(marker in lowered for marker in _DIVERGENCE_MARKERS):
            return cls(PushStatus.REJECTED_DIVERGENT, branch, forced, result.output)
        return cls(PushStatus.REJECTED_OTHER, branch, forced, result.output)


@dataclass(frozen=True)
class PushRung:
    """One step of the push ladder.

    Attributes:
        target (str): 'primary' or 'secondary', resolved against the remote config.
        force (bool): Whether to force the update.
        state (RepoState): The state reached when this rung is accepted.
    """

    target: str
    force: bool
    state: RepoState


PUSH_LADDER = (
    PushRung("primary", False, RepoState.PUSHED_PRIMARY),
    PushRung("secondary", False, RepoState.PUSHED_SECONDARY),
    PushRung("secondary", True, RepoState.PUSHED_SECONDARY_FORCED),
)


class RepositorySync:
    """Drives the working copy through clone, sync, commit and push.

    Attributes:
        remote (RemoteConfig): The remote URL, auth mode and branch names.
        repo (GitRepo): The git wrapper bound to the working copy.
        state (RepoState): The current state of the run.
    """

    def __init__(
        self,
        remote: "RemoteConfig",
        working_copy: Path,
        executor: CommandExecutor | None = None,
        ssh_key: Path | None = None,
        ladder: tuple[PushRung, ...] = PUSH_LADDER,
    ):
        self.remote = remote
        self.clone_url = resolve_clone_url(remote.url, remote.auth)
        env = {}
        if remote.auth == "ssh" and ssh_key is not None:
            env["GIT_SSH_COMMAND"] = f"ssh -i {ssh_key} -o BatchMode=yes"
        self.repo = GitRepo(working_copy, executor=executor, env=env)
        self.ladder = ladder
        self.state = (
            RepoState.CLONED_STALE if self.repo.is_initialized() else RepoState.ABSENT
        )

    @property
    def path(self) -> Path:
        return self.repo.path

    def _branch(self, target: str) -> str:
        if target == "primary":
            return self.remote.primary_branch
        return self.remote.secondary_branch

    def _fail(self, error: Exception) -> NoReturn:
        self.state = RepoState.FAILED
        raise error

    def ensure_repository(self) -> RepoState:
        """Brings the working copy in line with the remote.

        Clones when the working copy is absent; otherwise validates the remote
        and fetches. If the remote has the primary branch, local state is hard
        reset onto it (unpushed local commits are discarded). If not, the
        primary branch is created and pushed with upstream tracking. Finally
        the secondary branch is created locally as a fallback push target.

        Returns:
            RepoState: The state after syncing.

        Raises:
            GitError: If clone, fetch, reset or the upstream push fails.
            RemoteMismatchError: If the working copy points at another remote.
        """
        name = self.remote.name
        primary = self.remote.primary_branch

        try:
            if self.state is RepoState.ABSENT:
                logger.info(f"Working copy not found, cloning into {self.path}...")
                self.repo.clone(self.clone_url)
            else:
                logger.info(f"Working copy found at {self.path}, checking remote...")
                self.validate_remote()
                self.repo.fetch(name)

            if primary in self.repo.remote_branches(name):
                self.repo.reset_hard(f"{name}/{primary}")
            else:
                logger.info(f"Remote has no '{primary}' branch, creating it.")
                res = self.repo.checkout_new_branch(primary)
                if not res.ok:
                    logger.info(f"Branch '{primary}' not created (may already exist).")
                if not self.repo.has_commits():
                    self.repo.commit_empty("Initialize backup repository")
                res = self.repo.push(name, primary, set_upstream=True)
                if not res.ok:
                    raise GitError("push", res.output)
        except (GitError, RemoteMismatchError) as e:
            self._fail(e)

        secondary = self.remote.secondary_branch
        if not self.repo.create_branch(secondary).ok:
            logger.info(f"Branch '{secondary}' not created (may already exist).")

        self.state = RepoState.CLONED_SYNCED
        return self.state

    def validate_remote(self) -> None:
        """Checks that the working copy's remotes include the configured URL.

        Raises:
            RemoteMismatchError: If the expected URL is not configured.
        """
        listing = self.repo.remotes()
        if self.clone_url not in listing:
            raise RemoteMismatchError(
                f"Remote URL mismatch. Expected: {self.clone_url}, Found: {listing}"
            )

    def commit(self, message: str, dry_run: bool = False) -> bool:
        """Stages everything and commits it.

        Args:
            message (str): The commit message.
            dry_run (bool, optional): Simulate the commit. Defaults to False.

        Returns:
            bool: True if a commit was (or would be) made, False if there was
            nothing to commit.

        Raises:
            GitError: If staging or committing fails for any other reason.
        """
        try:
            self.repo.add_all()
            res = self.repo.commit(message, dry_run=dry_run)
        except GitError as e:
            self._fail(e)

        if res.ok:
            self.state = RepoState.COMMITTED
            return True
        if any(marker in res.output for marker in _NOTHING_TO_COMMIT):
            logger.info("Nothing to commit.")
            return False
        self._fail(GitError("commit", res.output))

    def push(self) -> PushOutcome:
        """Delivers HEAD by climbing the push ladder.

        Returns:
            PushOutcome: The accepted attempt.

        Raises:
            PushRejectedError: On a non-divergence rejection, or when the
            last rung is rejected.
        """
        outcome = None
        for rung in self.ladder:
            branch = self._branch(rung.target)
            res = self.repo.push(
                self.remote.name, f"HEAD:refs/heads/{branch}", force=rung.force
            )
            outcome = PushOutcome.from_result(res, branch, rung.force)

            if outcome.status is PushStatus.ACCEPTED:
                self.state = rung.state
                if rung.state is not RepoState.PUSHED_PRIMARY:
                    logger.warning(
                        f"Backup delivered to '{branch}'"
                        f"{' (forced)' if rung.force else ''} instead of "
                        f"'{self.remote.primary_branch}'."
                    )
                return outcome

            if outcome.status is PushStatus.REJECTED_OTHER:
                self._fail(
                    PushRejectedError(f"Push to '{branch}' rejected: {outcome.detail}")
                )

            logger.warning(f"Push to '{branch}' rejected: history has diverged.")

        detail = outcome.detail if outcome else "no push attempted"
        self._fail(PushRejectedError(f"All push attempts rejected: {detail}"))
