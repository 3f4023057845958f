"""Shared fixtures: a scripted stand-in for git, crontab and ssh-keyscan."""

from dataclasses import dataclass
from pathlib import Path

import pytest

from git_keeper.config import Config
from git_keeper.git_wrapper import CommandResult


@dataclass
class Call:
    args: list[str]
    cwd: Path | None
    env: dict[str, str] | None
    input: str | None


class FakeExecutor:
    """Records every command and answers from scripted responses.

    Responses are registered per argument prefix with `on()`. When several
    results are registered for one prefix they are returned in order, and
    the last one repeats. Unscripted commands succeed with no output.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self._rules: list[tuple[tuple[str, ...], list[CommandResult]]] = []

    def on(self, *prefix: str, results: list[CommandResult]) -> "FakeExecutor":
        self._rules.append((prefix, list(results)))
        return self

    def run(
        self,
        args: list[str],
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
    ) -> CommandResult:
        self.calls.append(Call(list(args), cwd, env, input))
        for prefix, results in reversed(self._rules):
            if tuple(args[: len(prefix)]) == prefix:
                return results.pop(0) if len(results) > 1 else results[0]
        return CommandResult(0)

    @property
    def git_calls(self) -> list[list[str]]:
        """Git invocations without the leading 'git'."""
        return [c.args[1:] for c in self.calls if c.args[:1] == ["git"]]


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


def fail(stderr: str, returncode: int = 1) -> CommandResult:
    return CommandResult(returncode, "", stderr)


@pytest.fixture
def executor() -> FakeExecutor:
    """A fresh scripted executor."""
    return FakeExecutor()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """A valid configuration whose paths all live under `tmp_path`."""
    conf = Config()
    conf.remote.url = "https://github.com/me/dotfiles.git"
    conf.remote.auth = "https"
    conf.backup.roots = [tmp_path / "notes"]
    conf.paths.workspace_dir = tmp_path / "workspace"
    conf.paths.log_file = tmp_path / "state" / "git-keeper.log"
    conf.paths.ssh_key = tmp_path / "ssh" / "id_rsa"
    conf.paths.known_hosts = tmp_path / "ssh" / "known_hosts"
    return conf
