"""Tests for SSH key provisioning and known-hosts registration."""

import stat
from pathlib import Path

import pytest
from conftest import FakeExecutor, fail, ok

from git_keeper.config import Config
from git_keeper.exceptions import TrustError
from git_keeper.trust import (
    ensure_trust_material,
    is_known_host,
    register_known_host,
    remote_host,
    write_private_key,
)

KEYSCAN = (
    "github.com ssh-ed25519 "
    "AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl\n"
)


class ScriptedPrompt:
    def __init__(self, answers: list[bool], key: str = "-----KEY-----") -> None:
        self.answers = list(answers)
        self.key = key
        self.questions: list[str] = []

    def confirm(self, question: str) -> bool:
        self.questions.append(question)
        return self.answers.pop(0)

    def read_private_key(self) -> str:
        return self.key


@pytest.fixture
def ssh_config(config: Config) -> Config:
    """The shared config switched to SSH auth."""
    config.remote.auth = "ssh"
    return config


@pytest.mark.parametrize(
    "url, host",
    [
        ("git@github.com:me/dotfiles", "github.com"),
        ("https://github.com/me/dotfiles.git", "github.com"),
        ("ssh://git@gitlab.example.com:2222/me/repo.git", "gitlab.example.com"),
        ("/srv/git/repo.git", None),
    ],
)
def test_remote_host(url: str, host: str | None) -> None:
    """Verifies hostname extraction for the common remote URL forms."""
    assert remote_host(url) == host


def test_write_private_key_is_owner_only(tmp_path: Path) -> None:
    """Verifies parents are created and the key is written with mode 0600."""
    key = tmp_path / "fresh" / ".ssh" / "id_rsa"

    written = write_private_key("-----BEGIN KEY-----\nabc\n-----END KEY-----", key)

    assert written == key
    assert key.read_text().endswith("-----END KEY-----\n")
    assert stat.S_IMODE(key.stat().st_mode) == 0o600


def test_write_private_key_overwrites(tmp_path: Path) -> None:
    """Verifies that an existing key is replaced and tightened to 0600."""
    key = tmp_path / "id_rsa"
    key.write_text("old")
    key.chmod(0o644)

    write_private_key("new\n", key)

    assert key.read_text() == "new\n"
    assert stat.S_IMODE(key.stat().st_mode) == 0o600


def test_register_known_host_appends_scan(tmp_path: Path) -> None:
    """Verifies that ssh-keyscan output is appended to the trust store."""
    known_hosts = tmp_path / ".ssh" / "known_hosts"
    executor = FakeExecutor().on("ssh-keyscan", results=[ok(KEYSCAN)])

    assert register_known_host("github.com", known_hosts, executor) is True

    assert known_hosts.read_text() == KEYSCAN
    assert executor.calls[0].args == ["ssh-keyscan", "github.com"]
    assert is_known_host("github.com", known_hosts)


def test_register_known_host_is_idempotent(tmp_path: Path) -> None:
    """Verifies that a second registration neither scans nor duplicates."""
    known_hosts = tmp_path / "known_hosts"
    known_hosts.write_text("# comment\n" + KEYSCAN)
    executor = FakeExecutor()

    assert register_known_host("github.com", known_hosts, executor) is True

    assert executor.calls == []
    assert known_hosts.read_text().count("github.com") == 1


def test_register_known_host_reports_scan_failure(tmp_path: Path) -> None:
    """Verifies that a failed or empty scan leaves the store untouched."""
    known_hosts = tmp_path / "known_hosts"
    executor = FakeExecutor().on(
        "ssh-keyscan", results=[fail("getaddrinfo: Name or service not known"), ok("")]
    )

    assert register_known_host("nowhere.invalid", known_hosts, executor) is False
    assert register_known_host("nowhere.invalid", known_hosts, executor) is False
    assert not known_hosts.exists()


def test_is_known_host_matches_comma_separated_names(tmp_path: Path) -> None:
    """Verifies matching against host lists like 'host,ip'."""
    known_hosts = tmp_path / "known_hosts"
    known_hosts.write_text("github.com,140.82.112.3 ssh-rsa AAAA\n")

    assert is_known_host("140.82.112.3", known_hosts)
    assert not is_known_host("gitlab.com", known_hosts)
    assert not is_known_host("github.com", tmp_path / "missing")


def test_https_auth_needs_no_material(config: Config) -> None:
    """Verifies that HTTPS remotes skip the SSH checks entirely."""
    ensure_trust_material(config, ask=None, executor=FakeExecutor())


def test_missing_key_without_prompt_is_fatal(ssh_config: Config) -> None:
    """Verifies that a scheduled run cannot invent a key."""
    with pytest.raises(TrustError, match="not provided"):
        ensure_trust_material(ssh_config, ask=None)


def test_declined_key_is_fatal(ssh_config: Config) -> None:
    """Verifies that the operator can refuse to provide a key."""
    with pytest.raises(TrustError):
        ensure_trust_material(ssh_config, ask=ScriptedPrompt([False]))
    assert not ssh_config.paths.ssh_key.exists()


def test_interactive_bootstrap_writes_key_and_host(ssh_config: Config) -> None:
    """Verifies the full interactive path: key pasted, host scanned."""
    prompt = ScriptedPrompt([True, True], key="-----KEY-----")
    executor = FakeExecutor().on("ssh-keyscan", results=[ok(KEYSCAN)])

    ensure_trust_material(ssh_config, ask=prompt, executor=executor)

    assert ssh_config.paths.ssh_key.read_text() == "-----KEY-----\n"
    assert is_known_host("github.com", ssh_config.paths.known_hosts)
    assert len(prompt.questions) == 2


def test_unknown_host_without_prompt_is_fatal(ssh_config: Config) -> None:
    """Verifies that an unattended run does not trust new hosts on its own."""
    write_private_key("key", ssh_config.paths.ssh_key)

    with pytest.raises(TrustError, match="host key"):
        ensure_trust_material(ssh_config, ask=None, executor=FakeExecutor())


def test_known_host_and_key_pass_silently(ssh_config: Config) -> None:
    """Verifies that existing material needs no interaction."""
    write_private_key("key", ssh_config.paths.ssh_key)
    ssh_config.paths.known_hosts.write_text(KEYSCAN)
    executor = FakeExecutor()

    ensure_trust_material(ssh_config, ask=None, executor=executor)

    assert executor.calls == []


def test_failed_host_registration_is_fatal(ssh_config: Config) -> None:
    """Verifies that an accepted but failing scan stops the run."""
    write_private_key("key", ssh_config.paths.ssh_key)
    executor = FakeExecutor().on("ssh-keyscan", results=[fail("timeout")])

    with pytest.raises(TrustError, match="Could not add github.com"):
        ensure_trust_material(ssh_config, ask=ScriptedPrompt([True]), executor=executor)
