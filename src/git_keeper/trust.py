import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from .constants import APP_NAME, KNOWN_HOSTS_FILE, SSH_KEY_FILE
from .exceptions import TrustError
from .git_wrapper import CommandExecutor, SubprocessExecutor

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(APP_NAME)


class TrustPrompt(Protocol):
    """Interactive collaborator used when trust material is missing."""

    def confirm(self, question: str) -> bool: ...

    def read_private_key(self) -> str: ...


def remote_host(url: str) -> str | None:
    """Extracts the hostname from a git remote URL.

    Supports both SSH (git@...) and HTTPS (https://...) formats.

    Args:
        url (str): The remote URL.

    Returns:
        str | None: The hostname (e.g., 'github.com') or None if parsing fails.
    """
    if "://" in url:
        host = url.split("://", 1)[1].split("/", 1)[0]
        return host.rsplit("@", 1)[-1].split(":", 1)[0] or None
    if "@" in url and ":" in url:
        return url.split("@", 1)[1].split(":", 1)[0] or None
    return None


def write_private_key(contents: str, path: Path = SSH_KEY_FILE) -> Path:
    """Writes an SSH private key readable only by its owner.

    Creates parent directories and overwrites any existing key.

    Args:
        contents (str): The key material.
        path (Path, optional): Destination. Defaults to ~/.ssh/id_rsa.

    Returns:
        Path: The path written.

    Raises:
        TrustError: If the key cannot be written.
    """
    if not contents.endswith("\n"):
        contents += "\n"
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        if path.exists():
            logger.warning(f"SSH key already exists at {path}. Overwriting.")
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(contents)
        # O_CREAT's mode is ignored for existing files.
        os.chmod(path, 0o600)
    except OSError as e:
        raise TrustError(f"Failed to write SSH key to {path}: {e}") from e

    logger.info(f"SSH key saved to {path} with permissions 0600.")
    return path


def is_known_host(hostname: str, known_hosts: Path = KNOWN_HOSTS_FILE) -> bool:
    """Returns True if `known_hosts` already has an entry for `hostname`."""
    if not known_hosts.exists():
        return False
    try:
        lines = known_hosts.read_text().splitlines()
    except OSError as e:
        logger.warning(f"Could not read {known_hosts}: {e}")
        return False

    for line in lines:
        fields = line.split()
        if not fields or fields[0].startswith("#"):
            continue
        if hostname in fields[0].split(","):
            return True
    return False


def register_known_host(
    hostname: str,
    known_hosts: Path = KNOWN_HOSTS_FILE,
    executor: CommandExecutor | None = None,
) -> bool:
    """Appends the host keys of `hostname` to the trust store.

    Repeated calls are no-ops once the host is present.

    Args:
        hostname (str): The SSH host to trust.
        known_hosts (Path, optional): The trust store. Defaults to ~/.ssh/known_hosts.
        executor (CommandExecutor | None, optional): Runs ssh-keyscan.

    Returns:
        bool: True if the host is (now) trusted.
    """
    if is_known_host(hostname, known_hosts):
        logger.info(f"{hostname} already present in {known_hosts}.")
        return True

    executor = executor or SubprocessExecutor()
    logger.info(f"Executing ssh-keyscan {hostname}")
    res = executor.run(["ssh-keyscan", hostname])
    if not res.ok or not res.stdout.strip():
        logger.error(f"ssh-keyscan failed for {hostname}: {res.output}")
        return False

    try:
        known_hosts.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        with open(known_hosts, "a") as f:
            f.write(res.stdout if res.stdout.endswith("\n") else res.stdout + "\n")
    except OSError as e:
        logger.error(f"Failed to update {known_hosts}: {e}")
        return False

    logger.info(f"{hostname} added to {known_hosts}.")
    return True


def ensure_trust_material(
    config: "Config",
    ask: TrustPrompt | None = None,
    executor: CommandExecutor | None = None,
) -> None:
    """Verifies the SSH key and host key needed to reach the remote.

    Missing material is requested through `ask` when one is given; a
    scheduled run passes none and fails instead.

    Args:
        config (Config): The loaded configuration.
        ask (TrustPrompt | None, optional): Interactive collaborator.
        executor (CommandExecutor | None, optional): Runs ssh-keyscan.

    Raises:
        TrustError: If required material is missing and not provided.
    """
    if config.remote.auth != "ssh":
        return

    key_path = config.paths.ssh_key
    if not key_path.exists():
        if ask is None or not ask.confirm(
            f"SSH private key ({key_path}) not found. Provide it now?"
        ):
            raise TrustError(
                f"SSH key {key_path} not provided. Cannot proceed with git operations."
            )
        write_private_key(ask.read_private_key(), key_path)

    host = remote_host(config.clone_url)
    if host is None:
        logger.warning(f"Could not determine SSH host from {config.clone_url}.")
        return

    known_hosts = config.paths.known_hosts
    if is_known_host(host, known_hosts):
        return

    if ask is None or not ask.confirm(
        f"{host}'s host key not found in {known_hosts}. Add it now?"
    ):
        raise TrustError(
            f"{host}'s host key not added to {known_hosts}. "
            "Cannot proceed with git operations."
        )
    if not register_known_host(host, known_hosts, executor):
        raise TrustError(f"Could not add {host} to {known_hosts}.")
