"""File discovery for backup roots.

Walks every configured root, honours nested ``.ignore``/``.gitignore`` files
(git semantics, via ``dulwich.ignore.IgnoreFilter``), and classifies each
regular file as eligible or excluded. Excluded files are turned into
root-anchored ignore patterns so the working copy stops tracking them.

The scan is read-only. Per-entry errors are logged and recorded but never
abort the walk.
"""

import logging
import os
import re
import stat
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator

from dulwich.ignore import IgnoreFilter

from .constants import (
    APP_NAME,
    IGNORE_FILE_NAMES,
    JUNK_FILE_NAMES,
    JUNK_FILE_SUFFIXES,
    MAX_FILE_SIZE,
    MIN_TEXT_RATIO,
)
from .exceptions import DestinationCollisionError

logger = logging.getLogger(APP_NAME)

_ASCII = bytes(range(128))
_GLOB_CHARS = re.compile(r"([\\*?\[])")


@dataclass(frozen=True)
class DiscoveryOptions:
    """Thresholds and rules applied during a discovery pass."""

    max_file_size: int = MAX_FILE_SIZE
    min_text_ratio: float = MIN_TEXT_RATIO
    junk_names: frozenset[str] = frozenset(JUNK_FILE_NAMES)
    junk_suffixes: tuple[str, ...] = JUNK_FILE_SUFFIXES
    ignore_files: tuple[str, ...] = IGNORE_FILE_NAMES
    skip_hidden: bool = False
    exclude_paths: frozenset[Path] = frozenset()


@dataclass(frozen=True)
class EligibleFile:
    """A file selected for backup.

    Attributes:
        source (Path): Absolute path of the original file.
        destination (PurePosixPath): Path inside the working copy.
    """

    source: Path
    destination: PurePosixPath


@dataclass
class DiscoveryResult:
    """Everything one discovery pass produced."""

    files: list[EligibleFile] = field(default_factory=list)
    ignore_patterns: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def gitignore_content(self) -> str:
        """Renders the ignore patterns as the contents of a .gitignore file."""
        if not self.ignore_patterns:
            return ""
        return "\n".join(self.ignore_patterns) + "\n"


def is_binary(path: Path, min_text_ratio: float = MIN_TEXT_RATIO) -> bool:
    """Guesses whether a file holds binary data.

    A file is binary if it contains a NUL byte or if fewer than
    `min_text_ratio` of its bytes are ASCII. Empty and unreadable files are
    reported as text; an unreadable file will fail later, when it is copied.

    Args:
        path (Path): The file to inspect.
        min_text_ratio (float): Minimum share of bytes below 128.

    Returns:
        bool: True if the file looks binary.
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.debug(f"Binary check could not read {path}: {e}")
        return False

    if not data:
        return False
    if b"\x00" in data:
        return True

    non_ascii = len(data.translate(None, _ASCII))
    return (len(data) - non_ascii) / len(data) < min_text_ratio


def is_junk(name: str, options: DiscoveryOptions) -> bool:
    """Returns True for OS clutter and log files."""
    return name in options.junk_names or name.endswith(tuple(options.junk_suffixes))


def exclusion_reason(path: Path, size: int, options: DiscoveryOptions) -> str | None:
    """Runs the filter pipeline for one file, stopping at the first failure.

    Returns:
        str | None: Why the file is excluded, or None if it is eligible.
    """
    if size > options.max_file_size:
        return f"larger than {options.max_file_size} bytes"
    if is_binary(path, options.min_text_ratio):
        return "binary content"
    if is_junk(path.name, options):
        return "junk file"
    return None


def _escape(rel: str) -> str:
    """Escapes a literal path so gitignore matching treats it verbatim."""
    escaped = _GLOB_CHARS.sub(r"\\\1", rel)
    if escaped.endswith(" "):
        escaped = escaped[:-1] + "\\ "
    return escaped


def ignore_pattern(path: Path, root: Path) -> str:
    """Builds the root-anchored ignore pattern for an excluded file.

    The anchor is the root itself, or the root's parent when the root is the
    file. A file outside its root falls back to its absolute path.
    """
    anchor = root.parent if path == root else root
    try:
        rel = path.relative_to(anchor)
    except ValueError:
        return _escape(path.as_posix())
    return "/" + _escape(rel.as_posix())


class _IgnoreStack:
    """Per-directory ignore filters for one root, keyed by relative directory."""

    def __init__(self, names: Iterable[str], result: DiscoveryResult):
        self._names = tuple(names)
        self._result = result
        self._filters: dict[str, list[IgnoreFilter]] = {}

    def enter_directory(self, abs_dir: Path, rel_dir: str) -> None:
        """Loads the ignore files present in `abs_dir`."""
        loaded = []
        for name in self._names:
            ignore_file = abs_dir / name
            if not ignore_file.is_file():
                continue
            try:
                loaded.append(IgnoreFilter.from_path(str(ignore_file)))
            except OSError as e:
                _record(self._result, ignore_file, e)
        self._filters[rel_dir] = loaded

    def is_ignored(self, rel_path: str, is_dir: bool) -> bool:
        """Checks a path against the hierarchy, deepest directory first.

        The first filter with a definitive answer wins, so a deeper negation
        re-includes a path an ancestor excluded.
        """
        parts = rel_path.split("/")
        for depth in range(len(parts) - 1, -1, -1):
            dir_key = "/".join(parts[:depth])
            sub = "/".join(parts[depth:])
            if is_dir:
                sub += "/"
            for filt in self._filters.get(dir_key, ()):
                verdict = filt.is_ignored(sub)
                if verdict is not None:
                    return verdict
        return False


def _is_excluded(path: Path, excluded: frozenset[Path]) -> bool:
    """Returns True if `path` resolves to, or inside, one of `excluded`."""
    if not excluded:
        return False
    resolved = path.resolve()
    return any(resolved == e or e in resolved.parents for e in excluded)


def _record(result: DiscoveryResult, path: Path | str, error: OSError) -> None:
    """Logs a per-entry failure and keeps walking."""
    message = f"{path}: {error.strerror or error}"
    logger.warning(f"SKIPPED {message}")
    result.errors.append(message)


def _walk_root(
    root: Path, options: DiscoveryOptions, result: DiscoveryResult
) -> Iterator[tuple[Path, int]]:
    """Yields (path, size) for every candidate file under `root`."""
    excluded = frozenset(Path(p).resolve() for p in options.exclude_paths)
    if _is_excluded(root, excluded):
        logger.info(f"Not scanning {root}: it lies in an excluded path.")
        return

    try:
        st = root.stat()
    except OSError as e:
        _record(result, root, e)
        return

    if not stat.S_ISDIR(st.st_mode):
        if stat.S_ISREG(st.st_mode):
            yield root, st.st_size
        return

    ignores = _IgnoreStack(options.ignore_files, result)

    def on_error(e: OSError) -> None:
        _record(result, e.filename or root, e)

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir
        ignores.enter_directory(current, rel_dir)

        kept = []
        for name in sorted(dirnames):
            if name == ".git" or (options.skip_hidden and name.startswith(".")):
                continue
            if (current / name).is_symlink():
                logger.debug(f"Not following directory symlink {current / name}")
                continue
            if _is_excluded(current / name, excluded):
                logger.info(f"Not scanning excluded directory {current / name}")
                continue
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if ignores.is_ignored(rel, is_dir=True):
                continue
            kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            if options.skip_hidden and name.startswith("."):
                continue
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if ignores.is_ignored(rel, is_dir=False):
                continue
            full = current / name
            try:
                st = full.stat()
            except OSError as e:
                _record(result, full, e)
                continue
            if stat.S_ISREG(st.st_mode):
                yield full, st.st_size


def discover(
    roots: Iterable[Path | str], options: DiscoveryOptions | None = None
) -> DiscoveryResult:
    """Scans the backup roots and classifies every file found.

    With exactly one directory root, destinations are relative to that root.
    Otherwise they are relative to each root's parent, so independent roots
    keep their own top-level name.

    Args:
        roots (Iterable[Path | str]): Absolute files or directories to back up.
        options (DiscoveryOptions | None): Thresholds. Defaults to the built-ins.

    Returns:
        DiscoveryResult: Eligible files, ignore patterns, and per-entry errors.

    Raises:
        DestinationCollisionError: If two files map to the same destination.
    """
    options = options or DiscoveryOptions()
    root_paths = [Path(r) for r in roots]
    single_root_mode = len(root_paths) == 1 and root_paths[0].is_dir()

    result = DiscoveryResult()
    claimed: dict[PurePosixPath, Path] = {}

    for root in root_paths:
        anchor = root if single_root_mode else root.parent
        for path, size in _walk_root(root, options, result):
            if reason := exclusion_reason(path, size, options):
                logger.debug(f"EXCLUDED {path}: {reason}")
                result.ignore_patterns.append(ignore_pattern(path, root))
                continue

            destination = PurePosixPath(path.relative_to(anchor).as_posix())
            if destination in claimed:
                raise DestinationCollisionError(
                    f"{path} and {claimed[destination]} both map to '{destination}'"
                )
            claimed[destination] = path
            result.files.append(EligibleFile(path, destination))

    patterns = set(result.ignore_patterns)
    for item in result.files:
        if "/" + _escape(item.destination.as_posix()) in patterns:
            logger.warning(
                f"Ignore pattern for an excluded file also matches {item.source} "
                f"at '{item.destination}'; git will not track it."
            )

    logger.info(
        f"Discovery found {len(result.files)} files to back up, "
        f"{len(result.ignore_patterns)} excluded."
    )
    return result
