# /mirror_sync.py
"""
Mirror Sync (no UI)
- Periodically mirrors a source folder into a destination folder (one way, source wins).
- Every pass re-scans both trees in full:
  - copies new files and files whose bytes differ
  - creates missing folders
  - deletes destination files/folders that no longer exist in source
- Files are compared byte for byte (no timestamps, no hashes).
- One failing item never aborts a pass; it is logged and reported, the pass moves on.
- Passes never overlap: a pass that outlasts the interval is followed directly by the next.
- Optional gitignore-style excludes (never copied, never deleted).
- Styled console output:
  - COPY green
  - DELETE / RMDIR orange
  - errors red
  - file paths white
  - folder paths light brown
- Log file is always plain (no color codes) and rotates at midnight.

Usage
  pip install pathspec colorama
  python mirror_sync.py --source "/src" --destination "/dst" --interval 5000 --log "./mirror.log"
  python mirror_sync.py -s "/src" -d "/dst" -i 60000 -l sync.log -x "*.tmp" -x "node_modules/" --once
"""

from __future__ import annotations

import argparse
import enum
import errno
import logging
import os
import shutil
import stat
import sys
import threading
import time
from dataclasses import dataclass, field
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from colorama import just_fix_windows_console
from pathspec import PathSpec

LOGGER_NAME = "mirror_sync"

COMPARE_CHUNK_SIZE = 1024 * 1024


# -------------------------
# Errors
# -------------------------

class MirrorSyncError(Exception):
    pass


class ConfigurationError(MirrorSyncError):
    """Invalid command line / paths. The scheduler is never started."""


class ScanError(MirrorSyncError):
    """A whole tree could not be enumerated; the pass is skipped."""


def _is_locked_error(exc: BaseException) -> bool:
    winerror = getattr(exc, "winerror", None)
    if winerror == 32:  # ERROR_SHARING_VIOLATION
        return True
    err = getattr(exc, "errno", None)
    return err in {errno.EACCES, errno.EPERM}


@dataclass(frozen=True)
class ItemError:
    """One entry that failed during a pass.

    ``path`` is the entry being synchronized: the destination path for every
    operation of a pass, the listed path for ``scan``. ``src`` is set when a
    source file was involved (``copy``, ``compare``).
    """

    path: Path
    operation: str
    cause: BaseException
    src: Optional[Path] = None

    @property
    def locked(self) -> bool:
        return _is_locked_error(self.cause)

    def __str__(self) -> str:
        target = f"{self.src} -> {self.path}" if self.src is not None else str(self.path)
        return f"{self.operation} {target} | {self.cause}"


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    "COPY": Ansi.GREEN,
    "MKDIR": Ansi.LIGHT_BROWN,
    "DELETE": Ansi.ORANGE,
    "RMDIR": Ansi.ORANGE,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except (AttributeError, ValueError):
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        is_dir = getattr(record, "is_dir", None)
        path_text = getattr(record, "path_text", None)

        if action and action in base:
            action_color = ACTION_COLORS.get(action, "")
            base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if is_dir else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


def setup_logger(log_path: Optional[Path]) -> logging.Logger:
    """Console logger, plus a midnight-rotating plain file when ``log_path`` is given.

    Raises OSError when the log file cannot be opened; no handler is attached in that case.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if logger.handlers:
        return logger

    fmt = "%(asctime)s | %(levelname)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    fh = None
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = TimedRotatingFileHandler(log_path, when="midnight", encoding="utf-8")
        fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
        fh.setLevel(logging.INFO)

    just_fix_windows_console()

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=fmt, datefmt=datefmt))

    if fh is not None:
        logger.addHandler(fh)
    logger.addHandler(ch)

    if log_path is not None:
        logger.info("Logging to: %s", log_path)
    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = bool(is_dir) if is_dir is not None else path.is_dir()
    logger.log(level, f"{action} | {message}", extra=extra)


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class SyncConfig:
    source: Path
    destination: Path
    interval_ms: int
    log_path: Path
    excludes: tuple[str, ...] = ()

    @property
    def interval_sec(self) -> float:
        return self.interval_ms / 1000.0


class ArgumentParser(argparse.ArgumentParser):
    """Reports bad arguments as ConfigurationError so they reach the log, not only stderr."""

    def error(self, message: str):
        raise ConfigurationError(message)


def build_parser() -> ArgumentParser:
    p = ArgumentParser(prog="mirror-sync", description="Periodically mirror one folder into another.")
    p.add_argument("-s", "--source", required=True, help="Source folder path.")
    p.add_argument("-d", "--destination", required=True, help="Destination folder path (created if absent).")
    p.add_argument("-i", "--interval", required=True, type=int, help="Synchronization interval in milliseconds.")
    p.add_argument("-l", "--log", required=True, help="Log file path.")
    p.add_argument(
        "-x",
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Gitignore-style pattern to leave alone on both sides (repeatable).",
    )
    p.add_argument("--once", action="store_true", help="Run a single pass and exit.")
    return p


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def _log_path_hint(argv: list[str]) -> Optional[Path]:
    """The ``--log`` value from an otherwise unparsable command line, if any."""
    p = ArgumentParser(add_help=False)
    p.add_argument("-l", "--log")
    try:
        known, _ = p.parse_known_args(argv)
    except ConfigurationError:
        return None
    return Path(known.log).expanduser() if known.log else None


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def validate_paths(source: Path, destination: Path) -> tuple[Path, Path]:
    source = source.expanduser().resolve()
    destination = destination.expanduser().resolve()

    if not source.is_dir():
        raise ConfigurationError(f"Source folder does not exist or is not a folder: {source}")
    if source == destination:
        raise ConfigurationError("Source and destination folders must be different.")
    if _is_subpath(destination, source):
        raise ConfigurationError("Destination folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, destination):
        raise ConfigurationError("Source folder must NOT be inside destination folder (it would be deleted).")
    if destination.exists() and not destination.is_dir():
        raise ConfigurationError(f"Destination exists and is not a folder: {destination}")

    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Could not create destination folder {destination}: {e}") from e
    return source, destination


def build_config(args: argparse.Namespace) -> SyncConfig:
    if args.interval is None or args.interval <= 0:
        raise ConfigurationError(f"Interval must be a positive number of milliseconds, got {args.interval}")

    source, destination = validate_paths(Path(args.source), Path(args.destination))
    return SyncConfig(
        source=source,
        destination=destination,
        interval_ms=int(args.interval),
        log_path=Path(args.log).expanduser().resolve(),
        excludes=tuple(args.exclude or ()),
    )


# -------------------------
# Ignore + scanning
# -------------------------

class IgnoreMatcher:
    def __init__(self, patterns: list[str] | tuple[str, ...]):
        self.patterns = list(patterns)
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def is_ignored(self, rel: str, is_dir: bool = False) -> bool:
        if is_dir and not rel.endswith("/"):
            rel += "/"
        return self.spec.match_file(rel)


class EntryKind(enum.Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class FileSystemEntry:
    path: Path
    rel: str
    kind: EntryKind

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


@dataclass
class TreeScan:
    root: Path
    entries: dict[str, FileSystemEntry] = field(default_factory=dict)
    # present but neither regular file nor directory: fifos, sockets, dangling links
    special: set[str] = field(default_factory=set)
    # relative paths whose listing or stat failed
    incomplete: set[str] = field(default_factory=set)
    errors: list[ItemError] = field(default_factory=list)

    def has(self, rel: str) -> bool:
        return rel in self.entries or rel in self.special

    def covers(self, rel: str) -> bool:
        """False when ``rel`` is, or sits under, an entry whose state is unknown."""
        parts = rel.split("/")
        for i in range(1, len(parts) + 1):
            if "/".join(parts[:i]) in self.incomplete:
                return False
        return True


def relative_key(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def scan_tree(root: Path, ignore: Optional[IgnoreMatcher] = None) -> TreeScan:
    """List every file and directory under ``root`` (root itself excluded)."""
    root = Path(root)
    try:
        with os.scandir(root):
            pass
    except OSError as e:
        raise ScanError(f"Cannot list {root}: {e}") from e

    scan = TreeScan(root=root)

    def on_walk_error(e: OSError) -> None:
        failed = Path(e.filename) if e.filename else root
        if failed == root:
            raise ScanError(f"Cannot list {root}: {e}") from e
        scan.incomplete.add(relative_key(root, failed))
        scan.errors.append(ItemError(failed, "scan", e))

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
        base = Path(dirpath)

        kept = []
        for name in dirnames:
            path = base / name
            rel = relative_key(root, path)
            if ignore and ignore.is_ignored(rel, is_dir=True):
                continue
            kept.append(name)
            scan.entries[rel] = FileSystemEntry(path, rel, EntryKind.DIRECTORY)
        dirnames[:] = kept

        for name in filenames:
            path = base / name
            rel = relative_key(root, path)
            if ignore and ignore.is_ignored(rel):
                continue
            try:
                regular = _is_regular_file(path)
            except OSError as e:
                scan.incomplete.add(rel)
                scan.errors.append(ItemError(path, "scan", e))
                continue
            if regular is None:
                continue
            if regular:
                scan.entries[rel] = FileSystemEntry(path, rel, EntryKind.FILE)
            else:
                scan.special.add(rel)

    return scan


def _is_regular_file(path: Path) -> Optional[bool]:
    """True for a regular file (links followed), False for anything else still present,
    None when the entry is gone since listing."""
    try:
        return stat.S_ISREG(os.stat(path).st_mode)
    except (FileNotFoundError, NotADirectoryError):
        pass
    # a dangling link is still an entry
    return False if _lstat(path) is not None else None


# -------------------------
# Equality
# -------------------------

def _read_full(stream: BinaryIO, size: int) -> bytes:
    chunk = stream.read(size)
    if not chunk or len(chunk) == size:
        return chunk or b""
    parts = [chunk]
    remaining = size - len(chunk)
    while remaining > 0:
        more = stream.read(remaining)
        if not more:
            break
        parts.append(more)
        remaining -= len(more)
    return b"".join(parts)


def streams_equal(a: BinaryIO, b: BinaryIO, chunk_size: int = COMPARE_CHUNK_SIZE) -> bool:
    """Lock-step read of both streams; stop at the first difference or at a shared EOF."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    while True:
        ca = _read_full(a, chunk_size)
        cb = _read_full(b, chunk_size)
        if ca != cb:
            return False
        if not ca:
            return True


def files_equal(src: Path, dst: Path, chunk_size: int = COMPARE_CHUNK_SIZE) -> bool:
    if src.stat().st_size != dst.stat().st_size:
        return False
    with src.open("rb") as fa, dst.open("rb") as fb:
        return streams_equal(fa, fb, chunk_size)


# -------------------------
# Actions / pass result
# -------------------------

class ActionKind(enum.Enum):
    COPY_FILE = "COPY"
    CREATE_DIR = "MKDIR"
    DELETE_FILE = "DELETE"
    DELETE_DIR = "RMDIR"


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    dst: Path
    src: Optional[Path] = None

    def describe(self) -> str:
        if self.src is not None:
            return f"{self.src} -> {self.dst}"
        return str(self.dst)


@dataclass
class PassResult:
    actions: list[Action] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)

    def count(self, *kinds: ActionKind) -> int:
        return sum(1 for a in self.actions if a.kind in kinds)

    @property
    def copied(self) -> int:
        return self.count(ActionKind.COPY_FILE)

    @property
    def created(self) -> int:
        return self.count(ActionKind.CREATE_DIR)

    @property
    def deleted(self) -> int:
        return self.count(ActionKind.DELETE_FILE, ActionKind.DELETE_DIR)

    @property
    def actions_applied(self) -> int:
        return len(self.actions)

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return f"copied={self.copied} created={self.created} deleted={self.deleted} errors={len(self.errors)}"


class _Pass:
    """Applies and logs the actions of one reconcile pass."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.result = PassResult()

    def apply(self, action: Action) -> bool:
        try:
            if action.kind is ActionKind.COPY_FILE:
                action.dst.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(action.src, action.dst)
            elif action.kind is ActionKind.CREATE_DIR:
                action.dst.mkdir(parents=True, exist_ok=True)
            elif action.kind is ActionKind.DELETE_FILE:
                action.dst.unlink()
            else:
                shutil.rmtree(action.dst)
        except OSError as e:
            is_dir = action.kind is ActionKind.DELETE_DIR
            self.fail(action.dst, action.kind.value.lower(), e, is_dir=is_dir, src=action.src)
            return False

        is_dir = action.kind in (ActionKind.CREATE_DIR, ActionKind.DELETE_DIR)
        log_action(self.logger, action.kind.value, action.describe(), path=action.dst, is_dir=is_dir)
        self.result.actions.append(action)
        return True

    def fail(
        self,
        path: Path,
        operation: str,
        cause: BaseException,
        is_dir: bool = False,
        src: Optional[Path] = None,
    ) -> None:
        self.record(ItemError(path, operation, cause, src=src), is_dir=is_dir)

    def record(self, error: ItemError, is_dir: bool = False) -> None:
        self.result.errors.append(error)
        note = "SKIP locked" if error.locked else "ERROR"
        log_action(
            self.logger,
            error.operation.upper(),
            f"{note} {error}",
            path=error.path,
            is_dir=is_dir,
            level=logging.ERROR,
        )

    def remove(self, path: Path, is_dir: bool) -> bool:
        kind = ActionKind.DELETE_DIR if is_dir else ActionKind.DELETE_FILE
        return self.apply(Action(kind, path))


# -------------------------
# Reconcile
# -------------------------

def _lstat(path: Path) -> Optional[os.stat_result]:
    """``os.lstat`` with a missing entry (or a missing parent folder) as None."""
    try:
        return os.lstat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None


def _forward(entry: FileSystemEntry, dst: Path, run: _Pass) -> None:
    try:
        st = _lstat(dst)
    except OSError as e:
        run.fail(dst, "stat", e, is_dir=entry.is_dir, src=entry.path)
        return

    if entry.is_dir:
        if st is not None and stat.S_ISDIR(st.st_mode):
            return
        # file, link or special entry in the way
        if st is not None and not run.remove(dst, is_dir=False):
            return
        run.apply(Action(ActionKind.CREATE_DIR, dst))
        return

    if st is not None and not stat.S_ISREG(st.st_mode):
        if not run.remove(dst, is_dir=stat.S_ISDIR(st.st_mode)):
            return
    elif st is not None:
        try:
            if files_equal(entry.path, dst):
                return
        except OSError as e:
            run.fail(dst, "compare", e, src=entry.path)
            return

    run.apply(Action(ActionKind.COPY_FILE, dst, src=entry.path))


def _reverse(rel: str, path: Path, source: TreeScan, run: _Pass) -> None:
    if source.has(rel) or not source.covers(rel):
        return
    try:
        st = _lstat(path)
    except OSError as e:
        run.fail(path, "stat", e)
        return
    # already gone with a deleted ancestor
    if st is None:
        return
    run.remove(path, is_dir=stat.S_ISDIR(st.st_mode))


def reconcile(
    source_root: Path,
    destination_root: Path,
    logger: Optional[logging.Logger] = None,
    ignore: Optional[IgnoreMatcher] = None,
) -> PassResult:
    """Make ``destination_root`` a byte-identical mirror of ``source_root``.

    Forward pass (copy/create) runs to completion before the reverse pass (delete).
    Item failures are collected in the result; only an unlistable root raises ScanError.
    """
    logger = logger or logging.getLogger(LOGGER_NAME)
    source_root = Path(source_root)
    destination_root = Path(destination_root)

    try:
        destination_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ScanError(f"Cannot create destination {destination_root}: {e}") from e

    source = scan_tree(source_root, ignore)
    destination = scan_tree(destination_root, ignore)

    run = _Pass(logger)
    for error in source.errors + destination.errors:
        run.record(error)

    for rel in sorted(source.entries):
        entry = source.entries[rel]
        _forward(entry, destination_root / rel, run)

    # special entries (dangling links, fifos) are never mirrored but stale ones still go
    for rel in sorted(set(destination.entries) | set(destination.special)):
        _reverse(rel, destination_root / rel, source, run)

    return run.result


# -------------------------
# Scheduler
# -------------------------

class SyncScheduler(threading.Thread):
    """Runs one pass immediately, then one per interval counted from each pass start.

    Passes run on this thread only, so they never overlap; an overrunning pass is
    followed directly by the next one.
    """

    def __init__(
        self,
        config: SyncConfig,
        logger: logging.Logger,
        on_tick: Optional[Callable[[], PassResult]] = None,
    ):
        super().__init__(name="mirror-sync-scheduler", daemon=True)
        self.config = config
        self.logger = logger
        self.interval_sec = config.interval_sec
        self.stop_event = threading.Event()
        self.ignore = IgnoreMatcher(config.excludes)
        self.on_tick = on_tick or self._reconcile
        self.passes = 0

    def _reconcile(self) -> PassResult:
        return reconcile(self.config.source, self.config.destination, self.logger, self.ignore or None)

    def run_once(self) -> Optional[PassResult]:
        self.passes += 1
        self.logger.info("PASS %d: start", self.passes)
        try:
            result = self.on_tick()
        except ScanError as e:
            self.logger.error("PASS %d: skipped | %s", self.passes, e)
            return None
        except Exception as e:
            self.logger.exception("PASS %d: failed | %s", self.passes, e)
            return None
        self.logger.info("PASS %d: done | %s", self.passes, result.summary())
        return result

    def run(self) -> None:
        self.logger.info("SCHEDULER: started (interval=%dms)", self.config.interval_ms)
        while not self.stop_event.is_set():
            start = time.monotonic()
            self.run_once()
            elapsed = time.monotonic() - start
            self.stop_event.wait(max(0.0, self.interval_sec - elapsed))
        self.logger.info("SCHEDULER: stopped")

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        self.stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)

    def __enter__(self) -> "SyncScheduler":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except ConfigurationError as e:
        parser.print_usage(sys.stderr)
        log_path = _log_path_hint(argv)
        try:
            logger = setup_logger(log_path)
        except OSError:
            logger = setup_logger(None)
        logger.error("Config error: %s", e)
        return 2

    try:
        logger = setup_logger(Path(args.log).expanduser())
    except OSError as e:
        logger = setup_logger(None)
        logger.error("Config error: cannot open log file %s | %s", args.log, e)
        return 2

    try:
        cfg = build_config(args)
    except ConfigurationError as e:
        logger.error("Config error: %s", e)
        return 2

    logger.info("Synchronization started. Source: %s, Destination: %s", cfg.source, cfg.destination)
    logger.info("Interval: %dms", cfg.interval_ms)
    if cfg.excludes:
        logger.info("Excluding: %s", ", ".join(cfg.excludes))

    scheduler = SyncScheduler(cfg, logger)

    if args.once:
        result = scheduler.run_once()
        return 0 if result is not None and result.ok else 1

    logger.info("Starting scheduler... (Ctrl+C to stop)")
    scheduler.start()
    try:
        while scheduler.is_alive():
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        scheduler.stop()
        logger.info("Stopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
