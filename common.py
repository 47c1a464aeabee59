"""
Shared code for treeseal snapshot and verify: constants, types, errors, traversal, hashing, reporting.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from blake3 import blake3


DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024
DEFAULT_WORKERS = os.cpu_count() or 1
PROGRESS_EVERY = 1000
HASH_BATCH_SIZE = 100
DEFAULT_MAX_MOVED_CANDIDATES = 2
HASH_ALGO = "blake3"

EXIT_OK = 0
EXIT_MISMATCH = 1
EXIT_ERROR = 2


class TreesealError(Exception):
    """Base class for treeseal errors."""


class FileAccessError(TreesealError):
    """A file could not be read (missing, vanished, permission denied)."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot read {path}: {reason}")
        self.path = path
        self.reason = reason


class SnapshotParseError(TreesealError):
    """The snapshot file is missing, unreadable or malformed."""


class SnapshotWriteError(TreesealError):
    """The snapshot (or a report) could not be written."""


class UsageError(TreesealError):
    """Invalid command line invocation."""


@dataclass(frozen=True)
class FingerprintRecord:
    """Content digest plus the metadata captured before reading the file."""
    digest: str
    modified: int
    size: int

    def to_json(self) -> Dict[str, object]:
        return {"hash": self.digest, "modified": self.modified, "size": self.size}


MATCHED = "matched"
MISMATCHED = "mismatched"
SKIPPED = "skipped"
MOVED = "moved"
EXTRA = "extra"
VERDICT_KINDS = (MATCHED, MISMATCHED, SKIPPED, MOVED, EXTRA)


@dataclass(frozen=True)
class Verdict:
    """Classification of one current file against the reference snapshot."""
    path: str
    kind: str
    found_digest: str
    expected_digest: Optional[str] = None
    previous_paths: Tuple[str, ...] = ()
    updated: bool = False

    def to_json(self) -> Dict[str, object]:
        data: Dict[str, object] = {"path": self.path, "hash": self.found_digest}
        if self.expected_digest is not None:
            data["expected_hash"] = self.expected_digest
        if self.previous_paths:
            data["previous_paths"] = list(self.previous_paths)
        if self.updated:
            data["updated"] = True
        return data


@dataclass
class ReconciliationSummary:
    """Verdict counts for one verify run."""
    matched: int = 0
    mismatched: int = 0
    skipped: int = 0
    moved: int = 0
    extra: int = 0

    @property
    def has_mismatch(self) -> bool:
        return self.mismatched > 0

    def count(self, kind: str) -> None:
        setattr(self, kind, getattr(self, kind) + 1)

    def as_dict(self) -> Dict[str, int]:
        return {kind: getattr(self, kind) for kind in VERDICT_KINDS}


@dataclass
class ScanConfig:
    """Options shared by traversal and scanning."""
    skip_dirs: Set[str] = field(default_factory=set)
    exclude_exts: Set[str] = field(default_factory=set)
    workers: int = DEFAULT_WORKERS
    chunk_size: int = DEFAULT_CHUNK_SIZE


def setup_logging(
    log_file: Optional[Path] = None, verbose: bool = False, quiet: bool = False
) -> None:
    """Configure logging to file and console."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def parse_exclude_extensions(exclude_args: List[str]) -> Set[str]:
    """Normalize exclude extensions into a set of lowercase suffixes."""
    extensions: Set[str] = set()
    for item in exclude_args:
        for part in item.split(','):
            ext = part.strip().lower()
            if not ext:
                continue
            if not ext.startswith('.'):
                ext = f".{ext}"
            extensions.add(ext)
    return extensions


def iter_files(root: Path, skip_dirs: Optional[Set[str]] = None) -> Iterable[Path]:
    """Iterate through files under root without following symlinks.

    Subdirectories whose name is exactly one of skip_dirs are not entered.
    """
    skip = skip_dirs or set()
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            if entry.name in skip:
                                logging.debug(f"Skipping directory {entry.path}")
                                continue
                            stack.append(Path(entry.path))
                        elif entry.is_file(follow_symlinks=False):
                            yield Path(entry.path)
                    except OSError as exc:
                        logging.warning(f"Skipping entry {entry.path}: {exc}")
        except OSError as exc:
            logging.warning(f"Skipping directory {current}: {exc}")


def collect_files(
    root: Path,
    config: ScanConfig,
    excluded_paths: Optional[Set[str]] = None,
) -> Tuple[List[Path], Dict[str, int]]:
    """Walk root and apply extension and path exclusions.

    excluded_paths holds resolved path strings (the snapshot and report files).
    Returns the files to fingerprint and a breakdown of what was excluded.
    """
    excluded_paths = excluded_paths or set()
    stats = {"excluded_by_extension": 0, "excluded_by_path": 0}
    files: List[Path] = []
    for file_path in iter_files(root, config.skip_dirs):
        if file_path.suffix.lower() in config.exclude_exts:
            stats["excluded_by_extension"] += 1
            continue
        if excluded_paths and str(file_path.resolve()) in excluded_paths:
            stats["excluded_by_path"] += 1
            continue
        files.append(file_path)
    return files, stats


def compute_digest(file_path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Compute the BLAKE3 hex digest of a file's content."""
    hasher = blake3()
    with file_path.open('rb') as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def fingerprint_file(file_path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> FingerprintRecord:
    """Fingerprint one file.

    Metadata is taken once before the content is read; a write landing between
    the two is not detected. Modification times before the epoch are stored as 0.
    """
    try:
        file_stat = file_path.stat()
        digest = compute_digest(file_path, chunk_size)
    except OSError as exc:
        raise FileAccessError(file_path, exc.strerror or str(exc)) from exc
    return FingerprintRecord(
        digest=digest,
        modified=max(file_stat.st_mtime_ns // 1_000_000_000, 0),
        size=file_stat.st_size,
    )


def build_report(
    root: Path,
    snapshot_path: Path,
    config: ScanConfig,
    stats: Dict[str, int],
    run_started: int,
    run_finished: int,
    mode: str,
    details: Optional[Dict[str, object]],
) -> Dict[str, object]:
    """Build JSON-compatible report."""
    report: Dict[str, object] = {
        "run_started": datetime.fromtimestamp(run_started).isoformat(),
        "run_finished": datetime.fromtimestamp(run_finished).isoformat(),
        "duration_seconds": run_finished - run_started,
        "root": str(root),
        "snapshot": str(snapshot_path),
        "hash_algo": HASH_ALGO,
        "mode": mode,
        "skip_dirs": sorted(config.skip_dirs),
        "exclude_exts": sorted(config.exclude_exts),
        "workers": config.workers,
        "stats": stats,
    }
    if details:
        report.update(details)
    return report


def write_report(report: Dict[str, object], report_path: Path) -> None:
    """Write report to file."""
    report_json = json.dumps(report, indent=2, sort_keys=True)
    try:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(report_json, encoding='utf-8')
    except OSError as exc:
        raise SnapshotWriteError(f"Cannot write report {report_path}: {exc}") from exc
    logging.info(f"Report written to {report_path}")
