"""
Snapshot command: fingerprint every file under a root and write the snapshot.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from common import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_WORKERS,
    HASH_BATCH_SIZE,
    PROGRESS_EVERY,
    FileAccessError,
    FingerprintRecord,
    ScanConfig,
    build_report,
    collect_files,
    fingerprint_file,
)
from snapshot import save_snapshot


@dataclass
class FingerprintResult:
    """Result of fingerprinting one path (for use in thread pool)."""
    path: Path
    record: Optional[FingerprintRecord] = None
    error: Optional[str] = None


@dataclass
class ScanOutcome:
    """Merged output of a scan."""
    records: Dict[str, FingerprintRecord] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)
    processed: int = 0


def fingerprint_task(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> FingerprintResult:
    """Fingerprint a file, returning the failure instead of raising it."""
    try:
        return FingerprintResult(path=path, record=fingerprint_file(path, chunk_size))
    except FileAccessError as exc:
        return FingerprintResult(path=path, error=exc.reason)


def scan_files(
    paths: Sequence[Path],
    workers: int = DEFAULT_WORKERS,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress_callback: Optional[Callable[[int], None]] = None,
) -> ScanOutcome:
    """Fingerprint paths concurrently and merge the results into one map.

    Unreadable files are left out of the map. progress_callback is called once
    per path, failed ones included.
    """
    outcome = ScanOutcome()

    def merge(result: FingerprintResult) -> None:
        if result.error is not None:
            logging.warning(f"Failed to hash {result.path}: {result.error}")
            outcome.errors.append({"path": str(result.path), "error": result.error})
        else:
            outcome.records[str(result.path)] = result.record
        outcome.processed += 1
        if outcome.processed % PROGRESS_EVERY == 0:
            logging.info(
                f"Progress: processed={outcome.processed}/{len(paths)}, "
                f"errors={len(outcome.errors)}"
            )
        if progress_callback:
            progress_callback(outcome.processed)

    if workers <= 1:
        for path in paths:
            merge(fingerprint_task(path, chunk_size))
        return outcome

    logging.info(f"Using {workers} worker threads for hashing")
    with ThreadPoolExecutor(max_workers=workers) as executor:
        for start in range(0, len(paths), HASH_BATCH_SIZE):
            batch = paths[start:start + HASH_BATCH_SIZE]
            futures = [executor.submit(fingerprint_task, path, chunk_size) for path in batch]
            for future in as_completed(futures):
                merge(future.result())
    return outcome


def excluded_output_paths(paths: Iterable[Optional[Path]]) -> Set[str]:
    """Resolved path strings of files treeseal itself writes inside the tree."""
    return {str(path.resolve()) for path in paths if path is not None}


def snapshot_directory(
    root: Path,
    output_path: Path,
    config: ScanConfig,
    report_path: Optional[Path] = None,
    progress_factory: Optional[Callable[[int], object]] = None,
) -> Dict[str, object]:
    """Fingerprint the tree under root and write the snapshot to output_path.

    progress_factory, when given, is called with the number of files and must
    return a context manager yielding a progress callback.
    """
    run_started = int(time.time())
    files, exclusion_stats = collect_files(
        root, config, excluded_output_paths([output_path, report_path])
    )
    logging.info(f"Found {len(files)} files under {root}")

    if progress_factory is not None:
        with progress_factory(len(files)) as callback:
            outcome = scan_files(files, config.workers, config.chunk_size, callback)
    else:
        outcome = scan_files(files, config.workers, config.chunk_size)

    save_snapshot(outcome.records, output_path)
    run_finished = int(time.time())

    stats: Dict[str, int] = {
        "scanned": len(files),
        "hashed": len(outcome.records),
        "errors": len(outcome.errors),
    }
    stats.update(exclusion_stats)
    logging.info(
        f"Completed: scanned={stats['scanned']}, hashed={stats['hashed']}, "
        f"errors={stats['errors']}"
    )
    return build_report(
        root=root,
        snapshot_path=output_path,
        config=config,
        stats=stats,
        run_started=run_started,
        run_finished=run_finished,
        mode="snapshot",
        details={"errors": outcome.errors},
    )
