"""
Verify command: re-fingerprint files and reconcile them against a stored snapshot.
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, DefaultDict, Dict, List, Optional

from common import (
    EXTRA,
    MATCHED,
    MISMATCHED,
    MOVED,
    SKIPPED,
    VERDICT_KINDS,
    FingerprintRecord,
    ReconciliationSummary,
    ScanConfig,
    Verdict,
    build_report,
    collect_files,
)
from console import Reporter
from scan_cmd import excluded_output_paths, scan_files
from snapshot import load_snapshot, save_snapshot


@dataclass
class ReconciliationResult:
    """Verdicts in visiting order plus their counts."""
    verdicts: List[Verdict] = field(default_factory=list)
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)


def build_reference_index(reference: Dict[str, FingerprintRecord]) -> Dict[str, List[str]]:
    """Map each digest to the reference paths holding that content."""
    index: DefaultDict[str, List[str]] = defaultdict(list)
    for path_str, record in reference.items():
        index[record.digest].append(path_str)
    return dict(index)


def classify(
    path_str: str,
    current: FingerprintRecord,
    reference: Dict[str, FingerprintRecord],
    index: Dict[str, List[str]],
) -> Verdict:
    """Decide the verdict for one current file. Does not touch reference."""
    expected = reference.get(path_str)
    if expected is not None:
        if current.digest == expected.digest:
            kind = MATCHED
        elif current.modified == expected.modified:
            # Content changed but the mtime did not: corruption or tampering.
            kind = MISMATCHED
        else:
            kind = SKIPPED
        return Verdict(
            path=path_str,
            kind=kind,
            found_digest=current.digest,
            expected_digest=expected.digest,
        )

    # Empty files all share one digest, so it says nothing about where they came from.
    previous_paths = index.get(current.digest)
    if previous_paths and current.size != 0:
        return Verdict(
            path=path_str,
            kind=MOVED,
            found_digest=current.digest,
            previous_paths=tuple(previous_paths),
        )
    return Verdict(path=path_str, kind=EXTRA, found_digest=current.digest)


def reconcile(
    current: Dict[str, FingerprintRecord],
    reference: Dict[str, FingerprintRecord],
    index: Optional[Dict[str, List[str]]] = None,
    update: bool = False,
) -> ReconciliationResult:
    """Classify every current file against the reference snapshot.

    With update=True, reference is modified in place: skipped, moved and
    extra files get their current record stored under their current path.
    Reference entries for paths that were not scanned are left alone.
    index must describe reference as it was before this call; it is built
    here when not given.
    """
    if index is None:
        index = build_reference_index(reference)

    result = ReconciliationResult()
    for path_str in sorted(current):
        record = current[path_str]
        verdict = classify(path_str, record, reference, index)
        if update and verdict.kind in (SKIPPED, MOVED, EXTRA):
            reference[path_str] = record
            verdict = replace(verdict, updated=True)
        result.verdicts.append(verdict)
        result.summary.count(verdict.kind)
    return result


def verify_directory(
    root: Path,
    snapshot_path: Path,
    config: ScanConfig,
    update: bool = False,
    reporter: Optional[Reporter] = None,
    report_path: Optional[Path] = None,
    progress_factory: Optional[Callable[[int], object]] = None,
) -> Dict[str, object]:
    """Verify the tree under root against the snapshot at snapshot_path.

    The snapshot is loaded before anything is hashed, so a bad snapshot aborts
    the run early. With update=True the full reference map, including entries
    added during reconciliation, replaces the snapshot file afterwards.
    """
    reporter = reporter or Reporter()
    run_started = int(time.time())

    reference = load_snapshot(snapshot_path)
    files, exclusion_stats = collect_files(
        root, config, excluded_output_paths([snapshot_path, report_path])
    )
    logging.info(f"Found {len(files)} files under {root}; snapshot has {len(reference)} entries")

    if progress_factory is not None:
        with progress_factory(len(files)) as callback:
            outcome = scan_files(files, config.workers, config.chunk_size, callback)
    else:
        outcome = scan_files(files, config.workers, config.chunk_size)

    index = build_reference_index(reference)
    result = reconcile(outcome.records, reference, index, update=update)
    summary = result.summary

    reporter.verdicts(result.verdicts)
    reporter.summary(summary)

    if update:
        reporter.message(f"\nUpdating reference file: {snapshot_path}")
        save_snapshot(reference, snapshot_path)

    run_finished = int(time.time())
    stats: Dict[str, int] = {
        "scanned": len(files),
        "hashed": len(outcome.records),
        "errors": len(outcome.errors),
        "snapshot_entries": len(reference),
    }
    stats.update(exclusion_stats)
    stats.update(summary.as_dict())
    logging.info(
        f"Completed: scanned={stats['scanned']}, matched={summary.matched}, "
        f"moved={summary.moved}, mismatched={summary.mismatched}, "
        f"skipped={summary.skipped}, extra={summary.extra}, errors={stats['errors']}"
    )

    details: Dict[str, object] = {
        kind: [v.to_json() for v in result.verdicts if v.kind == kind]
        for kind in VERDICT_KINDS
        if kind != MATCHED
    }
    details["errors"] = outcome.errors
    details["has_mismatch"] = summary.has_mismatch
    if update:
        details["updated"] = True
    return build_report(
        root=root,
        snapshot_path=snapshot_path,
        config=config,
        stats=stats,
        run_started=run_started,
        run_finished=run_finished,
        mode="verify",
        details=details,
    )
