#!/usr/bin/env python3
"""
Treeseal – content fingerprints for a directory tree.

Computes a BLAKE3 digest, modification time and size for every file under a
root and stores them in a JSON snapshot, or reconciles the tree against an
earlier snapshot to find unchanged, moved, corrupted and new files.

Commands:
  snapshot  Fingerprint every file and write the snapshot.
  verify    Re-fingerprint and compare against a snapshot (optionally updating it).

Exit status: 0 when no file is mismatched, 1 when at least one is,
2 for usage and I/O errors.
"""

import argparse
import logging
import sys
from functools import partial
from pathlib import Path
from typing import List, Optional

from common import (
    DEFAULT_MAX_MOVED_CANDIDATES,
    DEFAULT_WORKERS,
    EXIT_ERROR,
    EXIT_MISMATCH,
    EXIT_OK,
    ScanConfig,
    SnapshotParseError,
    SnapshotWriteError,
    UsageError,
    parse_exclude_extensions,
    setup_logging,
    write_report,
)
from console import Reporter, progress_bar
from scan_cmd import snapshot_directory
from verify_cmd import verify_directory


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--root',
        type=Path,
        required=True,
        help='Root directory to scan recursively',
    )
    parser.add_argument(
        '--skip',
        action='append',
        default=[],
        metavar='NAME',
        help='Directory name to leave out, matched exactly. Repeatable.',
    )
    parser.add_argument(
        '--exclude-ext',
        action='append',
        default=[],
        help='Extensions to exclude (e.g. .tmp,.db). Comma-separated or repeatable.',
    )
    parser.add_argument(
        '--workers',
        type=int,
        default=DEFAULT_WORKERS,
        help=f'Number of parallel hashing threads (default: {DEFAULT_WORKERS})',
    )
    parser.add_argument(
        '--progress',
        action='store_true',
        help='Show a progress bar while hashing',
    )
    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Print nothing; rely on the exit status',
    )
    parser.add_argument(
        '--report',
        type=Path,
        help='Also write a JSON report of the run to this path',
    )
    parser.add_argument(
        '--log',
        type=Path,
        help='Write log output to this file',
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose (debug) logging',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Fingerprint a directory tree (snapshot) or check it against '
                    'an earlier snapshot (verify).',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  snapshot:
    python treeseal.py snapshot --root /data --output hashes.json
    python treeseal.py snapshot --root /data --output hashes.json --skip .git --skip node_modules

  verify:
    python treeseal.py verify --root /data --snapshot hashes.json
    python treeseal.py verify --root /data --snapshot hashes.json --update --progress
    python treeseal.py verify --root /data --snapshot hashes.json -q && echo intact
        """,
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    snapshot_parser = subparsers.add_parser(
        'snapshot',
        help='Fingerprint every file under --root and write the snapshot',
    )
    _add_common_arguments(snapshot_parser)
    snapshot_parser.add_argument(
        '--output',
        type=Path,
        required=True,
        help='Path of the snapshot JSON to write',
    )

    verify_parser = subparsers.add_parser(
        'verify',
        help='Compare files under --root against a snapshot',
    )
    _add_common_arguments(verify_parser)
    verify_parser.add_argument(
        '--snapshot',
        type=Path,
        required=True,
        help='Snapshot JSON to verify against',
    )
    verify_parser.add_argument(
        '--update',
        action='store_true',
        help='Record skipped, moved and extra files in the snapshot',
    )
    verify_parser.add_argument(
        '--max-moved-candidates',
        type=int,
        default=DEFAULT_MAX_MOVED_CANDIDATES,
        help='Hide the previous paths of a moved file when more files share its content '
             f'(default: {DEFAULT_MAX_MOVED_CANDIDATES})',
    )
    return parser


def _validate(args: argparse.Namespace) -> Path:
    """Check what argparse cannot and return the root directory."""
    root = args.root
    if not root.exists():
        raise UsageError(f"Root directory does not exist: {root}")
    if not root.is_dir():
        raise UsageError(f"Root path is not a directory: {root}")
    if args.workers < 1:
        raise UsageError(f"--workers must be at least 1, got {args.workers}")
    if getattr(args, 'max_moved_candidates', 0) < 0:
        raise UsageError("--max-moved-candidates cannot be negative")
    return root


def run(args: argparse.Namespace) -> int:
    """Execute a parsed command and return the exit status."""
    root = _validate(args)
    config = ScanConfig(
        skip_dirs=set(args.skip),
        exclude_exts=parse_exclude_extensions(args.exclude_ext),
        workers=args.workers,
    )
    progress_factory = partial(progress_bar, enabled=args.progress and not args.quiet)

    if args.command == 'snapshot':
        report = snapshot_directory(
            root=root,
            output_path=args.output,
            config=config,
            report_path=args.report,
            progress_factory=progress_factory,
        )
        if args.report:
            write_report(report, args.report)
        return EXIT_OK

    reporter = Reporter(
        quiet=args.quiet,
        max_moved_candidates=args.max_moved_candidates,
        show_matched=args.verbose,
    )
    report = verify_directory(
        root=root,
        snapshot_path=args.snapshot,
        config=config,
        update=args.update,
        reporter=reporter,
        report_path=args.report,
        progress_factory=progress_factory,
    )
    if args.report:
        write_report(report, args.report)

    if report["has_mismatch"]:
        reporter.failure()
        return EXIT_MISMATCH
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the script."""
    args = build_parser().parse_args(argv)

    setup_logging(args.log, args.verbose, args.quiet)

    try:
        status = run(args)
    except (UsageError, SnapshotParseError, SnapshotWriteError) as exc:
        logging.error(str(exc))
        sys.exit(EXIT_ERROR)
    sys.exit(status)


if __name__ == "__main__":
    main()
