"""
Snapshot store: load and save the JSON map of path -> {hash, modified, size}.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict

from common import FingerprintRecord, SnapshotParseError, SnapshotWriteError


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def record_from_json(path_str: str, data: object) -> FingerprintRecord:
    """Validate one snapshot entry and turn it into a FingerprintRecord."""
    if not isinstance(data, dict):
        raise SnapshotParseError(f"Entry for {path_str!r} is not an object")
    digest = data.get("hash")
    modified = data.get("modified")
    size = data.get("size")
    if not isinstance(digest, str):
        raise SnapshotParseError(f"Entry for {path_str!r} has no string 'hash'")
    if not _is_int(modified):
        raise SnapshotParseError(f"Entry for {path_str!r} has no integer 'modified'")
    if not _is_int(size):
        raise SnapshotParseError(f"Entry for {path_str!r} has no integer 'size'")
    return FingerprintRecord(digest=digest, modified=modified, size=size)


def load_snapshot(snapshot_path: Path) -> Dict[str, FingerprintRecord]:
    """Read a snapshot file. Any problem is a SnapshotParseError."""
    try:
        text = snapshot_path.read_text(encoding='utf-8')
    except OSError as exc:
        raise SnapshotParseError(f"Cannot read snapshot {snapshot_path}: {exc}") from exc
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise SnapshotParseError(f"Snapshot {snapshot_path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SnapshotParseError(f"Snapshot {snapshot_path} must contain a JSON object")

    snapshot = {path_str: record_from_json(path_str, entry) for path_str, entry in data.items()}
    logging.debug(f"Loaded {len(snapshot)} entries from {snapshot_path}")
    return snapshot


def save_snapshot(snapshot: Dict[str, FingerprintRecord], snapshot_path: Path) -> None:
    """Write the whole snapshot, replacing the previous file.

    The JSON goes to a temporary file next to the target which is then renamed
    over it, so readers never see a half-written snapshot.
    """
    payload = json.dumps(
        {path_str: record.to_json() for path_str, record in snapshot.items()},
        indent=2,
        sort_keys=True,
    )
    directory = snapshot_path.parent
    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{snapshot_path.name}.", suffix=".tmp", dir=directory
        )
    except OSError as exc:
        raise SnapshotWriteError(f"Cannot write snapshot {snapshot_path}: {exc}") from exc

    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as handle:
            handle.write(payload)
        os.replace(tmp_name, snapshot_path)
    except OSError as exc:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise SnapshotWriteError(f"Cannot write snapshot {snapshot_path}: {exc}") from exc
    logging.info(f"Snapshot with {len(snapshot)} entries written to {snapshot_path}")
