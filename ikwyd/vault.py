"""Vault layout and snapshot chain resolution for ikwyd.

A vault root holds dated snapshot directories, the ``base`` staging area
and the ``.lock`` marker::

    <destination_root>/<vault>/.lock
    <destination_root>/<vault>/base/snapshot/
    <destination_root>/<vault>/base/snapshot.log
    <destination_root>/<vault>/<YYYYMMDD_HHMM>/snapshot/
    <destination_root>/<vault>/<YYYYMMDD_HHMM>/snapshot.log
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple
import logging
import os

from ikwyd.lock import VaultLock


logger = logging.getLogger(__name__)

# Timestamp format for snapshot directories
TIMESTAMP_FORMAT = "%Y%m%d_%H%M"

STAGING_NAME = "base"
DATA_NAME = "snapshot"
LOG_NAME = "snapshot.log"

# Sequence suffixes used when two runs share the same minute
MAX_SEQUENCE = 99


@dataclass(frozen=True)
class Vault:
    """Paths making up one vault."""
    root: Path

    @property
    def lock_path(self) -> Path:
        return self.root / VaultLock.LOCK_NAME

    @property
    def staging_root(self) -> Path:
        return self.root / STAGING_NAME

    @property
    def staging_data(self) -> Path:
        return self.staging_root / DATA_NAME

    @property
    def staging_log(self) -> Path:
        return self.staging_root / LOG_NAME

    def snapshot_root(self, name: str) -> Path:
        return self.root / name

    def snapshot_data(self, name: str) -> Path:
        return self.root / name / DATA_NAME

    def snapshot_log(self, name: str) -> Path:
        return self.root / name / LOG_NAME


@dataclass
class SnapshotInfo:
    """Information about a completed snapshot."""
    name: str
    path: Path
    timestamp: datetime
    sequence: int = 0

    @property
    def data_path(self) -> Path:
        return self.path / DATA_NAME

    @property
    def log_path(self) -> Path:
        return self.path / LOG_NAME


def format_snapshot_name(when: datetime) -> str:
    """Return the YYYYMMDD_HHMM token for ``when``."""
    return when.strftime(TIMESTAMP_FORMAT)


def parse_snapshot_name(name: str) -> Optional[Tuple[datetime, int]]:
    """
    Parse a snapshot directory name.

    Handles both formats:
    - YYYYMMDD_HHMM (base format)
    - YYYYMMDD_HHMM-NN (with sequence number)

    Args:
        name: Snapshot directory name

    Returns:
        (timestamp, sequence) if the name is a valid token, None otherwise
    """
    base, sep, seq_str = name.partition("-")
    sequence = 0
    if sep:
        if len(seq_str) != 2 or not seq_str.isdigit():
            return None
        sequence = int(seq_str)
        if not 1 <= sequence <= MAX_SEQUENCE:
            return None

    # strptime accepts unpadded fields, so insist on the exact width
    if len(base) != 13:
        return None
    try:
        timestamp = datetime.strptime(base, TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return timestamp, sequence


def list_snapshots(vault_root: Path) -> List[SnapshotInfo]:
    """
    List completed snapshots, most recent first.

    Only directories whose name starts with a digit are candidates, which
    leaves out the lock marker and the staging area. Candidates that do not
    parse as a timestamp token are skipped with a warning.

    Args:
        vault_root: Vault directory

    Returns:
        List of SnapshotInfo sorted by (timestamp, sequence), descending
    """
    vault_root = Path(vault_root)
    if not vault_root.is_dir():
        return []

    snapshots = []
    for entry in vault_root.iterdir():
        if not entry.name[:1].isdigit():
            continue
        if not entry.is_dir():
            continue
        parsed = parse_snapshot_name(entry.name)
        if parsed is None:
            logger.warning(f"Ignoring unrecognised entry in vault: {entry}")
            continue
        timestamp, sequence = parsed
        snapshots.append(SnapshotInfo(
            name=entry.name,
            path=entry,
            timestamp=timestamp,
            sequence=sequence,
        ))

    snapshots.sort(key=lambda s: (s.timestamp, s.sequence), reverse=True)
    return snapshots


def find_latest_snapshot(vault_root: Path) -> Optional[SnapshotInfo]:
    """Return the most recent completed snapshot, or None."""
    snapshots = list_snapshots(vault_root)
    return snapshots[0] if snapshots else None


def resolve_reference(vault_root: Path) -> Optional[Path]:
    """
    Return the hardlink reference for the next sync.

    Args:
        vault_root: Vault directory

    Returns:
        ``<latest snapshot>/snapshot``, or None for the first backup
    """
    latest = find_latest_snapshot(vault_root)
    if latest is None:
        return None
    return latest.data_path


def generate_snapshot_name(vault_root: Path, when: datetime) -> str:
    """
    Generate a snapshot name for ``when`` that is not yet used.

    If a directory with the base token already exists, a sequence number
    (01-99) is appended.

    Args:
        vault_root: Vault directory
        when: Time of the run

    Returns:
        Unique snapshot name in format YYYYMMDD_HHMM or YYYYMMDD_HHMM-NN

    Raises:
        FileExistsError: If all sequence numbers for the minute are taken
    """
    vault_root = Path(vault_root)
    token = format_snapshot_name(when)
    if not os.path.lexists(vault_root / token):
        return token

    for seq in range(1, MAX_SEQUENCE + 1):
        seq_name = f"{token}-{seq:02d}"
        if not os.path.lexists(vault_root / seq_name):
            logger.debug(f"Timestamp collision detected, using sequence number: {seq_name}")
            return seq_name

    raise FileExistsError(f"All snapshot names for {token} are taken in {vault_root}")
