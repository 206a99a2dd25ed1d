"""Lock management for ikwyd.

This module provides the VaultLock class that prevents concurrent runs
against the same vault using a marker file inside the vault root.
"""

import logging
import os
from pathlib import Path


logger = logging.getLogger(__name__)


class VaultLockedError(Exception):
    """Raised when the vault lock is already held."""
    pass


class VaultLock:
    """
    Exclusive, file-presence-based lock over one vault directory.

    The marker is created with O_CREAT | O_EXCL so the existence check and
    creation are a single atomic operation. The marker is zero bytes and
    read-only to its owner. A marker left behind by a crashed run is never
    removed automatically; an operator has to delete it.

    Implements context manager protocol for safe lock handling.
    """

    LOCK_NAME = ".lock"
    LOCK_MODE = 0o400

    def __init__(self, vault_root: Path):
        """
        Initialize VaultLock.

        Args:
            vault_root: Vault directory the lock guards
        """
        self.vault_root = Path(vault_root)
        self.lock_path = self.vault_root / self.LOCK_NAME
        self._acquired = False

    def acquire(self) -> None:
        """
        Create the lock marker.

        Raises:
            VaultLockedError: If the marker already exists
        """
        self.vault_root.mkdir(parents=True, exist_ok=True)

        try:
            fd = os.open(
                str(self.lock_path),
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                self.LOCK_MODE,
            )
        except FileExistsError:
            raise VaultLockedError(
                f"Vault is locked: {self.lock_path} exists "
                f"(another run is active or a previous run did not finish)"
            )
        os.close(fd)

        self._acquired = True
        logger.info(f"Locked vault {self.vault_root}")

    def release(self) -> None:
        """Remove the lock marker. Does nothing if it is absent."""
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            return
        finally:
            self._acquired = False
        logger.info(f"Unlocked vault {self.vault_root}")

    def is_locked(self) -> bool:
        """Check if the marker exists (held by any process)."""
        return self.lock_path.exists()

    @property
    def acquired(self) -> bool:
        """Return whether this instance created the marker."""
        return self._acquired

    def __enter__(self) -> "VaultLock":
        """Context manager entry - acquire lock."""
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit - release lock."""
        self.release()
        return False  # Don't suppress exceptions
