"""Snapshot promotion for ikwyd.

This module provides the SnapshotPromoter class. It turns a finished
staging area into a dated snapshot and, optionally, hardlink-copies the
new snapshot into a fresh staging area so the next run starts from a
populated tree.
"""

from pathlib import Path
import logging
import os
import shutil

from ikwyd.vault import DATA_NAME


logger = logging.getLogger(__name__)


class PromotionError(Exception):
    """Raised when promotion or the staged copy fails."""
    pass


class SnapshotPromoter:
    """
    Promotes staging areas to snapshots.

    Promotion is a single rename within the vault, so after a crash either
    the staging area or the complete snapshot exists. Nothing is rolled
    back on failure; snapshots created earlier are never touched.
    """

    def promote(self, staging_root: Path, vault_root: Path, snapshot_name: str) -> Path:
        """
        Rename the staging area to ``<vault_root>/<snapshot_name>``.

        Args:
            staging_root: The ``base`` directory of the vault
            vault_root: Vault directory
            snapshot_name: Name of the new snapshot

        Returns:
            Path of the new snapshot directory

        Raises:
            PromotionError: If the staging area is missing, the target name
                is taken or the rename fails
        """
        staging_root = Path(staging_root)
        final_path = Path(vault_root) / snapshot_name

        if not staging_root.is_dir():
            raise PromotionError(f"Staging area does not exist: {staging_root}")

        # rename() would silently replace an empty directory
        if os.path.lexists(final_path):
            raise PromotionError(f"Snapshot already exists: {final_path}")

        try:
            os.rename(staging_root, final_path)
        except OSError as e:
            raise PromotionError(f"Cannot rename {staging_root} to {final_path}: {e}")

        logger.info(f"Promoted staging area to snapshot {final_path}")
        return final_path

    def prestage_copy(self, new_snapshot_data: Path, staging_root: Path) -> bool:
        """
        Recreate the staging area as a hardlink copy of a snapshot.

        Directories are created fresh; regular files are hard linked and
        symlinks are copied as symlinks.

        Args:
            new_snapshot_data: ``snapshot`` directory of the new snapshot
            staging_root: The ``base`` directory to recreate

        Returns:
            True if the copy was made, False if it was skipped

        Raises:
            PromotionError: If the copy fails
        """
        new_snapshot_data = Path(new_snapshot_data)
        staging_root = Path(staging_root)
        vault_root = staging_root.parent

        if new_snapshot_data.resolve() == vault_root.resolve():
            logger.warning(f"Staged copy skipped: copy source is the vault root {vault_root}")
            return False

        target = staging_root / DATA_NAME
        logger.info(f"Hard linking {new_snapshot_data} into {target}")
        try:
            staging_root.mkdir(parents=True, exist_ok=True)
            shutil.copytree(
                new_snapshot_data,
                target,
                symlinks=True,
                copy_function=os.link,
            )
        except (OSError, shutil.Error) as e:
            raise PromotionError(f"Cannot create staged copy in {staging_root}: {e}")

        return True
