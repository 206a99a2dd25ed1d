"""Tests for snapshot promotion and the staged copy."""

import os
import tempfile
from pathlib import Path

import pytest

from ikwyd.snapshot import PromotionError, SnapshotPromoter


def _make_staging(vault_root: Path) -> Path:
    staging = vault_root / "base"
    (staging / "snapshot" / "dir").mkdir(parents=True)
    (staging / "snapshot" / "file.txt").write_text("data")
    (staging / "snapshot" / "dir" / "nested.txt").write_text("nested")
    (staging / "snapshot.log").write_text("log\n")
    return staging


class TestPromote:
    """Renaming the staging area to a snapshot."""

    def test_promote_renames_staging(self):
        """After promote there is exactly one new directory and no base/."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "20230101_0000").mkdir()
            staging = _make_staging(root)
            before = set(os.listdir(root))

            final = SnapshotPromoter().promote(staging, root, "20230102_0000")

            after = set(os.listdir(root))
            assert final == root / "20230102_0000"
            assert after - before == {"20230102_0000"}
            assert before - after == {"base"}
            assert (final / "snapshot" / "file.txt").read_text() == "data"
            assert (final / "snapshot.log").read_text() == "log\n"

    def test_promote_missing_staging(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            with pytest.raises(PromotionError):
                SnapshotPromoter().promote(root / "base", root, "20230102_0000")

    def test_promote_refuses_existing_target(self):
        """An existing snapshot, even an empty one, is never replaced."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            staging = _make_staging(root)
            (root / "20230102_0000").mkdir()

            with pytest.raises(PromotionError):
                SnapshotPromoter().promote(staging, root, "20230102_0000")

            assert staging.is_dir()
            assert list((root / "20230102_0000").iterdir()) == []


class TestPrestageCopy:
    """Hardlink copy of the new snapshot into a fresh staging area."""

    def test_copy_hardlinks_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            staging = _make_staging(root)
            final = SnapshotPromoter().promote(staging, root, "20230102_0000")

            copied = SnapshotPromoter().prestage_copy(final / "snapshot", root / "base")

            assert copied
            src = final / "snapshot" / "dir" / "nested.txt"
            dst = root / "base" / "snapshot" / "dir" / "nested.txt"
            assert dst.exists()
            assert src.stat().st_ino == dst.stat().st_ino
            assert src.stat().st_nlink == 2
            # Directories are new, not shared
            assert (root / "base" / "snapshot" / "dir").stat().st_ino != (final / "snapshot" / "dir").stat().st_ino
            assert not (root / "base" / "snapshot.log").exists()

    def test_copy_keeps_symlinks(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            data = root / "20230102_0000" / "snapshot"
            data.mkdir(parents=True)
            (data / "target.txt").write_text("t")
            os.symlink("target.txt", data / "link")

            SnapshotPromoter().prestage_copy(data, root / "base")

            link = root / "base" / "snapshot" / "link"
            assert link.is_symlink()
            assert os.readlink(link) == "target.txt"

    def test_copy_skipped_for_vault_root(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            assert SnapshotPromoter().prestage_copy(root, root / "base") is False
            assert not (root / "base").exists()

    def test_copy_fails_if_staging_populated(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            data = root / "20230102_0000" / "snapshot"
            data.mkdir(parents=True)
            (root / "base" / "snapshot").mkdir(parents=True)

            with pytest.raises(PromotionError):
                SnapshotPromoter().prestage_copy(data, root / "base")
