"""Pytest configuration and fixtures for ikwyd tests."""

import logging
import tempfile
from pathlib import Path

import pytest
from hypothesis import settings, Phase

from ikwyd.logger import LOGGER_NAME

# Configure hypothesis to use fewer examples for faster test runs
# Disable shrinking phase to speed up tests further
settings.register_profile(
    "fast",
    max_examples=10,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=50, deadline=10000)
settings.register_profile("dev", max_examples=10, deadline=10000)

# Use the fast profile by default
settings.load_profile("fast")


@pytest.fixture(autouse=True)
def reset_ikwyd_logger():
    """Remove handlers left on the ikwyd logger by a test."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def tmp_dirs():
    """Create temporary config, source and destination directories."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_dir = root / "etc"
        source = root / "source"
        dest = root / "dest"
        config_dir.mkdir()
        source.mkdir()
        dest.mkdir()

        (source / "file1.txt").write_text("content1")
        (source / "file2.txt").write_text("content2")
        (source / "subdir").mkdir()
        (source / "subdir" / "file3.txt").write_text("content3")

        yield {
            "root": root,
            "config_dir": config_dir,
            "source": source,
            "dest": dest,
        }
