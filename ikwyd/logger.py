"""Logging configuration for ikwyd.

This module provides logging setup and utility functions for the backup
pipeline. There are two destinations:

- an optional persistent application log, rotated with gzip compression;
- the per-run log (RunLog), kept in memory for the terminal and mail, and
  written to ``snapshot.log`` in the staging area, which moves with the
  snapshot when it is promoted.
"""

import gzip
import logging
import os
import shutil
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional


# Logger name for the ikwyd package
LOGGER_NAME = "ikwyd"

# Default rotation settings
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

# Valid log levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "ERROR"}

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ErrorCode(Enum):
    """Error codes written with every fatal error."""
    CONFIG_MISSING = "E1001"
    CONFIG_INVALID = "E1002"
    VAULT_LOCKED = "E2001"
    SYNC_FAILED = "E3001"
    PROMOTION_FAILED = "E4001"
    INTERRUPTED = "E5001"
    UNKNOWN_ERROR = "E0001"


ERROR_GUIDANCE: Dict[ErrorCode, str] = {
    ErrorCode.CONFIG_MISSING: "No configuration file for this vault. Create one with 'ikwyd init'.",
    ErrorCode.CONFIG_INVALID: "The vault configuration is invalid or names a filter file that does not exist.",
    ErrorCode.VAULT_LOCKED: "Another run holds the vault lock. If no run is active, remove the .lock file by hand.",
    ErrorCode.SYNC_FAILED: "rsync failed. The staging area was kept and the next run continues from it.",
    ErrorCode.PROMOTION_FAILED: "The snapshot could not be promoted. Inspect the vault; earlier snapshots are intact.",
    ErrorCode.INTERRUPTED: "The run was interrupted. The staging area was kept for the next run.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Check the log for more details.",
}


def get_error_guidance(error_code: ErrorCode) -> str:
    """Get troubleshooting guidance for an error code."""
    return ERROR_GUIDANCE.get(error_code, ERROR_GUIDANCE[ErrorCode.UNKNOWN_ERROR])


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that compresses rotated files with gzip.

    Rotated files are named with a .gz extension.
    """

    def rotation_filename(self, default_name: str) -> str:
        """Append .gz to the rotated filename (e.g. "app.log.1.gz")."""
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        """
        Rotate and compress the log file.

        Compresses the source file using gzip and writes to dest.
        The source file is removed after successful compression.
        """
        if not os.path.exists(source):
            return

        try:
            with open(source, 'rb') as f_in:
                with gzip.open(dest, 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError:
            # If compression fails, fall back to simple rename
            if os.path.exists(source):
                fallback_dest = dest[:-3] if dest.endswith('.gz') else dest
                try:
                    os.rename(source, fallback_dest)
                except OSError:
                    pass  # Best effort - don't fail logging


def _ensure_log_directory(log_path: Path) -> None:
    """Ensure the parent directory for a log file exists."""
    log_dir = log_path.parent
    if not log_dir.exists():
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggingError(f"Failed to create log directory {log_dir}: {e}")


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level_str = level_str.upper()
    if level_str not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{level_str}'. Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return getattr(logging, level_str)


def _formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> logging.Logger:
    """
    Configure the ikwyd logger.

    Clears previously installed handlers and, when ``log_file`` is given,
    adds a gzip-rotating file handler. Terminal output is left to the
    reporter, which prints the run log once the run is over.

    Args:
        level: Log level string: "DEBUG", "INFO", or "ERROR"
        log_file: Optional path to a persistent log file
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Configured logger instance

    Raises:
        LoggingError: If log directory cannot be created or level is invalid
    """
    log_level = _get_log_level(level)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)  # Allow all levels, handlers will filter
    logger.propagate = False

    if log_file is not None:
        log_file = Path(os.path.expanduser(str(log_file)))
        _ensure_log_directory(log_file)
        file_handler = GzipRotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(_formatter())
        logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the ikwyd logger instance."""
    return logging.getLogger(LOGGER_NAME)


class _MemoryHandler(logging.Handler):
    """Keeps formatted records of one run in a list."""

    def __init__(self, lines: List[str]):
        super().__init__()
        self._lines = lines

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._lines.append(self.format(record) + "\n")
        except Exception:
            self.handleError(record)


class RunLog:
    """
    The log of a single run.

    Every record emitted on the ikwyd logger while the run log is attached
    is kept in memory and, once a file is attached, appended to it. The
    file starts out as the staging area's ``snapshot.log`` and is relocated
    when the staging area is promoted.

    Usage:
        run_log = RunLog(level="INFO")
        run_log.attach()
        run_log.attach_file(vault.staging_log)
        ...
        run_log.relocate(vault.snapshot_log(name))
        run_log.detach()
    """

    def __init__(self, level: str = "INFO", logger: Optional[logging.Logger] = None):
        self._logger = logger or get_logger()
        self._lines: List[str] = []
        self._memory_handler = _MemoryHandler(self._lines)
        self._memory_handler.setLevel(_get_log_level(level))
        self._memory_handler.setFormatter(_formatter())
        self._file_handler: Optional[logging.FileHandler] = None
        self._path: Optional[Path] = None

    @property
    def path(self) -> Optional[Path]:
        """Path of the file currently receiving the log."""
        return self._path

    def attach(self) -> None:
        """Start capturing records from the ikwyd logger."""
        if self._memory_handler not in self._logger.handlers:
            self._logger.addHandler(self._memory_handler)

    def attach_file(self, path: Path) -> None:
        """
        Append the run log to ``path``.

        Lines captured before the file was attached are written first so
        the file holds the whole run.
        """
        self.close_file()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.writelines(self._lines)
        self._open_file(path)

    def relocate(self, path: Path) -> None:
        """
        Continue the run log at ``path``.

        Used after the directory holding the log was renamed: the existing
        content moved along with it, so nothing is copied.
        """
        self.close_file()
        self._open_file(path)

    def write_raw(self, text: str) -> None:
        """Append text verbatim, without a log record prefix."""
        if not text:
            return
        if not text.endswith("\n"):
            text += "\n"
        self._lines.append(text)
        if self._file_handler is not None:
            self._file_handler.acquire()
            try:
                self._file_handler.flush()
                self._file_handler.stream.write(text)
                self._file_handler.flush()
            finally:
                self._file_handler.release()

    def set_level(self, level: str) -> None:
        """Change the level of records kept by the run log."""
        log_level = _get_log_level(level)
        self._memory_handler.setLevel(log_level)
        if self._file_handler is not None:
            self._file_handler.setLevel(log_level)

    def text(self) -> str:
        """Return everything logged during the run."""
        return "".join(self._lines)

    def detach(self) -> None:
        """Stop capturing and close the file."""
        self.close_file()
        if self._memory_handler in self._logger.handlers:
            self._logger.removeHandler(self._memory_handler)

    def _open_file(self, path: Path) -> None:
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        handler.setLevel(self._memory_handler.level)
        handler.setFormatter(_formatter())
        self._logger.addHandler(handler)
        self._file_handler = handler
        self._path = path

    def close_file(self) -> None:
        """Close the file, keeping the in-memory copy."""
        if self._file_handler is not None:
            self._logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None
            self._path = None


def log_backup_start(
    logger: logging.Logger,
    vault: str,
    source: str,
    vault_root: Path,
) -> None:
    """Log the start of a backup run."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    logger.info(f"Backup of vault '{vault}' started at {timestamp}")
    logger.info(f"Source: {source}")
    logger.info(f"Vault: {vault_root}")


def log_backup_completion(
    logger: logging.Logger,
    duration_seconds: float,
    snapshot_path: Optional[Path] = None,
) -> None:
    """Log the completion of a backup run."""
    logger.info("Backup completed successfully")
    logger.info(f"Duration: {duration_seconds:.2f} seconds")
    if snapshot_path:
        logger.info(f"Snapshot: {snapshot_path}")


def log_backup_error(
    logger: logging.Logger,
    error: Exception,
    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
    context: Optional[str] = None,
) -> None:
    """
    Log a fatal backup error with its code and guidance.

    Args:
        logger: Logger instance
        error: The exception that occurred
        error_code: Code classifying the error
        context: Additional context about what was happening
    """
    if context:
        logger.error(f"[{error_code.value}] Backup failed during {context}: {error}")
    else:
        logger.error(f"[{error_code.value}] Backup failed: {error}")
    logger.error(f"[{error_code.value}] {get_error_guidance(error_code)}")


def log_rsync_output(run_log: Optional[RunLog], output: str) -> None:
    """
    Append synchronizer output to the run log verbatim.

    Args:
        run_log: Run log of the current run (ignored if None)
        output: Combined rsync stdout/stderr output
    """
    if run_log is not None and output.strip():
        run_log.write_raw(output)
