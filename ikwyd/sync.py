"""Sync orchestration for ikwyd.

This module builds the rsync command line for a run and executes it
against the staging area. rsync does the transfer; this module only
decides which options it gets and reports its exit status and output.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Sequence
import logging
import subprocess

from ikwyd.config import ConfigurationInvalidError
from ikwyd.logger import RunLog, log_rsync_output


logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Raised when the synchronizer cannot be executed at all."""
    pass


@dataclass
class SyncResult:
    """Result of one synchronizer invocation."""
    exit_status: int
    output: str
    command: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        # Only exit status 0 counts; rsync's partial-transfer codes are failures too
        return self.exit_status == 0


class RsyncCommand:
    """
    Typed builder for the rsync argument list.

    Each option is kept as a discrete argument, so nothing is ever passed
    through a shell.

    Flags added on top of the base options:
    - --link-dest: hard link unchanged files from the previous snapshot
    - --include-from: include list, only together with an exclude list
    - --exclude-from: exclude list

    The include list is placed before the exclude list because rsync
    applies the first rule that matches.
    """

    def __init__(self, base_options: Sequence[str], rsync_binary: str = "rsync"):
        self.rsync_binary = rsync_binary
        self.base_options = list(base_options)
        self.reference: Optional[Path] = None
        self.exclude_file: Optional[Path] = None
        self.include_file: Optional[Path] = None

    def with_reference(self, reference: Optional[Path]) -> "RsyncCommand":
        self.reference = reference
        return self

    def with_exclude_file(self, exclude_file: Optional[Path]) -> "RsyncCommand":
        self.exclude_file = exclude_file
        return self

    def with_include_file(self, include_file: Optional[Path]) -> "RsyncCommand":
        self.include_file = include_file
        return self

    def options(self) -> List[str]:
        """Return the effective option list, without endpoints."""
        opts = list(self.base_options)
        if self.reference is not None:
            opts.append(f"--link-dest={self.reference}")
        if self.exclude_file is not None:
            if self.include_file is not None:
                opts.append(f"--include-from={self.include_file}")
            opts.append(f"--exclude-from={self.exclude_file}")
        return opts

    def build(self, source: str, destination: Path) -> List[str]:
        """
        Build the full command.

        Args:
            source: Local path or user@host:path, passed through unchanged
            destination: Staging data directory

        Returns:
            List of command arguments for subprocess
        """
        return [self.rsync_binary, *self.options(), str(source), str(destination)]


def check_filter_file(
    path: Optional[Path],
    default_path: Optional[Path],
    kind: str,
) -> Optional[Path]:
    """
    Decide whether a filter list is used.

    A path equal to the per-vault default is optional and skipped when
    absent. Any other path was configured explicitly and must exist.

    Args:
        path: Configured path (None means the default)
        default_path: Per-vault default path
        kind: "exclude" or "include", for messages

    Returns:
        The path to pass to rsync, or None to skip it

    Raises:
        ConfigurationInvalidError: If an explicitly configured file is missing
    """
    if path is None:
        path = default_path
    if path is None:
        return None

    if path.is_file():
        return path

    if default_path is not None and path == default_path:
        logger.debug(f"No {kind} file at default location {path}, skipping")
        return None

    raise ConfigurationInvalidError(f"Configured {kind} file does not exist: {path}")


class SyncOrchestrator:
    """
    Runs rsync from the source into the staging data directory.

    The staging data directory is created when missing but never cleared:
    data left by a failed run is where the next attempt starts from.
    """

    def __init__(self, rsync_binary: str = "rsync"):
        self.rsync_binary = rsync_binary

    def build_command(
        self,
        source: str,
        staging_data_path: Path,
        reference_path: Optional[Path],
        exclude_file: Optional[Path],
        include_file: Optional[Path],
        base_options: Sequence[str],
    ) -> List[str]:
        """Build the rsync argument list from already validated inputs."""
        return (
            RsyncCommand(base_options, rsync_binary=self.rsync_binary)
            .with_reference(reference_path)
            .with_exclude_file(exclude_file)
            .with_include_file(include_file)
            .build(source, staging_data_path)
        )

    def run(
        self,
        source: str,
        staging_data_path: Path,
        reference_path: Optional[Path],
        exclude_file: Optional[Path],
        include_file: Optional[Path],
        base_options: Sequence[str],
        default_exclude_file: Optional[Path] = None,
        default_include_file: Optional[Path] = None,
        signal_handler: Optional[Any] = None,
        run_log: Optional[RunLog] = None,
    ) -> SyncResult:
        """
        Synchronize ``source`` into ``staging_data_path``.

        Process:
        1. Validate the include/exclude files (before anything else)
        2. Create the staging data directory if missing
        3. Build the command
        4. Run rsync with stdout and stderr merged, blocking until it exits

        Args:
            source: Local path or user@host:path
            staging_data_path: Staging data directory (rsync destination)
            reference_path: Previous snapshot data for --link-dest, or None
            exclude_file: Exclude list path, or None for the default
            include_file: Include list path, or None for the default
            base_options: Options every invocation gets
            default_exclude_file: Per-vault default exclude path
            default_include_file: Per-vault default include path
            signal_handler: Optional SignalHandler told about the process
            run_log: Run log receiving the rsync output verbatim

        Returns:
            SyncResult with exit status and combined output

        Raises:
            ConfigurationInvalidError: If an explicitly configured filter
                file is missing; rsync is not started
            SyncError: If rsync cannot be executed
        """
        exclude = check_filter_file(exclude_file, default_exclude_file, "exclude")
        include = check_filter_file(include_file, default_include_file, "include")
        if include is not None and exclude is None:
            logger.warning(f"Include file {include} ignored: it only applies together with an exclude file")

        staging_data_path.mkdir(parents=True, exist_ok=True)

        cmd = self.build_command(
            source,
            staging_data_path,
            reference_path,
            exclude,
            include,
            base_options,
        )
        if reference_path is not None:
            logger.info(f"Hard linking unchanged files from {reference_path}")
        else:
            logger.info("No previous snapshot, running a full copy")
        logger.info(f"Running: {subprocess.list2cmdline(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise SyncError(f"Cannot execute {self.rsync_binary}: {e}")

        if signal_handler is not None:
            signal_handler.set_rsync_process(process)
        try:
            stdout_bytes, _ = process.communicate()
        finally:
            if signal_handler is not None:
                signal_handler.set_rsync_process(None)

        output = stdout_bytes.decode('utf-8', errors='replace') if stdout_bytes else ''
        result = SyncResult(exit_status=process.returncode, output=output, command=cmd)
        log_rsync_output(run_log, output)

        if result.success:
            logger.info("rsync finished successfully")
        else:
            logger.error(f"rsync exited with code {result.exit_status}")
        return result
