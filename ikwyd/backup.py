"""Main backup orchestration for ikwyd.

This module provides the run_backup function that drives one run against
one vault:

- Resolve configuration
- Acquire the vault lock
- Find the previous snapshot (hardlink reference)
- Sync the source into the staging area
- Promote the staging area to a dated snapshot
- Optionally pre-stage the next base copy
- Release the lock
- Report

Every failure is fatal for the run. The lock is released on every exit
path once it has been acquired, and the staging area is kept on failure so
the next run starts from it.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional
import logging
import time

from ikwyd.config import (
    Configuration,
    ConfigurationInvalidError,
    ConfigurationMissingError,
    resolve_config,
)
from ikwyd.lock import VaultLock, VaultLockedError
from ikwyd.logger import (
    ErrorCode,
    LoggingError,
    RunLog,
    setup_logging,
    log_backup_start,
    log_backup_completion,
    log_backup_error,
)
from ikwyd.notify import Notifier
from ikwyd.signal_handler import SignalHandler
from ikwyd.snapshot import PromotionError, SnapshotPromoter
from ikwyd.sync import SyncError, SyncOrchestrator, SyncResult
from ikwyd.vault import (
    Vault,
    format_snapshot_name,
    generate_snapshot_name,
    resolve_reference,
)


EXIT_SUCCESS = 0
EXIT_FAILURE = 1


@dataclass
class BackupResult:
    """Result of a backup run."""
    success: bool
    exit_code: int
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    snapshot_name: Optional[str] = None
    snapshot_path: Optional[Path] = None
    sync_result: Optional[SyncResult] = None
    staged_copy: bool = False
    duration_seconds: float = 0.0
    log_text: str = ""


def _failure(error_code: ErrorCode, error: Exception, **kwargs) -> BackupResult:
    return BackupResult(
        success=False,
        exit_code=EXIT_FAILURE,
        error_code=error_code,
        error_message=str(error),
        **kwargs,
    )


def run_backup(
    vault: Optional[str] = None,
    config_dir: Optional[Path] = None,
    config: Optional[Configuration] = None,
    verbose: bool = False,
    now: Optional[datetime] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
    promoter: Optional[SnapshotPromoter] = None,
    notifier: Optional[Notifier] = None,
    report: bool = True,
    register_signals: bool = True,
) -> BackupResult:
    """
    Run a complete backup of one vault.

    Args:
        vault: Vault name, used to resolve the configuration
        config_dir: Directory holding <vault>.toml
        config: Pre-resolved Configuration. If provided, vault/config_dir
            are ignored
        verbose: Surface the run log on success too
        now: Time of the run, used for the snapshot name (defaults to now)
        orchestrator: SyncOrchestrator to use (defaults to one for
            config.rsync_binary)
        promoter: SnapshotPromoter to use
        notifier: Notifier to report through (defaults to one for
            config.mail_to)
        report: If False, nothing is printed or mailed
        register_signals: Install SIGTERM/SIGINT handlers for the run

    Returns:
        BackupResult with success status, exit code and run details
    """
    start_time = time.time()
    if now is None:
        now = datetime.now()
    snapshot_token = format_snapshot_name(now)

    logger = setup_logging()
    run_log = RunLog()
    run_log.attach()

    lock: Optional[VaultLock] = None
    signal_handler: Optional[SignalHandler] = None
    result: Optional[BackupResult] = None

    try:
        # Step 1: Resolve configuration
        if config is None:
            try:
                config = resolve_config(vault or "", config_dir=config_dir, verbose=verbose)
            except ConfigurationMissingError as e:
                log_backup_error(logger, e, ErrorCode.CONFIG_MISSING, "configuration")
                result = _failure(ErrorCode.CONFIG_MISSING, e)
                return result
            except ConfigurationInvalidError as e:
                log_backup_error(logger, e, ErrorCode.CONFIG_INVALID, "configuration")
                result = _failure(ErrorCode.CONFIG_INVALID, e)
                return result

        # Step 2: Set up logging as configured
        run_log.detach()
        try:
            logger = setup_logging(
                level=config.logging.level,
                log_file=config.logging.log_file,
                max_bytes=config.logging.log_max_bytes,
                backup_count=config.logging.log_backup_count,
            )
            run_log.set_level(config.logging.level)
        except LoggingError as e:
            # If logging setup fails, continue with the run log only
            logger = setup_logging()
            logger.warning(f"Failed to set up logging: {e}")
        run_log.attach()

        layout = Vault(config.vault_root)
        log_backup_start(logger, config.vault, config.source, layout.root)

        # Step 3: Acquire the vault lock
        lock = VaultLock(layout.root)
        try:
            lock.acquire()
        except VaultLockedError as e:
            log_backup_error(logger, e, ErrorCode.VAULT_LOCKED, "lock acquisition")
            result = _failure(ErrorCode.VAULT_LOCKED, e)
            return result

        if register_signals:
            signal_handler = SignalHandler()
            signal_handler.register(lock=lock)

        try:
            result = _run_locked(
                config,
                layout,
                now,
                snapshot_token,
                run_log,
                orchestrator or SyncOrchestrator(config.rsync_binary),
                promoter or SnapshotPromoter(),
                signal_handler,
            )
        finally:
            if signal_handler is not None:
                signal_handler.unregister()
            # Step 8: Release lock on every path once acquired
            if lock.acquired:
                try:
                    lock.release()
                except OSError as e:
                    logger.warning(f"Error releasing lock: {e}")
        return result

    except SystemExit as e:
        # Raised by the signal handler once rsync is stopped and the lock released
        log_backup_error(logger, Exception(f"exit status {e.code}"), ErrorCode.INTERRUPTED, "interruption")
        result = BackupResult(
            success=False,
            exit_code=e.code if isinstance(e.code, int) else EXIT_FAILURE,
            error_code=ErrorCode.INTERRUPTED,
            error_message="Interrupted by signal",
        )
        raise

    except Exception as e:
        log_backup_error(logger, e, ErrorCode.UNKNOWN_ERROR, "unexpected error")
        result = _failure(ErrorCode.UNKNOWN_ERROR, Exception(f"Unexpected error: {e}"))
        return result

    finally:
        run_log.close_file()
        run_log.detach()
        if result is not None:
            result.duration_seconds = time.time() - start_time
            result.log_text = run_log.text()
            if report:
                _report(result, config, notifier, verbose, snapshot_token, now)


def _run_locked(
    config: Configuration,
    layout: Vault,
    now: datetime,
    snapshot_token: str,
    run_log: RunLog,
    orchestrator: SyncOrchestrator,
    promoter: SnapshotPromoter,
    signal_handler: Optional[SignalHandler],
) -> BackupResult:
    """Steps that run while the vault lock is held."""
    logger = logging.getLogger("ikwyd.backup")
    start_time = time.time()

    # The staging area is reused as-is when a previous run left it behind
    if layout.staging_root.exists():
        logger.info(f"Continuing from existing staging area {layout.staging_root}")
    layout.staging_root.mkdir(parents=True, exist_ok=True)
    run_log.attach_file(layout.staging_log)

    # Step 4: Find the hardlink reference
    reference = resolve_reference(layout.root)

    # Step 5: Sync into the staging area
    try:
        sync_result = orchestrator.run(
            source=config.source,
            staging_data_path=layout.staging_data,
            reference_path=reference,
            exclude_file=config.exclude_file,
            include_file=config.include_file,
            base_options=config.rsync_options,
            default_exclude_file=config.default_exclude_file,
            default_include_file=config.default_include_file,
            signal_handler=signal_handler,
            run_log=run_log,
        )
    except ConfigurationInvalidError as e:
        log_backup_error(logger, e, ErrorCode.CONFIG_INVALID, "filter validation")
        return _failure(ErrorCode.CONFIG_INVALID, e)
    except SyncError as e:
        log_backup_error(logger, e, ErrorCode.SYNC_FAILED, "sync")
        return _failure(ErrorCode.SYNC_FAILED, e)

    if not sync_result.success:
        error = SyncError(f"rsync exited with code {sync_result.exit_status}")
        log_backup_error(logger, error, ErrorCode.SYNC_FAILED, "sync")
        return _failure(ErrorCode.SYNC_FAILED, error, sync_result=sync_result)

    # Step 6: Promote the staging area
    try:
        snapshot_name = generate_snapshot_name(layout.root, now)
    except FileExistsError as e:
        log_backup_error(logger, e, ErrorCode.PROMOTION_FAILED, "promotion")
        return _failure(ErrorCode.PROMOTION_FAILED, e, sync_result=sync_result)
    if snapshot_name != snapshot_token:
        logger.warning(f"Snapshot {snapshot_token} already exists, using {snapshot_name}")

    run_log.close_file()
    try:
        snapshot_path = promoter.promote(layout.staging_root, layout.root, snapshot_name)
    except PromotionError as e:
        run_log.relocate(layout.staging_log)
        log_backup_error(logger, e, ErrorCode.PROMOTION_FAILED, "promotion")
        return _failure(ErrorCode.PROMOTION_FAILED, e, sync_result=sync_result)
    run_log.relocate(layout.snapshot_log(snapshot_name))

    # Step 7: Pre-stage the next base copy
    staged_copy = False
    if config.use_staged_copy:
        try:
            staged_copy = promoter.prestage_copy(layout.snapshot_data(snapshot_name), layout.staging_root)
        except PromotionError as e:
            log_backup_error(logger, e, ErrorCode.PROMOTION_FAILED, "staged copy")
            return _failure(
                ErrorCode.PROMOTION_FAILED,
                e,
                sync_result=sync_result,
                snapshot_name=snapshot_name,
                snapshot_path=snapshot_path,
            )

    log_backup_completion(logger, time.time() - start_time, snapshot_path)

    return BackupResult(
        success=True,
        exit_code=EXIT_SUCCESS,
        snapshot_name=snapshot_name,
        snapshot_path=snapshot_path,
        sync_result=sync_result,
        staged_copy=staged_copy,
    )


def _report(
    result: BackupResult,
    config: Optional[Configuration],
    notifier: Optional[Notifier],
    verbose: bool,
    snapshot_token: str,
    now: datetime,
) -> None:
    """Surface the run log through the notifier."""
    if notifier is None:
        notifier = Notifier(config.mail_to if config is not None else None)
    snapshot = result.snapshot_name or snapshot_token
    if config is not None:
        subject = config.format_mail_subject(snapshot, now)
    else:
        subject = f"IKWYD log for {snapshot}"
    notifier.report(result.success, result.log_text, subject, verbose=verbose)
