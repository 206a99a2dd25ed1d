"""ikwyd - hardlinked snapshot backups driven by rsync."""

__version__ = "0.1.0"

from ikwyd.config import (
    Configuration,
    ConfigurationError,
    ConfigurationMissingError,
    ConfigurationInvalidError,
    LoggingConfig,
    parse_config_string,
    resolve_config,
    format_config,
    create_default_config,
)
from ikwyd.lock import VaultLock, VaultLockedError
from ikwyd.vault import (
    Vault,
    SnapshotInfo,
    list_snapshots,
    find_latest_snapshot,
    resolve_reference,
    generate_snapshot_name,
)
from ikwyd.sync import (
    RsyncCommand,
    SyncError,
    SyncOrchestrator,
    SyncResult,
)
from ikwyd.snapshot import PromotionError, SnapshotPromoter
from ikwyd.logger import (
    ErrorCode,
    LoggingError,
    RunLog,
    setup_logging,
    get_logger,
)
from ikwyd.notify import Notifier
from ikwyd.backup import (
    BackupResult,
    run_backup,
    EXIT_SUCCESS,
    EXIT_FAILURE,
)

__all__ = [
    "Configuration",
    "ConfigurationError",
    "ConfigurationMissingError",
    "ConfigurationInvalidError",
    "LoggingConfig",
    "parse_config_string",
    "resolve_config",
    "format_config",
    "create_default_config",
    "VaultLock",
    "VaultLockedError",
    "Vault",
    "SnapshotInfo",
    "list_snapshots",
    "find_latest_snapshot",
    "resolve_reference",
    "generate_snapshot_name",
    "RsyncCommand",
    "SyncError",
    "SyncOrchestrator",
    "SyncResult",
    "PromotionError",
    "SnapshotPromoter",
    "ErrorCode",
    "LoggingError",
    "RunLog",
    "setup_logging",
    "get_logger",
    "Notifier",
    "BackupResult",
    "run_backup",
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
]
