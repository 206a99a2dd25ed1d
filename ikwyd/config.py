"""Configuration management for ikwyd.

This module provides the Configuration dataclass and functions for
resolving a named vault configuration from a TOML file.

Each vault is described by ``<config_dir>/<vault>.toml``. The resolved
Configuration is immutable and is passed explicitly into every component.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import os
import shlex
import tomllib


class ConfigurationError(Exception):
    """Base class for configuration problems."""
    pass


class ConfigurationMissingError(ConfigurationError):
    """Raised when the named configuration file does not exist."""
    pass


class ConfigurationInvalidError(ConfigurationError):
    """Raised when configuration is malformed or references missing files."""
    pass


# Default directory holding <vault>.toml, <vault>.exclude and <vault>.include
DEFAULT_CONFIG_DIR = Path("/etc/ikwyd")

# Environment variable overriding DEFAULT_CONFIG_DIR
CONFIG_DIR_ENV = "IKWYD_CONFIG_DIR"

CONFIG_SUFFIX = ".toml"
EXCLUDE_SUFFIX = ".exclude"
INCLUDE_SUFFIX = ".include"

# Archive mode, hardlinks, ACLs, xattrs, relative paths, mirror deletes, stats
DEFAULT_RSYNC_OPTIONS = "-aHAXR --delete --delete-excluded --stats"
QUIET_OPTION = "--quiet"

DEFAULT_MAIL_SUBJECT = "IKWYD log for %VAULT::%SNAPSHOT"

# Required keys in configuration
REQUIRED_KEYS = ["source", "destination_root"]

VALID_LOG_LEVELS = ("DEBUG", "INFO", "ERROR")


def default_rsync_options(verbose: bool = False) -> Tuple[str, ...]:
    """Return the default rsync options, quiet unless verbose."""
    options = shlex.split(DEFAULT_RSYNC_OPTIONS)
    if not verbose:
        options.append(QUIET_OPTION)
    return tuple(options)


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for the persistent application log."""
    level: str = "INFO"
    log_file: Optional[Path] = None
    log_max_size_mb: int = 10
    log_backup_count: int = 5

    @property
    def log_max_bytes(self) -> int:
        """Return max size in bytes for use with RotatingFileHandler."""
        return self.log_max_size_mb * 1024 * 1024


@dataclass(frozen=True)
class Configuration:
    """Resolved configuration for one vault."""
    vault: str
    source: str
    destination_root: Path
    config_dir: Path = DEFAULT_CONFIG_DIR
    use_staged_copy: bool = True
    rsync_options: Tuple[str, ...] = field(default_factory=default_rsync_options)
    rsync_binary: str = "rsync"
    exclude_file: Optional[Path] = None
    include_file: Optional[Path] = None
    mail_to: Optional[str] = None
    mail_subject: str = DEFAULT_MAIL_SUBJECT
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def vault_root(self) -> Path:
        """Directory holding this vault's snapshots, staging area and lock."""
        return self.destination_root / self.vault

    @property
    def default_exclude_file(self) -> Path:
        return self.config_dir / f"{self.vault}{EXCLUDE_SUFFIX}"

    @property
    def default_include_file(self) -> Path:
        return self.config_dir / f"{self.vault}{INCLUDE_SUFFIX}"

    @property
    def effective_exclude_file(self) -> Path:
        return self.exclude_file if self.exclude_file is not None else self.default_exclude_file

    @property
    def effective_include_file(self) -> Path:
        return self.include_file if self.include_file is not None else self.default_include_file

    def format_mail_subject(self, snapshot: str, date: Optional[datetime] = None) -> str:
        """
        Substitute %VAULT, %DATE and %SNAPSHOT in the mail subject template.

        Args:
            snapshot: Snapshot name of the run
            date: Date of the run (defaults to now)

        Returns:
            Subject line
        """
        if date is None:
            date = datetime.now()
        return (
            self.mail_subject
            .replace("%VAULT", self.vault)
            .replace("%DATE", date.strftime("%Y-%m-%d %H:%M"))
            .replace("%SNAPSHOT", snapshot)
        )


def get_config_dir(config_dir: Optional[Path] = None) -> Path:
    """Return the configuration directory, honouring IKWYD_CONFIG_DIR."""
    if config_dir is not None:
        return Path(config_dir)
    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return DEFAULT_CONFIG_DIR


def config_path_for(vault: str, config_dir: Optional[Path] = None) -> Path:
    """Return the TOML file path for a vault name."""
    return get_config_dir(config_dir) / f"{vault}{CONFIG_SUFFIX}"


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    if not isinstance(value, expected_type):
        raise ConfigurationInvalidError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _expand(path_str: str) -> Path:
    return Path(os.path.expanduser(path_str))


def _optional_path(data: Dict[str, Any], key: str) -> Optional[Path]:
    value = data.get(key)
    if value is None:
        return None
    _validate_type(value, str, key)
    if not value.strip():
        return None
    return _expand(value)


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    logging_data = data.get("logging", {})
    _validate_type(logging_data, dict, "logging")

    level = logging_data.get("level", "INFO")
    _validate_type(level, str, "logging.level")
    if level.upper() not in VALID_LOG_LEVELS:
        raise ConfigurationInvalidError(
            f"Key 'logging.level' must be one of {', '.join(VALID_LOG_LEVELS)}, got '{level}'"
        )

    log_file = _optional_path(logging_data, "log_file")

    log_max_size_mb = logging_data.get("log_max_size_mb", 10)
    _validate_type(log_max_size_mb, int, "logging.log_max_size_mb")

    log_backup_count = logging_data.get("log_backup_count", 5)
    _validate_type(log_backup_count, int, "logging.log_backup_count")

    return LoggingConfig(
        level=level.upper(),
        log_file=log_file,
        log_max_size_mb=log_max_size_mb,
        log_backup_count=log_backup_count,
    )


def parse_config_string(
    toml_content: str,
    vault: str,
    config_dir: Optional[Path] = None,
    verbose: bool = False,
) -> Configuration:
    """
    Parse TOML string into a Configuration for ``vault``.

    Args:
        toml_content: TOML formatted string
        vault: Vault name the configuration belongs to
        config_dir: Directory used to derive default include/exclude paths
        verbose: If True, the default rsync options omit --quiet

    Returns:
        Configuration object

    Raises:
        ConfigurationInvalidError: If TOML is malformed, a required key is
            missing or a value has the wrong type
    """
    config_dir = get_config_dir(config_dir)

    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationInvalidError(f"Invalid TOML format: {e}")

    for key in REQUIRED_KEYS:
        if key not in data:
            raise ConfigurationInvalidError(f"Missing required configuration key: '{key}'")

    source = data["source"]
    _validate_type(source, str, "source")
    if not source.strip():
        raise ConfigurationInvalidError("Key 'source' must not be empty")

    destination_root = data["destination_root"]
    _validate_type(destination_root, str, "destination_root")
    if not destination_root.strip():
        raise ConfigurationInvalidError("Key 'destination_root' must not be empty")

    use_staged_copy = data.get("use_staged_copy", True)
    _validate_type(use_staged_copy, bool, "use_staged_copy")

    if "rsync_options" in data:
        raw_options = data["rsync_options"]
        _validate_type(raw_options, str, "rsync_options")
        try:
            rsync_options = tuple(shlex.split(raw_options))
        except ValueError as e:
            raise ConfigurationInvalidError(f"Key 'rsync_options' cannot be parsed: {e}")
    else:
        rsync_options = default_rsync_options(verbose)

    rsync_binary = data.get("rsync_binary", "rsync")
    _validate_type(rsync_binary, str, "rsync_binary")

    mail_to = data.get("mail_to")
    if mail_to is not None:
        _validate_type(mail_to, str, "mail_to")
        mail_to = mail_to.strip() or None

    mail_subject = data.get("mail_subject", DEFAULT_MAIL_SUBJECT)
    _validate_type(mail_subject, str, "mail_subject")

    # Source stays a string: it may be a remote user@host:path endpoint
    if ":" not in source:
        source = os.path.expanduser(source)

    return Configuration(
        vault=vault,
        source=source,
        destination_root=_expand(destination_root),
        config_dir=config_dir,
        use_staged_copy=use_staged_copy,
        rsync_options=rsync_options,
        rsync_binary=rsync_binary,
        exclude_file=_optional_path(data, "exclude_file"),
        include_file=_optional_path(data, "include_file"),
        mail_to=mail_to,
        mail_subject=mail_subject,
        logging=_parse_logging_config(data),
    )


def resolve_config(
    vault: str,
    config_dir: Optional[Path] = None,
    verbose: bool = False,
) -> Configuration:
    """
    Load the named vault configuration.

    Args:
        vault: Vault (and configuration) name
        config_dir: Directory containing <vault>.toml. Defaults to
            $IKWYD_CONFIG_DIR or /etc/ikwyd
        verbose: If True, the default rsync options omit --quiet

    Returns:
        Configuration object

    Raises:
        ConfigurationMissingError: If the file does not exist
        ConfigurationInvalidError: If the file cannot be read or is invalid
    """
    if not vault or "/" in vault or vault.startswith("."):
        raise ConfigurationInvalidError(f"Invalid vault name: '{vault}'")

    config_dir = get_config_dir(config_dir)
    config_path = config_path_for(vault, config_dir)

    if not config_path.exists():
        raise ConfigurationMissingError(
            f"Configuration file not found: {config_path}"
        )

    try:
        content = config_path.read_text()
    except PermissionError:
        raise ConfigurationInvalidError(
            f"Permission denied reading configuration file: {config_path}"
        )
    except OSError as e:
        raise ConfigurationInvalidError(
            f"Error reading configuration file {config_path}: {e}"
        )

    return parse_config_string(content, vault, config_dir=config_dir, verbose=verbose)


def _escape_toml_string(s: str) -> str:
    """Escape a string for TOML basic string format."""
    # Must escape backslashes first, then quotes
    return s.replace("\\", "\\\\").replace('"', '\\"')


def format_config(config: Configuration) -> str:
    """
    Format Configuration object back to TOML string.

    Args:
        config: Configuration object to format

    Returns:
        TOML formatted string
    """
    lines: List[str] = []

    lines.append(f'source = "{_escape_toml_string(config.source)}"')
    lines.append(f'destination_root = "{_escape_toml_string(str(config.destination_root))}"')
    lines.append(f"use_staged_copy = {'true' if config.use_staged_copy else 'false'}")
    lines.append(f'rsync_options = "{_escape_toml_string(shlex.join(config.rsync_options))}"')
    lines.append(f'rsync_binary = "{_escape_toml_string(config.rsync_binary)}"')
    if config.exclude_file is not None:
        lines.append(f'exclude_file = "{_escape_toml_string(str(config.exclude_file))}"')
    if config.include_file is not None:
        lines.append(f'include_file = "{_escape_toml_string(str(config.include_file))}"')
    if config.mail_to is not None:
        lines.append(f'mail_to = "{_escape_toml_string(config.mail_to)}"')
    lines.append(f'mail_subject = "{_escape_toml_string(config.mail_subject)}"')
    lines.append("")

    lines.append("[logging]")
    lines.append(f'level = "{_escape_toml_string(config.logging.level)}"')
    if config.logging.log_file is not None:
        lines.append(f'log_file = "{_escape_toml_string(str(config.logging.log_file))}"')
    lines.append(f"log_max_size_mb = {config.logging.log_max_size_mb}")
    lines.append(f"log_backup_count = {config.logging.log_backup_count}")

    return "\n".join(lines)


def create_default_config(vault: str) -> str:
    """
    Generate a commented configuration template for `ikwyd init`.

    Args:
        vault: Vault name, used in the example paths

    Returns:
        TOML formatted string
    """
    return f'''# ikwyd configuration for vault "{vault}"

# What to back up: a local path or user@host:path
source = "/home"

# Snapshots are kept in <destination_root>/{vault}/
destination_root = "/srv/backup"

# Hardlink-copy each finished snapshot into base/ so the next run starts
# from a populated tree
use_staged_copy = true

# Options passed to rsync. --quiet is added to the default unless -v is given
# rsync_options = "{DEFAULT_RSYNC_OPTIONS}"

# Filter lists. Defaults: <config_dir>/{vault}.exclude and .include,
# used only if present
# exclude_file = "/etc/ikwyd/{vault}.exclude"
# include_file = "/etc/ikwyd/{vault}.include"

# Mail the run log on failure (and on success with -v)
# mail_to = "root@localhost"
# %VAULT, %DATE and %SNAPSHOT are substituted
mail_subject = "{DEFAULT_MAIL_SUBJECT}"

[logging]
# Log level: DEBUG, INFO, ERROR
level = "INFO"
# Optional persistent log, rotated and gzip compressed
# log_file = "/var/log/ikwyd.log"
log_max_size_mb = 10
log_backup_count = 5
'''
