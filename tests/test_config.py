"""Tests for configuration parsing."""

import tempfile
from datetime import datetime
from pathlib import Path

import hypothesis.strategies as st
import pytest
from hypothesis import given

from ikwyd.config import (
    Configuration,
    ConfigurationInvalidError,
    ConfigurationMissingError,
    LoggingConfig,
    CONFIG_DIR_ENV,
    DEFAULT_CONFIG_DIR,
    DEFAULT_MAIL_SUBJECT,
    create_default_config,
    format_config,
    get_config_dir,
    parse_config_string,
    resolve_config,
)


MINIMAL = '''
source = "/home"
destination_root = "/srv/backup"
'''


class TestParseConfig:
    """Parsing TOML into a Configuration."""

    def test_minimal_defaults(self):
        config = parse_config_string(MINIMAL, "home", config_dir=Path("/etc/ikwyd"))

        assert config.vault == "home"
        assert config.source == "/home"
        assert config.destination_root == Path("/srv/backup")
        assert config.vault_root == Path("/srv/backup/home")
        assert config.use_staged_copy is True
        assert config.rsync_options == ("-aHAXR", "--delete", "--delete-excluded", "--stats", "--quiet")
        assert config.rsync_binary == "rsync"
        assert config.exclude_file is None
        assert config.include_file is None
        assert config.effective_exclude_file == Path("/etc/ikwyd/home.exclude")
        assert config.effective_include_file == Path("/etc/ikwyd/home.include")
        assert config.mail_to is None
        assert config.mail_subject == DEFAULT_MAIL_SUBJECT
        assert config.logging == LoggingConfig()

    def test_verbose_drops_quiet(self):
        config = parse_config_string(MINIMAL, "home", verbose=True)
        assert "--quiet" not in config.rsync_options

    def test_explicit_options_are_split(self):
        toml = MINIMAL + 'rsync_options = "-a --exclude \'my dir\'"\n'
        config = parse_config_string(toml, "home", verbose=True)
        assert config.rsync_options == ("-a", "--exclude", "my dir")

    def test_all_keys(self):
        toml = MINIMAL + '''
use_staged_copy = false
rsync_binary = "/opt/bin/rsync"
exclude_file = "/etc/other.exclude"
include_file = "/etc/other.include"
mail_to = "root@localhost"
mail_subject = "backup %VAULT"

[logging]
level = "debug"
log_file = "/var/log/ikwyd.log"
log_max_size_mb = 2
log_backup_count = 3
'''
        config = parse_config_string(toml, "home")
        assert config.use_staged_copy is False
        assert config.rsync_binary == "/opt/bin/rsync"
        assert config.effective_exclude_file == Path("/etc/other.exclude")
        assert config.effective_include_file == Path("/etc/other.include")
        assert config.mail_to == "root@localhost"
        assert config.logging.level == "DEBUG"
        assert config.logging.log_file == Path("/var/log/ikwyd.log")
        assert config.logging.log_max_bytes == 2 * 1024 * 1024
        assert config.logging.log_backup_count == 3

    def test_remote_source_is_kept(self):
        toml = 'source = "backup@host:/data"\ndestination_root = "/srv"\n'
        assert parse_config_string(toml, "h").source == "backup@host:/data"

    @pytest.mark.parametrize("toml", [
        'destination_root = "/srv"',
        'source = "/home"',
        'source = ""\ndestination_root = "/srv"',
        'source = 1\ndestination_root = "/srv"',
        MINIMAL + 'use_staged_copy = "yes"',
        MINIMAL + 'rsync_options = ["-a"]',
        MINIMAL + 'rsync_options = "-a \'unterminated"',
        MINIMAL + '[logging]\nlevel = "LOUD"',
        MINIMAL + '[logging]\nlog_max_size_mb = "big"',
        'source = "/home"\ndestination_root = ',
    ])
    def test_invalid(self, toml):
        with pytest.raises(ConfigurationInvalidError):
            parse_config_string(toml, "home")


class TestMailSubject:

    def test_substitution(self):
        config = Configuration(
            vault="home",
            source="/home",
            destination_root=Path("/srv"),
            mail_subject="%VAULT at %DATE: %SNAPSHOT",
        )
        subject = config.format_mail_subject("20230215_1200", datetime(2023, 2, 15, 12, 0))
        assert subject == "home at 2023-02-15 12:00: 20230215_1200"

    def test_default_subject(self):
        config = Configuration(vault="home", source="/home", destination_root=Path("/srv"))
        assert config.format_mail_subject("20230215_1200") == "IKWYD log for home::20230215_1200"


class TestResolveConfig:
    """Loading <config_dir>/<vault>.toml."""

    def test_resolve(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "home.toml").write_text(MINIMAL)
            config = resolve_config("home", config_dir=Path(tmpdir))
            assert config.vault == "home"
            assert config.config_dir == Path(tmpdir)

    def test_missing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ConfigurationMissingError):
                resolve_config("home", config_dir=Path(tmpdir))

    @pytest.mark.parametrize("name", ["", "../etc", ".hidden", "a/b"])
    def test_invalid_names(self, name):
        with pytest.raises(ConfigurationInvalidError):
            resolve_config(name, config_dir=Path("/nonexistent"))

    def test_env_config_dir(self, monkeypatch):
        monkeypatch.setenv(CONFIG_DIR_ENV, "/tmp/ikwyd-conf")
        assert get_config_dir() == Path("/tmp/ikwyd-conf")
        assert get_config_dir(Path("/x")) == Path("/x")

    def test_default_config_dir(self, monkeypatch):
        monkeypatch.delenv(CONFIG_DIR_ENV, raising=False)
        assert get_config_dir() == DEFAULT_CONFIG_DIR


class TestTemplate:

    def test_default_template_parses(self):
        config = parse_config_string(create_default_config("home"), "home")
        assert config.source == "/home"
        assert config.destination_root == Path("/srv/backup")


_text = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc")),
    min_size=1,
    max_size=30,
).filter(lambda s: s.strip() and ":" not in s and not s.startswith("~"))


class TestFormatConfigProperties:

    @given(
        source=_text,
        destination=_text,
        staged=st.booleans(),
        mail_to=st.one_of(st.none(), _text),
        level=st.sampled_from(["DEBUG", "INFO", "ERROR"]),
    )
    def test_format_then_parse(self, source, destination, staged, mail_to, level):
        """Formatting a configuration and parsing it back yields the same values."""
        original = Configuration(
            vault="v",
            source=source,
            destination_root=Path(destination),
            config_dir=Path("/etc/ikwyd"),
            use_staged_copy=staged,
            mail_to=mail_to.strip() if mail_to else None,
            logging=LoggingConfig(level=level),
        )
        parsed = parse_config_string(format_config(original), "v", config_dir=Path("/etc/ikwyd"))
        assert parsed == original
