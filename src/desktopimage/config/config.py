"""
Configuration store

Loads the TOML file describing which directories to watch and where their
desktop entries go. Every load produces a new immutable Configuration; the
store only ever swaps its reference to the current one.
"""

import enum
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from desktopimage.errors import ConfigError, ConfigParseError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path('/etc/desktopimage/config.toml')

DEFAULT_CONFIG_TEMPLATE = """# auto_grant_executable = false

# [[Watcher]]
# app_path = "/path/to/app_directory"
# desktop_path = "/path/to/desktop_directory"
# icon_path = "/path/to/icon.png"
# categories = "Application"
"""

RULE_FIELDS = ('app_path', 'desktop_path', 'icon_path', 'categories')


@dataclass(frozen=True)
class WatchRule:
    """One source directory mapped to one desktop entry directory."""
    app_path: str
    desktop_path: str
    categories: str
    icon_path: str = ''


@dataclass(frozen=True)
class Configuration:
    auto_grant_executable: bool = False
    rules: tuple = field(default_factory=tuple)

    @property
    def active_rules(self):
        """Rules complete enough to be watched, in file order."""
        return tuple(rule for rule in self.rules if is_rule_valid(rule))

    @property
    def usable(self):
        return bool(self.active_rules)


class LoadState(enum.Enum):
    LOADED = 'loaded'
    TEMPLATE_CREATED = 'template_created'
    INCOMPLETE = 'incomplete'


@dataclass(frozen=True)
class LoadResult:
    config: Configuration
    state: LoadState


def is_rule_valid(rule):
    return bool(rule.app_path and rule.desktop_path and rule.categories)


def _parse_rule(index, raw):
    if not isinstance(raw, dict):
        raise ConfigParseError(f"Watcher entry #{index} must be a table")

    values = {}
    for name in RULE_FIELDS:
        value = raw.get(name, '')
        if not isinstance(value, str):
            raise ConfigParseError(
                f"Watcher entry #{index}: '{name}' must be a string, got {type(value).__name__}"
            )
        values[name] = value
    return WatchRule(**values)


def parse_config(text):
    """Parse TOML text into a Configuration, raising ConfigParseError."""
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError(f"Invalid TOML: {e}") from e

    auto_grant = data.get('auto_grant_executable', False)
    if not isinstance(auto_grant, bool):
        raise ConfigParseError("'auto_grant_executable' must be a boolean")

    raw_rules = data.get('Watcher', [])
    if isinstance(raw_rules, dict):
        # a single [Watcher] table instead of [[Watcher]]
        raw_rules = [raw_rules]
    if not isinstance(raw_rules, list):
        raise ConfigParseError("'Watcher' must be an array of tables")

    rules = tuple(_parse_rule(i, raw) for i, raw in enumerate(raw_rules))
    return Configuration(auto_grant_executable=auto_grant, rules=rules)


def ensure_config_directory(config_dir):
    config_dir = Path(config_dir)
    if config_dir.is_dir():
        return
    logger.warning(f"Configuration directory {config_dir} does not exist. Creating it.")
    try:
        config_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Failed to create configuration directory {config_dir}: {e}") from e
    logger.info(f"Configuration directory created at {config_dir}.")


def create_default_config(config_path):
    config_path = Path(config_path)
    try:
        config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
        os.chmod(config_path, 0o644)
    except OSError as e:
        raise ConfigError(f"Failed to create default config file {config_path}: {e}") from e


class ConfigStore:
    """Owns the configuration file and the current configuration snapshot."""

    def __init__(self, path=DEFAULT_CONFIG_PATH):
        self.path = Path(path)
        self.current = Configuration()

    def _read(self):
        try:
            text = self.path.read_text(encoding='utf-8')
        except UnicodeDecodeError as e:
            raise ConfigParseError(f"Config file {self.path} is not valid UTF-8: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read config file {self.path}: {e}") from e
        return parse_config(text)

    def _log_skipped_rules(self, config):
        for index, rule in enumerate(config.rules):
            if not is_rule_valid(rule):
                logger.warning(
                    f"Watcher entry #{index} in {self.path} is missing app_path, "
                    f"desktop_path or categories; skipping it."
                )

    def load(self):
        """Prepare and read the configuration file.

        A missing file is replaced by a commented-out template and reported
        as TEMPLATE_CREATED; a file without any complete watcher entry is
        reported as INCOMPLETE. Neither is an error, but the returned
        configuration has nothing to watch.
        """
        ensure_config_directory(self.path.parent)

        if not self.path.exists():
            logger.warning(f"Configuration file {self.path} does not exist. Creating default template.")
            create_default_config(self.path)
            logger.info(
                f"Default configuration template created at {self.path}. "
                f"Please edit and uncomment required fields."
            )
            self.current = Configuration()
            return LoadResult(self.current, LoadState.TEMPLATE_CREATED)

        config = self._read()
        self.current = config
        self._log_skipped_rules(config)

        if not config.usable:
            logger.warning("Configuration file is incomplete or invalid. Waiting for user to update it.")
            return LoadResult(config, LoadState.INCOMPLETE)

        logger.info(f"Configuration successfully loaded from {self.path}: {config}")
        return LoadResult(config, LoadState.LOADED)

    def reload(self):
        """Re-read the file; the current snapshot is kept if this raises."""
        config = self._read()
        self.current = config
        self._log_skipped_rules(config)
        return config
