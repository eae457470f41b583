"""Exceptions raised by desktopimage."""


class DesktopImageError(Exception):
    """Base class for all desktopimage errors."""


class EnvironmentCheckError(DesktopImageError):
    """The host cannot run the monitor (wrong OS or missing utility)."""


class ConfigError(DesktopImageError):
    """The configuration file could not be prepared or read."""


class ConfigParseError(ConfigError):
    """The configuration file exists but its content is malformed."""


class WatchError(DesktopImageError):
    """A source directory could not be watched."""
