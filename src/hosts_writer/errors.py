"""Exception types raised by hosts-writer."""


class HostsError(Exception):
    """Base class for hosts-writer errors."""


class InvalidArgument(HostsError, ValueError):
    """Malformed call: wrong argument type or unknown configuration option."""


class IOFailure(HostsError):
    """A stat, read or write of the hosts file failed during a cycle."""


class ConfigError(HostsError):
    """A YAML configuration file could not be loaded."""
