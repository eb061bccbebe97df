"""Exceptions raised while loading configuration."""


class ConfigError(Exception):
    """A configuration source is missing, malformed or out of range."""
