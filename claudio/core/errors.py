"""Exceptions raised by bridge services."""


class ClaudioError(Exception):
    """Base class for bridge errors surfaced to the user."""


class AgentBinaryNotFoundError(ClaudioError):
    """No executable agent binary was found for a headless run."""


class BridgeNotConfiguredError(ClaudioError):
    """The bridge was started without a bot token or while disabled."""
