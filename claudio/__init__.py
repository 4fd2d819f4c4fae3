"""Claudio: a Telegram bridge for Claude Code sessions."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("claudio")
except PackageNotFoundError:
    # Running from a source checkout that was never installed.
    __version__ = "0.0.0"

__all__ = ["__version__"]
