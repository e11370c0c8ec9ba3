"""Core modules for Discord bot."""

from .logging import setup_logging

__all__ = ["setup_logging"]
