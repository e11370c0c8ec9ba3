"""Schema migrations for the bot database."""

from .runner import MigrationRunner

__all__ = ["MigrationRunner"]
