"""Storage package providing the audit trail of control cycles and swap attempts."""

from .sqlite_repository import SQLiteRepository

__all__ = ["SQLiteRepository"]
