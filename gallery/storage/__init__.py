"""Storage layer - SQLite content store."""

from .database import SCHEMA_VERSION, ImageDatabase

__all__ = ["ImageDatabase", "SCHEMA_VERSION"]
