"""Durable listing storage."""

from harvester.storage.sqlite_store import SqliteListingStore

__all__ = ["SqliteListingStore"]
