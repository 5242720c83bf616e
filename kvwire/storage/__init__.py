"""Storage module for kvwire."""

from .store import KVStore

__all__ = ["KVStore"]
