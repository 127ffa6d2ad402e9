"""
Cache error taxonomy.

Only StorageError changes cache behaviour (pass-through mode). Exceptions
raised by produce callables are never re-wrapped by the cache.
"""


class CacheError(Exception):
    """Base class for cache errors."""


class StorageError(CacheError):
    """The backing key-value store failed to read or write."""


class SerializationError(CacheError):
    """A value could not be encoded to, or decoded from, the stored payload."""


class ProduceError(CacheError):
    """Optional wrapper for producers that want to tag their own failures."""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key
