"""Exception hierarchy shared by the store, search and pipeline."""


class GalleryError(Exception):
    """Base class for all gallery errors."""
    pass


class ConfigError(GalleryError):
    """Raised when settings cannot be parsed."""
    pass


class StorageError(GalleryError):
    """Base class for content store failures."""
    pass


class StorageUnavailable(StorageError):
    """Raised when the database file cannot be opened or created."""
    pass


class StorageUninitialized(StorageError):
    """Raised when the store is used before init() completed."""

    def __init__(self, message: str = "Database not initialized"):
        super().__init__(message)


class RecordNotFound(StorageError):
    """Raised when no record exists for the requested id."""

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"Image not found: {record_id}")


class VectorLengthMismatch(GalleryError):
    """Raised when two vectors of different length are compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Vectors must be of same length ({left} != {right})")
