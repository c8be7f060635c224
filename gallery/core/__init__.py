"""Core logic - records, similarity search, embedding pipeline and service."""

from .errors import (
    ConfigError,
    GalleryError,
    RecordNotFound,
    StorageError,
    StorageUnavailable,
    StorageUninitialized,
    VectorLengthMismatch,
)
from .events import EventBus, Topic
from .models import ImageRecord, RecordState
from .similarity import cosine_similarity, normalize
from .search import DEFAULT_THRESHOLD, SearchResult, rank_by_similarity
from .pipeline import EmbeddingPipeline, ProgressUpdate, RecoveryReport
from .service import GalleryService
from .view import GalleryEntry, GalleryView

__all__ = [
    "ConfigError",
    "GalleryError",
    "RecordNotFound",
    "StorageError",
    "StorageUnavailable",
    "StorageUninitialized",
    "VectorLengthMismatch",
    "EventBus",
    "Topic",
    "ImageRecord",
    "RecordState",
    "cosine_similarity",
    "normalize",
    "DEFAULT_THRESHOLD",
    "SearchResult",
    "rank_by_similarity",
    "EmbeddingPipeline",
    "ProgressUpdate",
    "RecoveryReport",
    "GalleryService",
    "GalleryEntry",
    "GalleryView",
]
