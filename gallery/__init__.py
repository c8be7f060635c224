"""Semantic Gallery - store images locally and search them by meaning.

Package structure:
    gallery/
    ├── cli.py              # Command-line interface
    ├── config.py           # Settings from YAML and environment
    ├── core/               # Core business logic
    │   ├── models.py       # Data models (ImageRecord)
    │   ├── errors.py       # Exception hierarchy
    │   ├── similarity.py   # Cosine similarity
    │   ├── search.py       # Similarity ranking
    │   ├── events.py       # Change notification bus
    │   ├── pipeline.py     # Embedding computation and recovery
    │   ├── service.py      # GalleryService facade
    │   └── view.py         # Refreshable view with temporary file handles
    ├── storage/            # Data persistence
    │   └── database.py     # SQLite content store
    └── api/                # External integrations
        ├── embedding_api.py # Embedding API client
        └── schemas.py      # Prediction API schemas
"""

from .core import (
    ConfigError,
    EmbeddingPipeline,
    EventBus,
    GalleryError,
    GalleryEntry,
    GalleryService,
    GalleryView,
    ImageRecord,
    RecordNotFound,
    RecordState,
    RecoveryReport,
    SearchResult,
    StorageUnavailable,
    StorageUninitialized,
    Topic,
    VectorLengthMismatch,
    cosine_similarity,
    rank_by_similarity,
)
from .storage.database import ImageDatabase
from .api.embedding_api import (
    EmbeddingAPI,
    EmbeddingAPIError,
    EmbeddingTimeout,
    MockEmbeddingAPI,
    Modality,
)
from .config import Settings

__version__ = "0.1.0"

__all__ = [
    # Core
    "ImageRecord",
    "RecordState",
    "EventBus",
    "Topic",
    "EmbeddingPipeline",
    "RecoveryReport",
    "GalleryService",
    "GalleryView",
    "GalleryEntry",
    "SearchResult",
    "cosine_similarity",
    "rank_by_similarity",
    # Errors
    "GalleryError",
    "ConfigError",
    "RecordNotFound",
    "StorageUnavailable",
    "StorageUninitialized",
    "VectorLengthMismatch",
    # Storage
    "ImageDatabase",
    # API
    "EmbeddingAPI",
    "EmbeddingAPIError",
    "EmbeddingTimeout",
    "MockEmbeddingAPI",
    "Modality",
    # Config
    "Settings",
]
