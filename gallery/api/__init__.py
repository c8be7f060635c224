"""External API integrations - embedding API client."""

from .embedding_api import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_DIMENSION,
    DEFAULT_MODEL_VERSION,
    EmbeddingAPI,
    EmbeddingAPIError,
    EmbeddingProvider,
    EmbeddingTimeout,
    MockEmbeddingAPI,
    Modality,
    convert_to_png_bytes,
    downscale_image,
    format_data_url,
)

__all__ = [
    "EmbeddingAPI",
    "EmbeddingAPIError",
    "EmbeddingProvider",
    "EmbeddingTimeout",
    "MockEmbeddingAPI",
    "Modality",
    "convert_to_png_bytes",
    "downscale_image",
    "format_data_url",
    "DEFAULT_BASE_URL",
    "DEFAULT_MAX_DIMENSION",
    "DEFAULT_MODEL_VERSION",
]
