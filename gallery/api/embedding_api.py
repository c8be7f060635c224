"""Embedding API client for generating image and text embeddings.

The remote API runs predictions asynchronously: a prediction is created,
then polled until it succeeds, fails, or the attempts run out.
Both modalities return vectors of the same dimensionality, so text queries
can be compared against image embeddings.
"""

import asyncio
import base64
import enum
import hashlib
import io
import logging
import time
from typing import Callable, Optional, Protocol

import requests
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from ..core.errors import GalleryError
from ..core.similarity import normalize
from .schemas import Prediction, PredictionInput, PredictionRequest

logger = logging.getLogger(__name__)

# Default maximum dimension (width or height) for images sent to embedding API
DEFAULT_MAX_DIMENSION = 1024

DEFAULT_BASE_URL = "https://api.replicate.com"

# CLIP ViT-B/32, 512 dimensions for both images and text
DEFAULT_MODEL_VERSION = "0383f62e173dc821ec52663ed22a076d9c970549c209666ac3db181618b7a304"


class Modality(str, enum.Enum):
    VISION = "vision"
    TEXT = "text"


class EmbeddingAPIError(GalleryError):
    """Raised when the embedding API returns an error."""
    pass


class EmbeddingTimeout(EmbeddingAPIError):
    """Raised when a prediction does not finish within the allowed number of polls."""
    pass


class EmbeddingProvider(Protocol):
    """Anything that turns bytes into a fixed-length vector."""

    async def embed(
        self,
        data: bytes,
        modality: Modality = Modality.VISION,
        mimetype: str = "application/octet-stream",
    ) -> list[float]:
        ...


def downscale_image(
    img: Image.Image,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
) -> Image.Image:
    """Downscale image if it exceeds the maximum dimension.

    Maintains aspect ratio. Only downscales; never upscales images.
    """
    width, height = img.size

    if width <= max_dimension and height <= max_dimension:
        return img

    scale = min(max_dimension / width, max_dimension / height)
    new_width = max(1, int(width * scale))
    new_height = max(1, int(height * scale))

    return img.resize((new_width, new_height), Image.Resampling.LANCZOS)


def convert_to_png_bytes(
    image_data: bytes,
    max_dimension: Optional[int] = DEFAULT_MAX_DIMENSION,
) -> bytes:
    """Convert image bytes to PNG, downscaling large images first.

    Args:
        image_data: Raw image bytes (any format Pillow can read)
        max_dimension: Maximum width or height in pixels. None disables
            downscaling.

    Raises:
        UnidentifiedImageError: If the bytes are not a readable image
    """
    with Image.open(io.BytesIO(image_data)) as img:
        if max_dimension is not None:
            img = downscale_image(img, max_dimension)

        if img.mode in ("RGBA", "P", "LA", "CMYK"):
            img = img.convert("RGB")

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
    return buffer.getvalue()


def format_data_url(data: bytes, mimetype: str) -> str:
    """Format bytes as a base64 data URL."""
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{mimetype};base64,{encoded}"


class EmbeddingAPI:
    """Client for a prediction-style embedding API.

    Expected API format:
        POST {base_url}/v1/predictions
        Request body: {"version": "<model_version>",
                       "input": {"input": "<data URL>", "modality": "vision"}}
        Response: {"id": "<prediction_id>", "status": "starting", ...}

        GET {base_url}/v1/predictions/{id}
        Response: {"id": ..., "status": "succeeded", "output": [0.1, 0.2, ...]}
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_token: Optional[str] = None,
        model_version: str = DEFAULT_MODEL_VERSION,
        timeout: float = 30.0,
        max_attempts: int = 30,
        poll_interval: float = 1.0,
        max_image_dimension: Optional[int] = DEFAULT_MAX_DIMENSION,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the embedding API client.

        Args:
            base_url: Base URL of the prediction API
            api_token: API token sent as ``Authorization: Token <token>``
            model_version: Model version identifier for new predictions
            timeout: Per-request timeout in seconds
            max_attempts: Number of status polls before giving up
            poll_interval: Seconds to wait between polls
            max_image_dimension: Large images are downscaled to this limit
                before upload. None disables downscaling.
            session: requests session to use (a new one by default)
            sleep: Called between polls; replaced in tests
        """
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.model_version = model_version
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.max_image_dimension = max_image_dimension
        self.session = session or requests.Session()
        self._sleep = sleep

    def __repr__(self) -> str:
        # The token stays out of reprs and logs
        return f"{type(self).__name__}(base_url={self.base_url!r}, model_version={self.model_version[:12]!r})"

    def _get_headers(self) -> dict:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Token {self.api_token}"
        return headers

    def _prepare_input(self, data: bytes, modality: Modality, mimetype: str) -> str:
        """Encode the payload as a data URL, re-encoding images to PNG."""
        if modality == Modality.TEXT:
            return format_data_url(data, "text/plain")
        try:
            png = convert_to_png_bytes(data, self.max_image_dimension)
        except Image.DecompressionBombError as e:
            raise EmbeddingAPIError(f"Image too large to embed: {e}") from e
        except (UnidentifiedImageError, OSError):
            logger.debug("Payload is not a readable image, sending as %s", mimetype)
            return format_data_url(data, mimetype)
        return format_data_url(png, "image/png")

    def _parse_prediction(self, response: requests.Response) -> Prediction:
        try:
            return Prediction.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise EmbeddingAPIError(f"Malformed prediction response: {e}") from e

    def _create_prediction(self, data_url: str, modality: Modality) -> Prediction:
        request = PredictionRequest(
            version=self.model_version,
            input=PredictionInput(input=data_url, modality=modality.value),
        )
        try:
            response = self.session.post(
                f"{self.base_url}/v1/predictions",
                json=request.model_dump(),
                headers=self._get_headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise EmbeddingAPIError(f"Request failed: {e}") from e

        if response.status_code not in (200, 201):
            raise EmbeddingAPIError(
                f"Prediction request failed ({response.status_code}): {response.text}"
            )

        prediction = self._parse_prediction(response)
        if prediction.error:
            raise EmbeddingAPIError(f"Prediction rejected: {prediction.error}")
        return prediction

    def _get_prediction(self, prediction_id: str) -> Prediction:
        try:
            response = self.session.get(
                f"{self.base_url}/v1/predictions/{prediction_id}",
                headers=self._get_headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise EmbeddingAPIError(f"Request failed: {e}") from e

        if response.status_code != 200:
            raise EmbeddingAPIError(
                f"Status request failed ({response.status_code}): {response.text}"
            )
        return self._parse_prediction(response)

    def get_embedding_from_bytes(
        self,
        data: bytes,
        modality: Modality = Modality.VISION,
        mimetype: str = "application/octet-stream",
    ) -> list[float]:
        """Run a prediction for the given bytes and wait for its output.

        Raises:
            EmbeddingAPIError: If the API call fails or the prediction fails
            EmbeddingTimeout: If the prediction is still running after
                ``max_attempts`` polls
        """
        modality = Modality(modality)
        data_url = self._prepare_input(data, modality, mimetype)
        prediction = self._create_prediction(data_url, modality)
        logger.debug("Created %s prediction %s", modality.value, prediction.id)

        for _ in range(self.max_attempts):
            if prediction.status == "succeeded":
                if not prediction.output:
                    raise EmbeddingAPIError(f"Prediction {prediction.id} returned no output")
                return prediction.output
            if prediction.status in ("failed", "canceled"):
                raise EmbeddingAPIError(
                    f"Embedding generation {prediction.status}: {prediction.error or 'no details'}"
                )
            self._sleep(self.poll_interval)
            prediction = self._get_prediction(prediction.id)

        if prediction.status == "succeeded" and prediction.output:
            return prediction.output
        raise EmbeddingTimeout(
            f"Timeout waiting for prediction {prediction.id} after {self.max_attempts} attempts"
        )

    def get_text_embedding(self, text: str) -> list[float]:
        """Get embedding for a text query."""
        return self.get_embedding_from_bytes(text.encode("utf-8"), Modality.TEXT, "text/plain")

    async def embed(
        self,
        data: bytes,
        modality: Modality = Modality.VISION,
        mimetype: str = "application/octet-stream",
    ) -> list[float]:
        """Async wrapper running the blocking client in a worker thread."""
        return await asyncio.to_thread(self.get_embedding_from_bytes, data, modality, mimetype)

    def health_check(self) -> bool:
        """Check if the API is reachable."""
        try:
            response = self.session.get(
                f"{self.base_url}/v1/predictions",
                headers=self._get_headers(),
                timeout=5.0,
            )
        except requests.RequestException:
            return False
        return response.status_code < 500


class MockEmbeddingAPI(EmbeddingAPI):
    """Mock embedding API for working without a real server.

    Generates deterministic unit vectors from a hash of the input, so the
    same bytes always produce the same embedding.
    """

    def __init__(self, dimensions: int = 512):
        super().__init__(base_url="http://mock", max_image_dimension=None)
        self.dimensions = dimensions

    def get_embedding_from_bytes(
        self,
        data: bytes,
        modality: Modality = Modality.VISION,
        mimetype: str = "application/octet-stream",
    ) -> list[float]:
        seed = bytes(data)
        hash_bytes = b""
        for i in range((self.dimensions // 32) + 1):
            hash_bytes += hashlib.sha256(seed + str(i).encode()).digest()

        # Each byte gives a value in [-0.5, 0.5]
        embedding = [(hash_bytes[i] / 255.0) - 0.5 for i in range(self.dimensions)]
        return normalize(embedding)

    async def embed(
        self,
        data: bytes,
        modality: Modality = Modality.VISION,
        mimetype: str = "application/octet-stream",
    ) -> list[float]:
        return self.get_embedding_from_bytes(data, modality, mimetype)

    def health_check(self) -> bool:
        """Mock always returns True."""
        return True
