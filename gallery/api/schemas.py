"""Pydantic schemas for the prediction API requests and responses."""
from typing import Any, Optional

from pydantic import BaseModel


class PredictionInput(BaseModel):
    """Input block of a prediction request."""
    input: str  # data URL of the image or text
    modality: str = "vision"  # "vision" or "text"


class PredictionRequest(BaseModel):
    """Request for POST /v1/predictions."""
    version: str
    input: PredictionInput


class Prediction(BaseModel):
    """Prediction state returned by create and poll calls."""
    id: str
    status: str = "starting"  # starting, processing, succeeded, failed, canceled
    output: Optional[list[float]] = None
    error: Optional[Any] = None

    @property
    def finished(self) -> bool:
        return self.status in ("succeeded", "failed", "canceled")
