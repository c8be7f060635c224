"""Data models for image records."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class RecordState(str, enum.Enum):
    """Lifecycle of a record's derived embedding."""

    PENDING = "pending"
    READY = "ready"


@dataclass
class ImageRecord:
    """Represents metadata for a stored image.

    The payload itself is not part of the record; fetch it with
    ``ImageDatabase.get_payload`` when needed.
    """

    id: int
    name: str
    mimetype: str
    size: int  # bytes
    created_at: datetime
    embedding: Optional[list[float]] = field(default=None, repr=False)
    is_processing: bool = True

    @property
    def state(self) -> RecordState:
        if self.embedding is not None and not self.is_processing:
            return RecordState.READY
        return RecordState.PENDING

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "mimetype": self.mimetype,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
            "embedding": self.embedding,
            "is_processing": self.is_processing,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ImageRecord":
        return cls(
            id=data["id"],
            name=data["name"],
            mimetype=data["mimetype"],
            size=data["size"],
            created_at=datetime.fromisoformat(data["created_at"]),
            embedding=data.get("embedding"),
            is_processing=data.get("is_processing", data.get("embedding") is None),
        )
