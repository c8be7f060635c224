"""Shared fixtures: a temporary database and a scriptable embedding provider."""

import asyncio
from datetime import datetime, timedelta

import pytest

from gallery.api.embedding_api import EmbeddingAPIError, Modality
from gallery.core.events import EventBus
from gallery.storage.database import ImageDatabase


class FakeProvider:
    """Embedding provider returning canned vectors.

    Payloads listed in ``fail_on`` raise EmbeddingAPIError. Tracks how many
    calls are in flight at once.
    """

    def __init__(self, vectors=None, fail_on=(), default=(1.0, 0.0)):
        self.vectors = dict(vectors or {})
        self.fail_on = set(fail_on)
        self.default = list(default)
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.before_return = None

    async def embed(self, data, modality=Modality.VISION, mimetype="application/octet-stream"):
        data = bytes(data)
        self.calls.append((data, Modality(modality), mimetype))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Let the other members of a batch start before this one finishes
            await asyncio.sleep(0.01)
            if self.before_return is not None:
                await self.before_return(data)
            if data in self.fail_on:
                raise EmbeddingAPIError(f"provider rejected {data!r}")
            return list(self.vectors.get(data, self.default))
        finally:
            self.in_flight -= 1


class StepClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "gallery.db"


@pytest.fixture
async def db(db_path):
    database = ImageDatabase(db_path, clock=StepClock())
    await database.init()
    yield database
    await database.close()
