"""
Globale Test-Fixtures fuer den HomeAgent.

Stellt wiederverwendbare Fakes und Mocks bereit:
  - redis_mock: AsyncMock Redis Client mit Pipeline
  - chroma_mock: MagicMock ChromaDB Collection
  - kv_store / vector_index: In-Memory-Implementierungen der Protocols
  - inference_mock: AsyncMock Inference-Dienst mit festem Embedding
  - delivery_mock / smart_home_mock: Capability-Provider
  - clock: verstellbare Uhr fuer deterministische Zeitlogik
"""

import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from homeagent.circuit_breaker import registry as breaker_registry
from homeagent.models import (
    DeliveryProviderInfo,
    Order,
    OrderStatus,
    PatternMatch,
)


# ============================================================
# Uhr
# ============================================================

class FakeClock:
    """Aufrufbare Uhr, die Tests vorstellen koennen."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Dienstag 10:00 (Geschaeftszeit)."""
    return FakeClock(datetime(2024, 3, 12, 10, 0, 0))


@pytest.fixture(autouse=True)
def reset_breakers():
    """Globale Circuit Breaker zwischen Tests zuruecksetzen."""
    for name in ("ollama", "chromadb", "redis"):
        breaker_registry.get(name).reset()
    yield


# ============================================================
# Redis / ChromaDB Mocks
# ============================================================

@pytest.fixture
def redis_mock():
    """AsyncMock Redis Client mit den genutzten Methoden."""
    mock = AsyncMock()
    mock.ping = AsyncMock(return_value=True)
    mock.aclose = AsyncMock()
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock()
    mock.lrange = AsyncMock(return_value=[])

    # redis.pipeline() ist synchron, nur execute() ist async
    pipe_mock = MagicMock()
    pipe_mock.rpush = MagicMock()
    pipe_mock.ltrim = MagicMock()
    pipe_mock.execute = AsyncMock(return_value=[])
    mock.pipeline = MagicMock(return_value=pipe_mock)
    mock._pipeline = pipe_mock
    return mock


@pytest.fixture
def chroma_mock():
    """MagicMock ChromaDB Collection."""
    collection = MagicMock()
    collection.upsert = MagicMock()
    collection.query = MagicMock(return_value={
        "ids": [[]], "distances": [[]], "metadatas": [[]],
    })
    return collection


# ============================================================
# In-Memory Fakes der Storage-Protocols
# ============================================================

class InMemoryKV:
    """KeyValueStore im Speicher, speichert JSON wie der echte Store."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}

    async def get(self, key):
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key, value):
        self.data[key] = json.dumps(value)

    async def append(self, key, item, max_items=500):
        items = self.lists.setdefault(key, [])
        items.append(json.dumps(item))
        del items[:-max_items]

    async def get_list(self, key):
        return [json.loads(raw) for raw in self.lists.get(key, [])]


class InMemoryVectorIndex:
    """VectorIndex im Speicher mit Cosine-Aehnlichkeit."""

    def __init__(self):
        self.items: dict[str, tuple[list[float], dict]] = {}

    async def upsert(self, id, vector, metadata):
        self.items[id] = (list(vector), dict(metadata))

    async def query(self, vector, top_k):
        def cosine(a, b):
            dot = sum(x * y for x, y in zip(a, b))
            norm = (sum(x * x for x in a) ** 0.5) * (sum(y * y for y in b) ** 0.5)
            return dot / norm if norm else 0.0

        matches = [
            PatternMatch(
                id=key, score=cosine(vector, vec),
                action=str(meta.get("action", "")),
                confidence=float(meta.get("confidence", 0.0)),
                metadata=meta,
            )
            for key, (vec, meta) in self.items.items()
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]


@pytest.fixture
def kv_store():
    return InMemoryKV()


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


# ============================================================
# Inference
# ============================================================

def decision_json(action="optimize_energy", confidence=0.9, **extra) -> str:
    data = {
        "action": action,
        "confidence": confidence,
        "reasoning": ["Test reasoning"],
        "impact": {"health": 0.6, "productivity": 0.7, "comfort": 0.8},
    }
    data.update(extra)
    return json.dumps(data)


@pytest.fixture
def inference_mock():
    """AsyncMock Inference-Dienst: feste Antwort, festes Embedding."""
    mock = AsyncMock()
    mock.complete = AsyncMock(return_value=decision_json())
    mock.embed = AsyncMock(return_value=[0.1, 0.2, 0.3, 0.4])
    return mock


# ============================================================
# Provider
# ============================================================

def make_provider(id, name, time, fee, minimum=10.0, available=True) -> DeliveryProviderInfo:
    return DeliveryProviderInfo(
        id=id, name=name, is_available=available,
        estimated_time=time, minimum_order=minimum, delivery_fee=fee,
    )


@pytest.fixture
def delivery_providers():
    return [
        make_provider("glovo", "Glovo", time=45, fee=2.99),
        make_provider("wolt", "Wolt", time=30, fee=4.99),
    ]


@pytest.fixture
def delivery_mock(delivery_providers):
    """AsyncMock Lieferdienst, place_order liefert eine PENDING-Bestellung."""
    mock = AsyncMock()
    mock.providers = AsyncMock(return_value=delivery_providers)

    async def place_order(items, provider_id):
        provider = next(p for p in delivery_providers if p.id == provider_id)
        return Order(
            id=f"order-{provider_id}",
            items=tuple(items),
            provider=provider,
            status=OrderStatus.PENDING,
            estimated_delivery=datetime(2024, 3, 12, 11, 0),
            address="Teststrasse 1",
            total=sum(i.price * i.quantity for i in items) + provider.delivery_fee,
        )

    mock.place_order = AsyncMock(side_effect=place_order)
    mock.track_order = AsyncMock()
    return mock


@pytest.fixture
def smart_home_mock():
    mock = AsyncMock()
    mock.optimize_energy = AsyncMock()
    mock.set_mood = AsyncMock()
    mock.prepare_for_sleep = AsyncMock()
    return mock
