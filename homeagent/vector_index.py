"""
Vector Index - Aehnlichkeitssuche ueber Patterns und Entscheidungen.

Vertrag: upsert(id, vector, metadata), query(vector, top_k) -> Treffer
absteigend nach Aehnlichkeit. Implementierung ueber ChromaDB mit
eigenen Embeddings (vom Inference-Dienst berechnet).

ChromaDB ist synchron, Calls laufen deshalb in einem Worker-Thread,
damit Sensor-Timer nicht blockiert werden.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import chromadb

from .circuit_breaker import call_with_breaker, chromadb_breaker
from .config import settings
from .exceptions import StorageError
from .models import PatternMatch

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    async def upsert(self, id: str, vector: list[float], metadata: dict) -> None: ...

    async def query(self, vector: list[float], top_k: int) -> list[PatternMatch]: ...


def _scalar_metadata(metadata: dict) -> dict:
    """ChromaDB akzeptiert nur str/int/float/bool als Metadaten."""
    clean: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            clean[key] = value
        else:
            clean[key] = str(value)
    return clean


def matches_from_result(result: dict) -> list[PatternMatch]:
    """Wandelt ein ChromaDB-Query-Ergebnis in sortierte PatternMatches."""
    if not result or not result.get("ids") or not result["ids"][0]:
        return []
    ids = result["ids"][0]
    distances = (result.get("distances") or [[1.0] * len(ids)])[0]
    metadatas = (result.get("metadatas") or [[{}] * len(ids)])[0]

    matches = []
    for i, match_id in enumerate(ids):
        meta = dict(metadatas[i] or {})
        matches.append(PatternMatch(
            id=match_id,
            score=1.0 - float(distances[i]),
            action=str(meta.get("action", "")),
            confidence=float(meta.get("confidence", 0.0) or 0.0),
            metadata=meta,
        ))
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches


class ChromaVectorIndex:
    """Vektor-Index auf einer ChromaDB-Collection (Cosine-Distanz)."""

    def __init__(self, collection=None):
        self.collection = collection
        self._client = None

    async def initialize(self) -> None:
        if self.collection is not None:
            return
        try:
            parsed = urlparse(settings.chroma_url)
            self._client = chromadb.HttpClient(
                host=parsed.hostname or "localhost",
                port=parsed.port or 8000,
            )
            self.collection = await asyncio.to_thread(
                self._client.get_or_create_collection,
                name=settings.chroma_collection,
                metadata={"hnsw:space": "cosine", "description": "HomeAgent Patterns"},
            )
            logger.info("ChromaDB verbunden, Collection: %s", settings.chroma_collection)
        except Exception as e:
            logger.warning("ChromaDB nicht verfuegbar: %s", e)
            self.collection = None

    async def upsert(self, id: str, vector: list[float], metadata: dict) -> None:
        if self.collection is None:
            raise StorageError("Vektor-Index nicht verbunden")
        try:
            await call_with_breaker(
                chromadb_breaker, asyncio.to_thread, self.collection.upsert,
                ids=[id], embeddings=[list(vector)], metadatas=[_scalar_metadata(metadata)],
            )
        except Exception as e:
            raise StorageError(f"Upsert '{id}' fehlgeschlagen: {e}") from e

    async def query(self, vector: list[float], top_k: int) -> list[PatternMatch]:
        if self.collection is None:
            raise StorageError("Vektor-Index nicht verbunden")
        try:
            result: Optional[dict] = await call_with_breaker(
                chromadb_breaker, asyncio.to_thread, self.collection.query,
                query_embeddings=[list(vector)], n_results=top_k,
                include=["metadatas", "distances"],
            )
        except Exception as e:
            raise StorageError(f"Query fehlgeschlagen: {e}") from e
        return matches_from_result(result or {})
