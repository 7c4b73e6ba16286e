"""
Tests fuer den ChromaDB Vektor-Index.
"""

import pytest

from homeagent.exceptions import StorageError
from homeagent.vector_index import ChromaVectorIndex, _scalar_metadata, matches_from_result


class TestHelpers:

    def test_scalar_metadata(self):
        meta = _scalar_metadata({"action": "set_mood", "archived": True, "tags": ["a"], "x": None})
        assert meta == {"action": "set_mood", "archived": True, "tags": "['a']"}

    def test_matches_sorted_by_similarity(self):
        result = {
            "ids": [["far", "near"]],
            "distances": [[0.6, 0.1]],
            "metadatas": [[{"action": "a", "confidence": 0.5}, {"action": "b", "confidence": 0.9}]],
        }
        matches = matches_from_result(result)
        assert [m.id for m in matches] == ["near", "far"]
        assert matches[0].score == pytest.approx(0.9)
        assert matches[0].action == "b"

    def test_empty_result(self):
        assert matches_from_result({"ids": [[]]}) == []
        assert matches_from_result({}) == []


class TestChromaVectorIndex:
    """Tests mit gemockter Collection."""

    @pytest.mark.asyncio
    async def test_upsert(self, chroma_mock):
        index = ChromaVectorIndex(chroma_mock)
        await index.upsert("set_mood_evening", (0.1, 0.2), {"action": "set_mood", "archived": False})
        kwargs = chroma_mock.upsert.call_args.kwargs
        assert kwargs["ids"] == ["set_mood_evening"]
        assert kwargs["embeddings"] == [[0.1, 0.2]]
        assert kwargs["metadatas"] == [{"action": "set_mood", "archived": False}]

    @pytest.mark.asyncio
    async def test_query(self, chroma_mock):
        chroma_mock.query.return_value = {
            "ids": [["p1"]], "distances": [[0.2]], "metadatas": [[{"action": "a", "confidence": 0.8}]],
        }
        index = ChromaVectorIndex(chroma_mock)
        matches = await index.query([0.1, 0.2], 3)
        assert chroma_mock.query.call_args.kwargs["n_results"] == 3
        assert matches[0].confidence == 0.8

    @pytest.mark.asyncio
    async def test_failure_is_storage_error(self, chroma_mock):
        chroma_mock.upsert.side_effect = RuntimeError("chroma down")
        with pytest.raises(StorageError):
            await ChromaVectorIndex(chroma_mock).upsert("x", [0.1], {})

    @pytest.mark.asyncio
    async def test_not_connected(self):
        index = ChromaVectorIndex()
        with pytest.raises(StorageError):
            await index.query([0.1], 1)
