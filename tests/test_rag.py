"""
Tests for the OSRS Agent context retriever.
Run with: python -m pytest tests/test_rag.py -v
(No model downloads: the embedder is the hashed bag-of-words fake from conftest.)
"""

from unittest.mock import MagicMock

import pytest

from backend.rag import CONTEXT_DOC_MAX_CHARS, ContextRetriever, RetrievedDocument, format_context_for_prompt
from backend.wiki_cache import CachedReferencePage, WikiCache
from conftest import FakeEmbedder


@pytest.fixture
def cache(repository, embedder):
    return WikiCache(repository, embedder)


@pytest.fixture
def retriever(repository, embedder):
    return ContextRetriever(embedder, repository)


# ─────────────────────────────────────────────────────────────
# retrieve
# ─────────────────────────────────────────────────────────────

class TestRetrieve:

    def test_best_match_first(self, cache, retriever):
        cache.put("Zulrah", "zulrah snake boss venom rotation", "https://oldschool.runescape.wiki/w/Zulrah")
        cache.put("Vorkath", "vorkath dragon boss undead acid", "https://oldschool.runescape.wiki/w/Vorkath")
        docs = retriever.retrieve("zulrah snake boss venom rotation", threshold=0.1, count=5)
        assert docs[0].metadata["title"] == "Zulrah"
        assert docs[0].similarity == pytest.approx(1.0)
        assert [d.similarity for d in docs] == sorted((d.similarity for d in docs), reverse=True)

    def test_threshold_filters_weak_matches(self, cache, retriever):
        cache.put("Lobster", "lobster fishing karamja harpoon cage", "https://oldschool.runescape.wiki/w/Lobster")
        assert retriever.retrieve("zulrah snake venom", threshold=0.65) == []

    def test_count_limits_results(self, cache, retriever):
        for i in range(6):
            cache.put(f"Boss {i}", f"boss guide number {i}", f"https://oldschool.runescape.wiki/w/Boss_{i}")
        assert len(retriever.retrieve("boss guide number", threshold=0.0, count=3)) == 3

    def test_redirect_copies_collapse_to_one_result(self, cache, retriever):
        url = "https://oldschool.runescape.wiki/w/Zulrah"
        cache.put("Zulrah", "zulrah snake boss venom rotation", url)
        cache.put("zul", "zulrah snake boss venom rotation", url)
        docs = retriever.retrieve("zulrah snake boss venom rotation", threshold=0.1, count=5)
        assert [d.metadata["url"] for d in docs] == [url]

    def test_empty_query(self, retriever):
        assert retriever.retrieve("   ") == []

    def test_embedding_unavailable_is_empty(self, repository):
        retriever = ContextRetriever(FakeEmbedder(available=False), repository)
        assert retriever.retrieve("zulrah") == []

    def test_store_failure_is_empty(self, embedder):
        repository = MagicMock()
        repository.match.side_effect = RuntimeError("store unavailable")
        assert ContextRetriever(embedder, repository).retrieve("zulrah") == []


# ─────────────────────────────────────────────────────────────
# format_context_for_prompt
# ─────────────────────────────────────────────────────────────

class TestFormatContext:

    def test_empty(self):
        assert format_context_for_prompt([]) == ""

    def test_header_titles_and_sources(self):
        text = format_context_for_prompt([
            RetrievedDocument("Zulrah text", {"title": "Zulrah", "url": "https://oldschool.runescape.wiki/w/Zulrah"}, 0.9),
            RetrievedDocument("No url text", {"title": "Notes"}, 0.8),
        ])
        assert text.startswith("### WIKI KNOWLEDGE BASE (Retrieved Context):")
        assert "### Zulrah\nZulrah text\n_Source: https://oldschool.runescape.wiki/w/Zulrah_" in text
        assert "### Notes\nNo url text" in text
        assert "\n\n---\n\n" in text

    def test_long_documents_trimmed(self):
        text = format_context_for_prompt([RetrievedDocument("x" * 5000, {"title": "Long"}, 0.9)])
        assert "x" * CONTEXT_DOC_MAX_CHARS in text
        assert "x" * (CONTEXT_DOC_MAX_CHARS + 1) not in text

    def test_untitled_document(self):
        text = format_context_for_prompt([RetrievedDocument("text", {}, 0.9)])
        assert "### Source 1" in text


def test_page_fields_reach_metadata(repository, embedder):
    repository.upsert(
        CachedReferencePage("zulrah", "Zulrah", "zulrah snake", "https://oldschool.runescape.wiki/w/Zulrah", None, 1.0),
        embedder.embed_document("zulrah snake"),
    )
    [doc] = ContextRetriever(embedder, repository).retrieve("zulrah snake", threshold=0.5)
    assert doc.metadata == {"title": "Zulrah", "url": "https://oldschool.runescape.wiki/w/Zulrah"}
    assert doc.content == "zulrah snake"
