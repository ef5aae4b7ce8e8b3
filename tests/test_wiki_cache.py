"""
Tests for the wiki page cache: TTL handling, title normalization, one-row-per-title upserts
and the cache-first fetch path.
"""

import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.osrs import WikiPage
from backend.wiki_cache import (
    DEFAULT_TTL_SECONDS,
    CachedReferencePage,
    ChromaWikiCacheRepository,
    WikiCache,
    normalize_title,
)
from conftest import FakeEmbedder


class CountingFetcher:
    def __init__(self, page=None):
        self.page = page
        self.calls = []

    def __call__(self, title):
        self.calls.append(title)
        return self.page


ZULRAH = WikiPage(
    title="Zulrah",
    content="Zulrah is a solo boss found in the Zul-Andra region. It is a snake boss.",
    url="https://oldschool.runescape.wiki/w/Zulrah",
    image_url="https://oldschool.runescape.wiki/images/Zulrah.png",
)


@pytest.fixture
def cache(repository, embedder, clock):
    return WikiCache(repository, embedder, ttl_seconds=DEFAULT_TTL_SECONDS, clock=clock)


# ─────────────────────────────────────────────────────────────
# normalize_title
# ─────────────────────────────────────────────────────────────

class TestNormalizeTitle:

    def test_lowercases_and_trims(self):
        assert normalize_title("  Zulrah ") == "zulrah"

    def test_case_and_whitespace_variants_share_a_key(self):
        assert normalize_title("Zulrah") == normalize_title(" zulrah ") == normalize_title("ZULRAH")


# ─────────────────────────────────────────────────────────────
# WikiCache.get / put
# ─────────────────────────────────────────────────────────────

class TestWikiCacheGetPut:

    def test_put_then_get_round_trips_content(self, cache):
        assert cache.put("Zulrah", ZULRAH.content, ZULRAH.url, ZULRAH.image_url)
        page = cache.get("zulrah")
        assert page.content == ZULRAH.content
        assert page.source_url == ZULRAH.url
        assert page.image_url == ZULRAH.image_url

    def test_missing_title_is_absent(self, cache):
        assert cache.get("Vorkath") is None

    def test_blank_title_is_absent(self, cache):
        assert cache.get("   ") is None

    def test_entry_inside_ttl_is_served(self, cache, clock):
        cache.put("Zulrah", ZULRAH.content, ZULRAH.url)
        clock.advance(DEFAULT_TTL_SECONDS - 60)
        assert cache.get("Zulrah") is not None

    def test_entry_older_than_ttl_reads_as_absent(self, cache, clock, repository):
        cache.put("Zulrah", ZULRAH.content, ZULRAH.url)
        clock.advance(DEFAULT_TTL_SECONDS + 1)
        assert cache.get("Zulrah") is None
        # still physically present
        assert "zulrah" in repository.pages

    def test_store_error_reads_as_absent(self, cache, repository):
        cache.put("Zulrah", ZULRAH.content, ZULRAH.url)
        repository.fail_reads = True
        assert cache.get("Zulrah") is None

    def test_put_skipped_when_embedding_unavailable(self, repository, clock):
        cache = WikiCache(repository, FakeEmbedder(available=False), clock=clock)
        assert cache.put("Zulrah", ZULRAH.content, ZULRAH.url) is False
        assert repository.pages == {}

    def test_put_reports_store_error_without_raising(self, cache, repository):
        repository.fail_writes = True
        assert cache.put("Zulrah", ZULRAH.content, ZULRAH.url) is False

    def test_put_same_title_variants_keeps_one_row(self, cache, repository):
        cache.put("Zulrah", "first", ZULRAH.url)
        cache.put(" zulrah ", "second", ZULRAH.url)
        cache.put("ZULRAH", "third", ZULRAH.url)
        assert list(repository.pages) == ["zulrah"]
        assert cache.get("Zulrah").content == "third"

    def test_put_refreshes_embedding(self, cache, repository):
        cache.put("Zulrah", "snake boss", ZULRAH.url)
        before = repository.embeddings["zulrah"]
        cache.put("Zulrah", "completely different text about venom", ZULRAH.url)
        assert repository.embeddings["zulrah"] != before


# ─────────────────────────────────────────────────────────────
# WikiCache.get_or_fetch
# ─────────────────────────────────────────────────────────────

class TestGetOrFetch:

    def test_two_calls_inside_ttl_fetch_once(self, cache):
        fetch = CountingFetcher(ZULRAH)
        first = cache.get_or_fetch("Zulrah", fetch)
        second = cache.get_or_fetch("Zulrah", fetch)
        assert len(fetch.calls) == 1
        assert first.content == second.content == ZULRAH.content

    def test_stale_entry_is_refetched_once_and_timestamp_updated(self, cache, clock, repository):
        fetch = CountingFetcher(ZULRAH)
        cache.get_or_fetch("Zulrah", fetch)
        first_cached_at = repository.pages["zulrah"].cached_at

        clock.advance(DEFAULT_TTL_SECONDS + 10)
        cache.get_or_fetch("Zulrah", fetch)
        cache.get_or_fetch("Zulrah", fetch)

        assert len(fetch.calls) == 2
        assert repository.pages["zulrah"].cached_at > first_cached_at

    def test_not_found_returns_none_and_caches_nothing(self, cache, repository):
        fetch = CountingFetcher(None)
        assert cache.get_or_fetch("Not a real page", fetch) is None
        assert repository.pages == {}

    def test_redirected_title_is_also_cached(self, cache):
        fetch = CountingFetcher(ZULRAH)
        cache.get_or_fetch("zul", fetch)
        cache.get_or_fetch("zul", fetch)
        cache.get_or_fetch("Zulrah", fetch)
        assert fetch.calls == ["zul"]

    def test_fetched_page_returned_even_when_cache_write_fails(self, cache, repository):
        repository.fail_writes = True
        page = cache.get_or_fetch("Zulrah", CountingFetcher(ZULRAH))
        assert page.content == ZULRAH.content


# ─────────────────────────────────────────────────────────────
# ChromaWikiCacheRepository (real ChromaDB, in memory)
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def chroma_repository():
    chromadb = pytest.importorskip("chromadb")
    client = chromadb.EphemeralClient()
    return ChromaWikiCacheRepository.from_client(client, name=f"wiki_cache_test_{uuid.uuid4().hex[:8]}")


def _page(title, content, cached_at=1.0):
    return CachedReferencePage(
        normalized_title=normalize_title(title),
        title=title.strip(),
        content=content,
        source_url=f"https://oldschool.runescape.wiki/w/{title.strip()}",
        image_url=None,
        cached_at=cached_at,
    )


class TestChromaRepository:

    def test_get_missing_returns_none(self, chroma_repository):
        assert chroma_repository.get_by_title("zulrah") is None

    def test_upsert_then_get(self, chroma_repository):
        embedder = FakeEmbedder()
        chroma_repository.upsert(_page("Zulrah", "snake boss"), embedder.embed_document("snake boss"))
        page = chroma_repository.get_by_title("zulrah")
        assert page.title == "Zulrah"
        assert page.content == "snake boss"
        assert page.image_url is None

    def test_upsert_same_title_twice_is_one_row(self, chroma_repository):
        embedder = FakeEmbedder()
        cache = WikiCache(chroma_repository, embedder)
        cache.put("Zulrah", "first version", "https://oldschool.runescape.wiki/w/Zulrah")
        cache.put(" zulrah ", "second version", "https://oldschool.runescape.wiki/w/Zulrah")
        assert chroma_repository.count() == 1
        assert chroma_repository.get_by_title("zulrah").content == "second version"

    def test_concurrent_puts_for_same_title_leave_one_row(self, chroma_repository):
        cache = WikiCache(chroma_repository, FakeEmbedder())
        variants = ["Zulrah", " zulrah ", "ZULRAH", "zulrah", "Zulrah ", " ZuLrAh"] * 2

        with ThreadPoolExecutor(max_workers=6) as executor:
            results = list(executor.map(
                lambda t: cache.put(t, f"content for {t}", "https://oldschool.runescape.wiki/w/Zulrah"),
                variants,
            ))

        assert all(results)
        assert chroma_repository.count() == 1

    def test_match_orders_by_similarity_and_applies_threshold(self, chroma_repository):
        embedder = FakeEmbedder()
        cache = WikiCache(chroma_repository, embedder)
        cache.put("Zulrah", "zulrah snake boss venom", "u1")
        cache.put("Vorkath", "vorkath dragon boss undead", "u2")
        cache.put("Lobster", "lobster fishing food cooking", "u3")

        matches = chroma_repository.match(embedder.embed_query("zulrah snake venom"), 0.3, 3)
        assert matches
        assert matches[0][0].title == "Zulrah"
        scores = [m[1] for m in matches]
        assert scores == sorted(scores, reverse=True)
        assert all(s > 0.3 for s in scores)

    def test_match_on_empty_collection(self, chroma_repository):
        assert chroma_repository.match(FakeEmbedder().embed_query("anything"), 0.0, 5) == []
