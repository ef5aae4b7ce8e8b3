# Wiki page cache backed by a ChromaDB collection.
# One record per normalized page title, holding the page text, its metadata and an
# embedding so the same records double as the retrieval corpus for the context retriever.

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from backend.embeddings import Embedder

logger = logging.getLogger(__name__)

WIKI_CACHE_COLLECTION = "wiki_cache"
DEFAULT_TTL_SECONDS = 180 * 24 * 60 * 60


def normalize_title(title: str) -> str:
    """Dedup key for cache records: "Zulrah" and " zulrah " are the same page."""
    return title.strip().lower()


@dataclass
class CachedReferencePage:
    normalized_title: str
    title: str
    content: str
    source_url: str
    image_url: Optional[str]
    cached_at: float


# ─────────────────────────────────────────
# REPOSITORY
# ─────────────────────────────────────────

class WikiCacheRepository(ABC):
    """Typed access to the persisted cache records. Callers never see the store's schema."""

    @abstractmethod
    def get_by_title(self, normalized_title: str) -> Optional[CachedReferencePage]:
        ...

    @abstractmethod
    def upsert(self, page: CachedReferencePage, embedding: List[float]) -> None:
        """Insert or replace the record for page.normalized_title in one atomic write."""
        ...

    @abstractmethod
    def match(self, embedding: List[float], threshold: float, count: int) -> List[Tuple[CachedReferencePage, float]]:
        """Nearest records with similarity above threshold, most similar first."""
        ...


class ChromaWikiCacheRepository(WikiCacheRepository):
    """
    Records are keyed by the normalized title itself, so ChromaDB's upsert-by-id
    gives the one-row-per-title guarantee without a read-then-write.
    """

    def __init__(self, collection):
        self.collection = collection

    @classmethod
    def from_client(cls, client, name: str = WIKI_CACHE_COLLECTION) -> "ChromaWikiCacheRepository":
        collection = client.get_or_create_collection(name, metadata={"hnsw:space": "cosine"})
        return cls(collection)

    @staticmethod
    def _record_id(normalized_title: str) -> str:
        return f"wiki:{normalized_title}"

    @staticmethod
    def _to_page(document: str, metadata: dict) -> CachedReferencePage:
        return CachedReferencePage(
            normalized_title=metadata["normalized_title"],
            title=metadata.get("title", metadata["normalized_title"]),
            content=document or "",
            source_url=metadata.get("url", ""),
            image_url=metadata.get("image_url") or None,
            cached_at=float(metadata.get("cached_at", 0.0)),
        )

    def get_by_title(self, normalized_title: str) -> Optional[CachedReferencePage]:
        result = self.collection.get(
            ids=[self._record_id(normalized_title)],
            include=["documents", "metadatas"],
        )
        if not result["ids"]:
            return None
        return self._to_page(result["documents"][0], result["metadatas"][0])

    def upsert(self, page: CachedReferencePage, embedding: List[float]) -> None:
        # ChromaDB rejects None metadata values, so the image key is only set when present.
        metadata = {
            "normalized_title": page.normalized_title,
            "title": page.title,
            "url": page.source_url,
            "cached_at": page.cached_at,
        }
        if page.image_url:
            metadata["image_url"] = page.image_url
        self.collection.upsert(
            ids=[self._record_id(page.normalized_title)],
            embeddings=[embedding],
            documents=[page.content],
            metadatas=[metadata],
        )

    def match(self, embedding: List[float], threshold: float, count: int) -> List[Tuple[CachedReferencePage, float]]:
        available = self.collection.count()
        if available == 0 or count <= 0:
            return []
        result = self.collection.query(
            query_embeddings=[embedding],
            n_results=min(count, available),
            include=["documents", "metadatas", "distances"],
        )
        matches = []
        for document, metadata, distance in zip(
            result["documents"][0], result["metadatas"][0], result["distances"][0]
        ):
            similarity = 1.0 - float(distance)
            if similarity > threshold:
                matches.append((self._to_page(document, metadata), similarity))
        matches.sort(key=lambda m: m[1], reverse=True)
        return matches[:count]

    def count(self) -> int:
        return self.collection.count()


# ─────────────────────────────────────────
# CACHE
# ─────────────────────────────────────────

class WikiCache:
    """
    TTL-aware front of the repository.

    get() never raises: a store error or an entry older than the TTL both read as a miss.
    put() skips the write entirely when the page cannot be embedded, so every stored
    record is also searchable by the context retriever.
    """

    def __init__(
        self,
        repository: WikiCacheRepository,
        embedder: Embedder,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.embedder = embedder
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def get(self, title: str) -> Optional[CachedReferencePage]:
        key = normalize_title(title)
        if not key:
            return None
        try:
            page = self.repository.get_by_title(key)
        except Exception:
            logger.warning("Wiki cache read failed for %r", key, exc_info=True)
            return None
        if page is None:
            return None
        if self.clock() - page.cached_at > self.ttl_seconds:
            logger.info("Wiki cache entry for %r is stale, refetching", key)
            return None
        return page

    def put(self, title: str, content: str, url: str, image_url: Optional[str] = None) -> bool:
        key = normalize_title(title)
        if not key or not content:
            return False
        embedding = self.embedder.embed_document(content)
        if embedding is None:
            logger.warning("No embedding for %r, page not cached", key)
            return False
        page = CachedReferencePage(
            normalized_title=key,
            title=title.strip(),
            content=content,
            source_url=url,
            image_url=image_url,
            cached_at=self.clock(),
        )
        try:
            self.repository.upsert(page, embedding)
        except Exception:
            logger.error("Wiki cache write failed for %r", key, exc_info=True)
            return False
        return True

    def get_or_fetch(self, title: str, fetch: Callable[[str], Optional[object]]) -> Optional[CachedReferencePage]:
        """
        Cache-first page lookup. On a miss, fetch(title) is called once; its result needs
        title, content, url and image_url attributes. The fetched page is returned even
        when writing it back to the cache fails.
        """
        cached = self.get(title)
        if cached is not None:
            return cached

        fetched = fetch(title)
        if fetched is None or not fetched.content:
            return None

        self.put(fetched.title, fetched.content, fetched.url, fetched.image_url)
        # Pages can redirect ("zulrah" -> "Zulrah"); keep the requested title resolvable too.
        if normalize_title(fetched.title) != normalize_title(title):
            self.put(title, fetched.content, fetched.url, fetched.image_url)
        return CachedReferencePage(
            normalized_title=normalize_title(fetched.title),
            title=fetched.title,
            content=fetched.content,
            source_url=fetched.url,
            image_url=fetched.image_url,
            cached_at=self.clock(),
        )
