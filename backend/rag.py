# RAG (Retrieval-Augmented Generation) for the OSRS Agent.
# Embeds the player's latest message and pulls semantically similar wiki pages out of the
# wiki cache collection so they can be spliced into the system prompt.
#
# Retrieval is best-effort enrichment: no embeddings, an empty query or a store error all
# produce an empty list, never an exception.

import logging
import time
from dataclasses import dataclass, field
from typing import List

from backend.embeddings import Embedder
from backend.wiki_cache import WikiCacheRepository

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.65
DEFAULT_MATCH_COUNT = 5

# Retrieved pages are trimmed so a handful of long articles can't crowd out the conversation.
CONTEXT_DOC_MAX_CHARS = 2000


@dataclass
class RetrievedDocument:
    content: str
    metadata: dict = field(default_factory=dict)
    similarity: float = 0.0


class ContextRetriever:
    def __init__(self, embedder: Embedder, repository: WikiCacheRepository):
        self.embedder = embedder
        self.repository = repository

    def retrieve(
        self,
        query: str,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        count: int = DEFAULT_MATCH_COUNT,
    ) -> List[RetrievedDocument]:
        """
        Most similar cached wiki pages first, all above threshold, at most count of them.

        The wiki cache can hold the same article under two titles (a redirect and its
        target), so results are collapsed by source URL and the best-scoring copy kept.
        """
        if not query or not query.strip() or count <= 0:
            return []

        t0 = time.time()
        embedding = self.embedder.embed_query(query)
        if embedding is None:
            return []

        try:
            matches = self.repository.match(embedding, threshold, count * 2)
        except Exception:
            logger.warning("Context retrieval failed", exc_info=True)
            return []

        documents: List[RetrievedDocument] = []
        seen_urls: set = set()
        for page, similarity in matches:
            dedup_key = page.source_url or page.normalized_title
            if dedup_key in seen_urls:
                continue
            seen_urls.add(dedup_key)
            documents.append(RetrievedDocument(
                content=page.content,
                metadata={"title": page.title, "url": page.source_url},
                similarity=similarity,
            ))
            if len(documents) >= count:
                break

        logger.info("[TIMING] retrieve=%.2fs  docs=%d", time.time() - t0, len(documents))
        return documents


def format_context_for_prompt(documents: List[RetrievedDocument]) -> str:
    if not documents:
        return ""

    parts = []
    for i, doc in enumerate(documents, start=1):
        title = doc.metadata.get("title") or f"Source {i}"
        url = doc.metadata.get("url") or ""
        content = doc.content[:CONTEXT_DOC_MAX_CHARS]
        source_line = f"\n_Source: {url}_" if url else ""
        parts.append(f"### {title}\n{content}{source_line}")

    joined = "\n\n---\n\n".join(parts)
    return (
        "### WIKI KNOWLEDGE BASE (Retrieved Context):\n"
        "The following information was retrieved from the OSRS Wiki to help answer this question accurately:\n\n"
        f"{joined}\n\n"
        "Use this information to provide accurate, factual answers. If the information above doesn't cover "
        "the user's question, acknowledge that and use your general knowledge carefully."
    )
