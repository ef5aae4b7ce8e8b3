# Web search through Tavily, used for community guides, Reddit threads and meta discussion.

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from tavily import TavilyClient

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE_DOMAINS = [
    "reddit.com",
    "oldschool.runescape.wiki",
    "twitter.com",
    "youtube.com",
]


@dataclass
class WebResult:
    title: str
    url: str
    content: str
    score: float = 0.0


@dataclass
class WebSearchResponse:
    query: str
    results: List[WebResult] = field(default_factory=list)
    answer: Optional[str] = None


class WebSearchClient:
    def __init__(self, api_key: Optional[str], client: Optional[TavilyClient] = None, timeout: float = 8.0):
        self.api_key = api_key
        self.timeout = timeout
        # TavilyClient refuses to start without a key, so an unconfigured client holds none.
        if client is None and api_key:
            client = TavilyClient(api_key=api_key)
        self.client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.client is not None

    def search(
        self,
        query: str,
        search_depth: str = "basic",
        max_results: int = 5,
        include_answer: bool = True,
        include_domains: Optional[List[str]] = None,
    ) -> Optional[WebSearchResponse]:
        """Returns None when the client is unconfigured or the provider errors."""
        if not self.configured:
            logger.warning("TAVILY_API_KEY is not configured; web search disabled")
            return None

        try:
            data = self.client.search(
                # Anchor every query to the game so generic words don't drift off-topic.
                query=f"OSRS Old School RuneScape {query}",
                search_depth=search_depth,
                max_results=max_results,
                include_answer=include_answer,
                include_domains=include_domains or DEFAULT_INCLUDE_DOMAINS,
                timeout=self.timeout,
            )
        except Exception:
            logger.error("Tavily search failed for %r", query, exc_info=True)
            return None

        return WebSearchResponse(
            query=data.get("query", query),
            results=[
                WebResult(
                    title=r.get("title", ""),
                    url=r.get("url", ""),
                    content=r.get("content", ""),
                    score=float(r.get("score") or 0.0),
                )
                for r in data.get("results") or []
            ],
            answer=data.get("answer"),
        )
