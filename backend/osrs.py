# Clients for the public OSRS data sources: the OSRS Wiki, the Wiki real-time prices API
# and Wise Old Man (player stats and gains).
# Every call has a timeout and fails soft (None / empty list) with the error logged.

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from backend.config import ITEM_MAPPING_TTL_SECONDS, USER_AGENT

logger = logging.getLogger(__name__)

WIKI_API_URL = "https://oldschool.runescape.wiki/api.php"
WIKI_PAGE_URL = "https://oldschool.runescape.wiki/w/"
PRICES_BASE_URL = "https://prices.runescape.wiki/api/v1/osrs"
WOM_BASE_URL = "https://api.wiseoldman.net/v2"

GAIN_PERIODS = ("day", "week", "month", "year")


def wiki_url(title: str) -> str:
    return WIKI_PAGE_URL + quote(title.replace(" ", "_"))


def _new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


# ─────────────────────────────────────────
# WIKI
# ─────────────────────────────────────────

@dataclass
class WikiSearchResult:
    title: str
    pageid: int
    snippet: str


@dataclass
class WikiPage:
    title: str
    content: str
    url: str
    image_url: Optional[str] = None


class WikiClient:
    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 8.0):
        self.session = session or _new_session()
        self.timeout = timeout

    def _query(self, params: dict) -> Optional[dict]:
        params = {"action": "query", "format": "json", **params}
        try:
            response = self.session.get(WIKI_API_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError):
            logger.error("Wiki API request failed (%s)", params.get("list") or params.get("titles"), exc_info=True)
            return None

    def search(self, query: str, limit: int = 5) -> List[WikiSearchResult]:
        data = self._query({"list": "search", "srsearch": query, "srlimit": str(limit)})
        if not data:
            return []
        return [
            WikiSearchResult(title=hit["title"], pageid=hit.get("pageid", 0), snippet=hit.get("snippet", ""))
            for hit in data.get("query", {}).get("search", [])
        ]

    def get_page(self, title: str, intro_only: bool = False) -> Optional[WikiPage]:
        """
        Plain-text extract of a page plus its canonical URL and lead image.
        intro_only limits the extract to the lead section.
        """
        params = {
            "titles": title,
            "prop": "extracts|info|pageimages",
            "explaintext": "true",
            "inprop": "url",
            "piprop": "original",
            "redirects": "1",
        }
        if intro_only:
            params["exintro"] = "true"
        data = self._query(params)
        if not data:
            return None

        pages = data.get("query", {}).get("pages") or {}
        if not pages:
            return None
        page_id, page = next(iter(pages.items()))
        if page_id == "-1" or "missing" in page:
            return None

        page_title = page.get("title", title)
        return WikiPage(
            title=page_title,
            content=page.get("extract") or "",
            url=page.get("fullurl") or wiki_url(page_title),
            image_url=(page.get("original") or {}).get("source"),
        )


# ─────────────────────────────────────────
# PRICES
# ─────────────────────────────────────────

@dataclass
class ItemPrice:
    item_id: int
    item_name: str
    high_price: Optional[int]
    low_price: Optional[int]
    high_time: Optional[int]
    low_time: Optional[int]
    avg_price: Optional[int]
    volume: Optional[int]
    wiki_url: str


class ItemMapping:
    """
    Process-scoped item name -> id table.

    Loaded on first use and reloaded once it is older than ttl_seconds. A failed reload
    keeps serving the previous table.
    """

    def __init__(
        self,
        loader: Callable[[], Optional[Dict[str, int]]],
        ttl_seconds: float = ITEM_MAPPING_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._mapping: Optional[Dict[str, int]] = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()

    def get(self) -> Dict[str, int]:
        with self._lock:
            if self._mapping is not None and self.clock() - self._loaded_at < self.ttl_seconds:
                return self._mapping
            fresh = self.loader()
            if fresh:
                self._mapping = fresh
                self._loaded_at = self.clock()
            return self._mapping or {}


class PriceClient:
    def __init__(
        self,
        wiki: WikiClient,
        session: Optional[requests.Session] = None,
        timeout: float = 8.0,
        mapping: Optional[ItemMapping] = None,
    ):
        self.wiki = wiki
        self.session = session or _new_session()
        self.timeout = timeout
        self.mapping = mapping or ItemMapping(self.load_mapping)

    def _get(self, path: str) -> Optional[object]:
        try:
            response = self.session.get(f"{PRICES_BASE_URL}/{path}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError):
            logger.error("Prices API request failed (/%s)", path, exc_info=True)
            return None

    def load_mapping(self) -> Optional[Dict[str, int]]:
        data = self._get("mapping")
        if not isinstance(data, list):
            return None
        mapping = {}
        for item in data:
            if item.get("name") and item.get("id"):
                mapping[item["name"].lower()] = item["id"]
        logger.info("Loaded %d item ids from the prices mapping", len(mapping))
        return mapping

    def resolve_item_id(self, item_name: str):
        """
        Free-text item name -> (item_id, resolved_name).
        Tries an exact match, then a substring match, then the top wiki search title.
        item_id is None when nothing resolves.
        """
        mapping = self.mapping.get()
        normalized = item_name.strip().lower()
        if not normalized:
            return None, item_name

        if normalized in mapping:
            return mapping[normalized], item_name

        for name in mapping:
            if normalized in name or name in normalized:
                return mapping[name], name

        results = self.wiki.search(item_name)
        if results:
            wiki_title = results[0].title
            if wiki_title.lower() in mapping:
                return mapping[wiki_title.lower()], wiki_title

        return None, item_name

    def get_item_price(self, item_name: str) -> Optional[ItemPrice]:
        item_id, resolved_name = self.resolve_item_id(item_name)
        if not item_id:
            logger.info("Could not find item id for %r", item_name)
            return None

        latest = self._get("latest")
        price_data = ((latest or {}).get("data") or {}).get(str(item_id))
        if not price_data:
            logger.info("No price data for item id %s", item_id)
            return None

        # Volume is a nice-to-have; the 1h endpoint failing doesn't fail the lookup.
        volume = None
        hourly = self._get("1h")
        item_hourly = ((hourly or {}).get("data") or {}).get(str(item_id))
        if item_hourly:
            volume = (item_hourly.get("highPriceVolume") or 0) + (item_hourly.get("lowPriceVolume") or 0)

        high = price_data.get("high") or None
        low = price_data.get("low") or None
        if high and low:
            avg = round((high + low) / 2)
        else:
            avg = high or low or None

        return ItemPrice(
            item_id=item_id,
            item_name=resolved_name,
            high_price=high,
            low_price=low,
            high_time=price_data.get("highTime") or None,
            low_time=price_data.get("lowTime") or None,
            avg_price=avg,
            volume=volume,
            wiki_url=wiki_url(resolved_name),
        )


# ─────────────────────────────────────────
# WISE OLD MAN
# ─────────────────────────────────────────

class RankingClient:
    """Wise Old Man player lookups. Returned payloads are the service's JSON, unchanged."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 8.0):
        self.session = session or _new_session()
        self.timeout = timeout

    @staticmethod
    def _player_path(username: str) -> str:
        return f"{WOM_BASE_URL}/players/{quote(username.strip().lower())}"

    def get_player(self, username: str, track_if_missing: bool = True) -> Optional[dict]:
        try:
            response = self.session.get(self._player_path(username), timeout=self.timeout)
            if response.status_code == 404:
                return self.track_player(username) if track_if_missing else None
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError):
            logger.error("Wise Old Man lookup failed for %r", username, exc_info=True)
            return None

    def track_player(self, username: str) -> Optional[dict]:
        """Ask Wise Old Man to start tracking a player it has never seen."""
        try:
            response = self.session.post(
                f"{WOM_BASE_URL}/players", json={"username": username}, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError):
            logger.error("Wise Old Man tracking failed for %r", username, exc_info=True)
            return None

    def update_player(self, username: str) -> Optional[dict]:
        try:
            response = self.session.post(self._player_path(username), timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError):
            logger.error("Wise Old Man update failed for %r", username, exc_info=True)
            return None

    def get_gains(self, username: str, period: str = "week") -> Optional[dict]:
        if period not in GAIN_PERIODS:
            raise ValueError(f"period must be one of {GAIN_PERIODS}")
        try:
            response = self.session.get(
                f"{self._player_path(username)}/gained", params={"period": period}, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError):
            logger.error("Wise Old Man gains failed for %r", username, exc_info=True)
            return None
