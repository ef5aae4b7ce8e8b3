# Research tools the model can call mid-turn: wiki search, wiki page fetch, GE price lookup,
# web search and other-player lookup.
#
# Every tool returns a plain dict that is either {"success": True, ...data} or
# {"success": False, "message": ...}. ToolRegistry.execute never raises; failures are handed
# back to the model so it can explain the gap to the player.

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from backend.config import WEB_RESULT_MAX_CHARS, WIKI_PAGE_MAX_CHARS, WIKI_TOP_PAGE_MAX_CHARS
from backend.osrs import PriceClient, RankingClient, WikiClient, wiki_url
from backend.utils import (
    format_gains_summary,
    format_price_summary,
    format_search_results,
    format_stats_summary,
    strip_html,
)
from backend.web_search import WebSearchClient
from backend.wiki_cache import WikiCache

logger = logging.getLogger(__name__)


def failure(message: str) -> dict:
    return {"success": False, "message": message}


# ─────────────────────────────────────────
# INPUT SCHEMAS
# ─────────────────────────────────────────

class SearchWikiInput(BaseModel):
    query: str = Field(min_length=1, description="The search query for the OSRS Wiki.")


class GetWikiPageInput(BaseModel):
    title: str = Field(min_length=1, description="The exact title of the Wiki page to retrieve.")


class GetItemPriceInput(BaseModel):
    item_name: str = Field(
        min_length=1, description='The item name as written in game, e.g. "Abyssal whip".'
    )


class SearchWebInput(BaseModel):
    query: str = Field(min_length=1, description="The search query. Be specific and include OSRS-related terms.")


class LookupPlayerInput(BaseModel):
    username: str = Field(min_length=1, max_length=64, description="The OSRS display name of the player.")


# ─────────────────────────────────────────
# REGISTRY
# ─────────────────────────────────────────

@dataclass
class Tool:
    name: str
    description: str
    input_model: Type[BaseModel]
    execute: Callable[[BaseModel], dict]

    @property
    def input_schema(self) -> dict:
        return self.input_model.model_json_schema()

    def definition(self) -> dict:
        """Tool definition in the shape the Messages API expects."""
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


class ToolRegistry:
    def __init__(self, tools: List[Tool]):
        self._tools: Dict[str, Tool] = {tool.name: tool for tool in tools}

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def definitions(self) -> List[dict]:
        return [tool.definition() for tool in self._tools.values()]

    def execute(self, name: str, raw_arguments: str) -> dict:
        tool = self._tools.get(name)
        if tool is None:
            return failure(f"Unknown tool: {name}")

        try:
            arguments = json.loads(raw_arguments) if raw_arguments and raw_arguments.strip() else {}
        except ValueError:
            logger.warning("Tool %s called with malformed arguments: %r", name, raw_arguments)
            return failure(f"Arguments for {name} were not valid JSON.")

        try:
            validated = tool.input_model.model_validate(arguments)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "input" for err in e.errors())
            return failure(f"Invalid arguments for {name}: {fields}")

        t0 = time.time()
        try:
            result = tool.execute(validated)
        except Exception:
            logger.exception("Tool %s raised", name)
            return failure(f"{name} failed unexpectedly. Try a different approach.")
        finally:
            logger.info("[TIMING] tool %s=%.2fs", name, time.time() - t0)
        return result


# ─────────────────────────────────────────
# TOOL BODIES
# ─────────────────────────────────────────

class ResearchTools:
    """Holds the clients the tool bodies share; the only shared state is the wiki cache."""

    def __init__(
        self,
        wiki: WikiClient,
        cache: WikiCache,
        prices: PriceClient,
        web: WebSearchClient,
        ranking: RankingClient,
    ):
        self.wiki = wiki
        self.cache = cache
        self.prices = prices
        self.web = web
        self.ranking = ranking

    def search_wiki(self, args: SearchWikiInput) -> dict:
        results = self.wiki.search(args.query)
        if not results:
            return failure("No Wiki pages found for this search.")

        top = self.cache.get_or_fetch(results[0].title, self.wiki.get_page)
        return {
            "success": True,
            "search_results": [{"title": r.title, "snippet": strip_html(r.snippet)} for r in results],
            "top_page": {
                "title": top.title,
                "url": top.source_url,
                "content": top.content[:WIKI_TOP_PAGE_MAX_CHARS],
            } if top else None,
        }

    def get_wiki_page(self, args: GetWikiPageInput) -> dict:
        page = self.cache.get_or_fetch(args.title, self.wiki.get_page)
        if page is None:
            return failure(f'Wiki page "{args.title}" not found.')
        return {
            "success": True,
            "title": page.title,
            "url": page.source_url or wiki_url(page.title),
            "image_url": page.image_url,
            "content": page.content[:WIKI_PAGE_MAX_CHARS],
        }

    def get_item_price(self, args: GetItemPriceInput) -> dict:
        price = self.prices.get_item_price(args.item_name)
        if price is None:
            return failure(f'Could not find Grand Exchange price data for "{args.item_name}".')
        return {
            "success": True,
            "item_id": price.item_id,
            "item_name": price.item_name,
            "high_price": price.high_price,
            "low_price": price.low_price,
            "avg_price": price.avg_price,
            "high_time": price.high_time,
            "low_time": price.low_time,
            "hourly_volume": price.volume,
            "wiki_url": price.wiki_url,
            "summary": format_price_summary(price),
        }

    def search_web(self, args: SearchWebInput) -> dict:
        if not self.web.configured:
            return failure("Web search is not available right now.")
        response = self.web.search(args.query, search_depth="advanced", max_results=5, include_answer=True)
        if response is None or not response.results:
            return failure("No results found for this search.")
        return {
            "success": True,
            "answer": response.answer,
            "results": [
                {"title": r.title, "url": r.url, "content": r.content[:WEB_RESULT_MAX_CHARS]}
                for r in response.results
            ],
            "formatted": format_search_results(response.results),
        }

    def lookup_player(self, args: LookupPlayerInput) -> dict:
        player = self.ranking.get_player(args.username, track_if_missing=False)
        if player is None:
            return failure(f'Player "{args.username}" is not tracked on Wise Old Man.')
        gains = self.ranking.get_gains(args.username, "week")
        return {
            "success": True,
            "username": player.get("displayName") or args.username,
            "account_type": player.get("type"),
            "combat_level": player.get("combatLevel"),
            "stats": format_stats_summary(player),
            "weekly_gains": format_gains_summary(gains) if gains else None,
        }

    def registry(self) -> ToolRegistry:
        return ToolRegistry([
            Tool(
                name="searchWiki",
                description=(
                    "Search the official OSRS Wiki for factual information like drop rates, "
                    "quest requirements, item stats, XP rates, and game mechanics."
                ),
                input_model=SearchWikiInput,
                execute=self.search_wiki,
            ),
            Tool(
                name="getWikiPage",
                description=(
                    "Get detailed content from a specific OSRS Wiki page. Use this when you need "
                    "comprehensive information about a specific topic."
                ),
                input_model=GetWikiPageInput,
                execute=self.get_wiki_page,
            ),
            Tool(
                name="getItemPrice",
                description=(
                    "Get the current Grand Exchange price (instant buy/sell, average, hourly volume) "
                    "of an item from the OSRS Wiki real-time prices."
                ),
                input_model=GetItemPriceInput,
                execute=self.get_item_price,
            ),
            Tool(
                name="searchWeb",
                description=(
                    "Search the web for OSRS guides, strategies, Reddit discussions, and community content. "
                    'Use this for questions about "best" methods, opinions, current meta, or recent strategies.'
                ),
                input_model=SearchWebInput,
                execute=self.search_web,
            ),
            Tool(
                name="lookupPlayer",
                description=(
                    "Look up another player's public stats and recent XP gains on Wise Old Man."
                ),
                input_model=LookupPlayerInput,
                execute=self.lookup_player,
            ),
        ])
