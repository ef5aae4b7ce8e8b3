# FastAPI application entry point for the OSRS Agent backend.
# Defines the chat streaming route plus player lookup, feedback and health routes, and wires
# the shared clients together as process-scoped dependencies.

import itertools
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import anthropic
import chromadb
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from backend.config import Settings, configure_logging
from backend.embeddings import Embedder
from backend.feedback import ExpertTipStore, process_feedback
from backend.models import ChatRequest, FeedbackRequest, PlayerUpdateRequest
from backend.orchestrator import ChatOrchestrator
from backend.osrs import PriceClient, RankingClient, WikiClient
from backend.rag import ContextRetriever
from backend.tools import ResearchTools
from backend.web_search import WebSearchClient
from backend.wiki_cache import ChromaWikiCacheRepository, WikiCache

logger = logging.getLogger(__name__)

CHAT_ERROR_MESSAGE = "Failed to process chat request"


# ─────────────────────────────────────────
# DEPENDENCIES
# Process-scoped: built on first use, dropped on restart. Tests swap them out through
# app.dependency_overrides.
# ─────────────────────────────────────────

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


@lru_cache(maxsize=1)
def get_chroma_client():
    settings = get_settings()
    try:
        os.makedirs(settings.chroma_dir, exist_ok=True)
        return chromadb.PersistentClient(path=settings.chroma_dir)
    except Exception:
        logger.exception("Could not open ChromaDB at %s; using an in-memory store", settings.chroma_dir)
        return chromadb.EphemeralClient()


@lru_cache(maxsize=1)
def get_embedder() -> Embedder:
    settings = get_settings()
    return Embedder(settings.embed_model_name, enabled=settings.embeddings_enabled)


@lru_cache(maxsize=1)
def get_wiki_repository() -> ChromaWikiCacheRepository:
    return ChromaWikiCacheRepository.from_client(get_chroma_client())


@lru_cache(maxsize=1)
def get_wiki_cache() -> WikiCache:
    settings = get_settings()
    return WikiCache(
        get_wiki_repository(),
        get_embedder(),
        ttl_seconds=settings.wiki_cache_ttl_days * 24 * 60 * 60,
    )


@lru_cache(maxsize=1)
def get_wiki_client() -> WikiClient:
    return WikiClient(timeout=get_settings().http_timeout)


@lru_cache(maxsize=1)
def get_ranking_client() -> RankingClient:
    return RankingClient(timeout=get_settings().http_timeout)


@lru_cache(maxsize=1)
def get_tip_store() -> Optional[ExpertTipStore]:
    try:
        return ExpertTipStore.from_client(get_chroma_client(), get_embedder())
    except Exception:
        logger.exception("Expert tip store unavailable")
        return None


@lru_cache(maxsize=1)
def get_orchestrator() -> ChatOrchestrator:
    settings = get_settings()
    wiki = get_wiki_client()
    tools = ResearchTools(
        wiki=wiki,
        cache=get_wiki_cache(),
        prices=PriceClient(wiki, timeout=settings.http_timeout),
        web=WebSearchClient(settings.tavily_api_key, timeout=settings.http_timeout),
        ranking=get_ranking_client(),
    )
    client = anthropic.Anthropic(
        api_key=settings.anthropic_api_key,
        timeout=settings.model_timeout,
        max_retries=1,
    )
    return ChatOrchestrator(
        client=client,
        tools=tools.registry(),
        retriever=ContextRetriever(get_embedder(), get_wiki_repository()),
        settings=settings,
        tips=get_tip_store(),
    )


# ─────────────────────────────────────────
# APP
# ─────────────────────────────────────────

configure_logging(get_settings().log_level)

app = FastAPI(title="OSRS Agent API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Unexpected server error"})


# ─────────────────────────────────────────
# ROUTES
# ─────────────────────────────────────────

@app.get("/health")
def health():
    return {"status": "ok", "message": "OSRS Agent is ready."}


@app.post("/chat")
def chat(request: ChatRequest, orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    """
    Streams the assistant's reply as plain text.

    The first chunk is pulled before the response starts so that a provider failure
    can still be reported as a 500 instead of an empty 200 stream.
    """
    refusal = orchestrator.screen(request)
    if refusal:
        return JSONResponse(status_code=400, content={"error": refusal})

    stream = orchestrator.stream_turn(request)
    try:
        first = next(stream)
    except StopIteration:
        first = ""
    except Exception:
        logger.exception("Chat turn failed before streaming")
        return JSONResponse(status_code=500, content={"error": CHAT_ERROR_MESSAGE})

    return StreamingResponse(itertools.chain([first], stream), media_type="text/plain; charset=utf-8")


@app.get("/player")
def get_player(username: Optional[str] = None, ranking: RankingClient = Depends(get_ranking_client)):
    """Player stats plus weekly gains from Wise Old Man (starts tracking unknown players)."""
    if not username or not username.strip():
        return JSONResponse(status_code=400, content={"error": "Username is required"})

    with ThreadPoolExecutor(max_workers=2) as executor:
        stats_future = executor.submit(ranking.get_player, username)
        gains_future = executor.submit(ranking.get_gains, username, "week")
        stats = stats_future.result()
        gains = gains_future.result()

    if stats is None:
        return JSONResponse(status_code=404, content={"error": "Player not found"})
    return {"stats": stats, "gains": gains}


@app.post("/player")
def update_player(request: PlayerUpdateRequest, ranking: RankingClient = Depends(get_ranking_client)):
    """Ask Wise Old Man to refresh the player's hiscores, then return the fresh data."""
    stats = ranking.update_player(request.username)
    if stats is None:
        return JSONResponse(status_code=500, content={"error": "Failed to update player stats"})
    gains = ranking.get_gains(request.username, "week")
    return {"stats": stats, "gains": gains}


@app.post("/feedback")
def feedback(request: FeedbackRequest, tips: Optional[ExpertTipStore] = Depends(get_tip_store)):
    return process_feedback(request, tips)


# ─────────────────────────────────────────
# RUN
# ─────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting with settings: %s", get_settings().redacted())
    uvicorn.run("backend.main:app", host="0.0.0.0", port=8001, reload=True)
