# Runtime configuration for the OSRS Agent backend.
# Everything is read from the environment (a local .env is picked up by python-dotenv).

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

USER_AGENT = "OSRS-Agent-Backend/1.0"

# Character caps applied to tool output before it goes back into the prompt.
WIKI_PAGE_MAX_CHARS = 3000
WIKI_TOP_PAGE_MAX_CHARS = 1000
WEB_RESULT_MAX_CHARS = 500

ITEM_MAPPING_TTL_SECONDS = 3600

_DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:3001,http://localhost:8001"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_list(name: str, default: str) -> List[str]:
    return [o.strip() for o in os.getenv(name, default).split(",") if o.strip()]


@dataclass(frozen=True)
class Settings:
    anthropic_api_key: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    anthropic_model: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-6")
    max_output_tokens: int = _env_int("MAX_OUTPUT_TOKENS", 2048)
    tavily_api_key: Optional[str] = os.getenv("TAVILY_API_KEY")
    chroma_dir: str = os.getenv("CHROMA_DIR", os.path.join(BASE_DIR, "db"))
    embed_model_name: str = os.getenv("EMBED_MODEL_NAME", "BAAI/bge-small-en-v1.5")
    embeddings_enabled: bool = os.getenv("EMBEDDINGS_ENABLED", "1") == "1"
    allowed_origins: List[str] = field(default_factory=lambda: _env_list("ALLOWED_ORIGINS", _DEFAULT_ORIGINS))
    http_timeout: float = _env_float("HTTP_TIMEOUT_SECONDS", 8.0)
    model_timeout: float = _env_float("MODEL_TIMEOUT_SECONDS", 25.0)
    turn_timeout: float = _env_float("TURN_TIMEOUT_SECONDS", 30.0)
    max_tool_rounds: int = _env_int("MAX_TOOL_ROUNDS", 5)
    rag_match_threshold: float = _env_float("RAG_MATCH_THRESHOLD", 0.65)
    rag_match_count: int = _env_int("RAG_MATCH_COUNT", 5)
    wiki_cache_ttl_days: int = _env_int("WIKI_CACHE_TTL_DAYS", 180)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def redacted(self) -> dict:
        """Settings safe to print at startup (no secrets)."""
        return {
            "anthropic_api_key_set": bool(self.anthropic_api_key),
            "anthropic_model": self.anthropic_model,
            "tavily_api_key_set": bool(self.tavily_api_key),
            "chroma_dir": self.chroma_dir,
            "embed_model_name": self.embed_model_name,
            "embeddings_enabled": self.embeddings_enabled,
            "allowed_origins": self.allowed_origins,
            "max_tool_rounds": self.max_tool_rounds,
            "turn_timeout": self.turn_timeout,
            "wiki_cache_ttl_days": self.wiki_cache_ttl_days,
        }


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(levelname)s - [%(name)s] %(message)s",
    )
