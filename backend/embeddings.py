# Embedding model wrapper used by the wiki cache, the context retriever and the expert tips store.
# Uses a free local FastEmbed model, so no extra API key is needed.

import logging
import threading
from typing import List, Optional

logger = logging.getLogger(__name__)

# Long pages are cut before embedding; the model only sees the opening anyway.
EMBED_INPUT_MAX_CHARS = 8000


class Embedder:
    """
    Lazily loads the embedding model on first use.

    Every method returns None instead of raising: embeddings are an enrichment,
    and callers decide what to do without them.
    """

    def __init__(self, model_name: str, enabled: bool = True):
        self.model_name = model_name
        self.enabled = enabled
        self._model = None
        self._load_failed = False
        self._lock = threading.Lock()

    def _get_model(self):
        if not self.enabled or self._load_failed:
            return None
        with self._lock:
            if self._model is None and not self._load_failed:
                try:
                    from llama_index.embeddings.fastembed import FastEmbedEmbedding

                    self._model = FastEmbedEmbedding(model_name=self.model_name)
                    logger.info("Loaded embedding model %s", self.model_name)
                except Exception:
                    logger.exception("Embedding model %s failed to load; semantic search disabled", self.model_name)
                    self._load_failed = True
        return self._model

    def embed_document(self, text: str) -> Optional[List[float]]:
        model = self._get_model()
        if model is None or not text.strip():
            return None
        try:
            return list(model.get_text_embedding(text[:EMBED_INPUT_MAX_CHARS]))
        except Exception:
            logger.exception("Document embedding failed")
            return None

    def embed_query(self, text: str) -> Optional[List[float]]:
        model = self._get_model()
        if model is None or not text.strip():
            return None
        try:
            return list(model.get_query_embedding(text[:EMBED_INPUT_MAX_CHARS]))
        except Exception:
            logger.exception("Query embedding failed")
            return None
