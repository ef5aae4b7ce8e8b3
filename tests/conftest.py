"""
Shared fakes for the OSRS Agent test suite.
No network, no model downloads: the embedder, the model client, the clock and the
cache store are all replaced with in-process stand-ins.
"""

import copy
import hashlib
import json
import math
import os
import sys
import threading
from types import SimpleNamespace as NS

import pytest

# Add project root to path so backend can be imported without installing the package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.wiki_cache import WikiCacheRepository  # noqa: E402


# ─────────────────────────────────────────────────────────────
# Embeddings / store
# ─────────────────────────────────────────────────────────────

class FakeEmbedder:
    """Bag-of-words hashed into a small vector; identical text gives identical vectors."""

    DIM = 32

    def __init__(self, available=True):
        self.available = available
        self.calls = 0

    def _vector(self, text):
        self.calls += 1
        if not self.available or not text.strip():
            return None
        vec = [0.0] * self.DIM
        vec[0] = 0.1  # never all-zero
        for word in text.lower().split():
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % (self.DIM - 1) + 1
            vec[bucket] += 1.0
        return vec

    def embed_document(self, text):
        return self._vector(text)

    def embed_query(self, text):
        return self._vector(text)


def cosine(a, b):
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryWikiRepository(WikiCacheRepository):
    def __init__(self):
        self.pages = {}
        self.embeddings = {}
        self.fail_reads = False
        self.fail_writes = False
        self.upserts = 0
        self._lock = threading.Lock()

    def get_by_title(self, normalized_title):
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        return self.pages.get(normalized_title)

    def upsert(self, page, embedding):
        if self.fail_writes:
            raise RuntimeError("store unavailable")
        with self._lock:
            self.pages[page.normalized_title] = page
            self.embeddings[page.normalized_title] = embedding
            self.upserts += 1

    def match(self, embedding, threshold, count):
        scored = [
            (self.pages[key], cosine(embedding, vec))
            for key, vec in self.embeddings.items()
        ]
        scored = [s for s in scored if s[1] > threshold]
        scored.sort(key=lambda s: s[1], reverse=True)
        return scored[:count]


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ─────────────────────────────────────────────────────────────
# Model stream events
# ─────────────────────────────────────────────────────────────

def text_events(*chunks, stop_reason="end_turn", index=0):
    events = [
        NS(type="message_start"),
        NS(type="content_block_start", index=index, content_block=NS(type="text", text="")),
    ]
    for chunk in chunks:
        events.append(NS(type="content_block_delta", index=index, delta=NS(type="text_delta", text=chunk)))
    events += [
        NS(type="content_block_stop", index=index),
        NS(type="message_delta", delta=NS(stop_reason=stop_reason)),
        NS(type="message_stop"),
    ]
    return events


def tool_events(name, arguments, tool_id="toolu_01", preamble=None, pieces=3):
    """A response that (optionally) says something, then calls one tool with fragmented JSON args."""
    events = [NS(type="message_start")]
    index = 0
    if preamble:
        events += [
            NS(type="content_block_start", index=0, content_block=NS(type="text", text="")),
            NS(type="content_block_delta", index=0, delta=NS(type="text_delta", text=preamble)),
            NS(type="content_block_stop", index=0),
        ]
        index = 1
    raw = json.dumps(arguments) if not isinstance(arguments, str) else arguments
    step = max(1, len(raw) // pieces)
    fragments = [raw[i:i + step] for i in range(0, len(raw), step)]
    events.append(NS(
        type="content_block_start",
        index=index,
        content_block=NS(type="tool_use", id=tool_id, name=name, input={}),
    ))
    for fragment in fragments:
        events.append(NS(
            type="content_block_delta",
            index=index,
            delta=NS(type="input_json_delta", partial_json=fragment),
        ))
    events += [
        NS(type="content_block_stop", index=index),
        NS(type="message_delta", delta=NS(stop_reason="tool_use")),
        NS(type="message_stop"),
    ]
    return events


class FakeMessages:
    """
    Scripted stand-in for client.messages. Each create() call consumes the next script
    entry: a list of events, an exception to raise immediately, or a callable returning
    an iterable (for streams that fail part-way).
    """

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(copy.deepcopy(kwargs))
        if not self.script:
            raise AssertionError("model called more times than scripted")
        entry = self.script.pop(0)
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry()
        return iter(entry)


class FakeAnthropic:
    def __init__(self, script):
        self.messages = FakeMessages(script)


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def repository():
    return InMemoryWikiRepository()


@pytest.fixture
def clock():
    return FakeClock()
