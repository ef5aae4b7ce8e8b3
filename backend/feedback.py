# Player feedback and the community expert-tip knowledge base built from it.
#
# A thumbs-down with a written correction becomes an expert tip: the question, the original
# answer and the correction are embedded and stored, then pulled back into the system prompt
# whenever a later question is semantically close.

import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

from backend.embeddings import Embedder
from backend.models import FeedbackRequest

logger = logging.getLogger(__name__)

EXPERT_TIPS_COLLECTION = "expert_tips"
TIP_MATCH_THRESHOLD = 0.6
TIP_MATCH_COUNT = 3
MIN_CORRECTION_CHARS = 10

CATEGORY_KEYWORDS = [
    ("boss", ["boss", "zulrah", "vorkath", "cox", "tob", "toa", "gauntlet", "inferno", "cerberus",
              "godwars", "gwd", "nightmare", "nex", "raids", "kill", "kc"]),
    ("quest", ["quest", "recipe for disaster", "dragon slayer", "monkey madness", "desert treasure",
               "song of the elves", "quest point", "qpc"]),
    ("skilling", ["xp", "training", "level", "runecrafting", "mining", "woodcutting", "fishing", "cooking",
                  "farming", "herblore", "crafting", "smithing", "fletching", "agility", "thieving",
                  "hunter", "construction", "firemaking", "sailing"]),
    ("money_making", ["money", "gp", "profit", "gold", "merch", "flip", "income"]),
    ("gear", ["gear", "equipment", "bis", "best in slot", "weapon", "armour", "armor", "setup", "loadout"]),
    ("pvp", ["pk", "pvp", "wilderness", "pking", "bridding", "nh"]),
]

TOPIC_PATTERNS = [
    # bosses
    re.compile(
        r"\b(zulrah|vorkath|gauntlet|corrupted gauntlet|cerberus|inferno|fight caves|jad|corporeal beast|"
        r"nightmare|nex|chambers of xeric|cox|theatre of blood|tob|tombs of amascut|toa|kalphite queen|kq|"
        r"giant mole|sarachnis|barrows|godwars|bandos|sara(?:domin)?|zamor(?:ak)?|armadyl|dagannoth kings|"
        r"dks|vardorvis|duke sucellus|the leviathan|the whisperer)\b",
        re.IGNORECASE,
    ),
    # skills
    re.compile(
        r"\b(attack|strength|defence|hitpoints|ranged|prayer|magic|runecrafting|construction|agility|"
        r"herblore|thieving|crafting|fletching|slayer|hunter|mining|smithing|fishing|cooking|firemaking|"
        r"woodcutting|farming|sailing)\b",
        re.IGNORECASE,
    ),
    # quests
    re.compile(
        r"\b(dragon slayer|monkey madness|recipe for disaster|desert treasure|song of the elves|regicide|"
        r"underground pass|legends quest|lunar diplomacy|dream mentor|a night at the theatre)\b",
        re.IGNORECASE,
    ),
]


def _contains_keyword(text: str, keyword: str) -> bool:
    return re.search(r"\b" + re.escape(keyword) + r"\b", text) is not None


def infer_category(question: str, correction: str) -> str:
    text = f"{question} {correction}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(_contains_keyword(text, kw) for kw in keywords):
            return category
    return "general"


def infer_topic(question: str, correction: str) -> str:
    text = f"{question} {correction}"
    for pattern in TOPIC_PATTERNS:
        match = pattern.search(text)
        if match:
            topic = match.group(1)
            return topic[0].upper() + topic[1:]
    return ""


def build_expert_tip_content(
    user_message: Optional[str], assistant_message: Optional[str], correction: Optional[str]
) -> str:
    parts = []
    if user_message:
        parts.append(f"Question: {user_message[:500]}")
    if assistant_message:
        parts.append(f"Original answer (incorrect/incomplete): {assistant_message[:500]}")
    if correction:
        parts.append(f"Expert correction: {correction}")
    return "\n\n".join(parts)


@dataclass
class ExpertTip:
    id: str
    content: str
    category: str
    topic: str
    similarity: float = 0.0


class ExpertTipStore:
    def __init__(self, collection, embedder: Embedder):
        self.collection = collection
        self.embedder = embedder

    @classmethod
    def from_client(cls, client, embedder: Embedder, name: str = EXPERT_TIPS_COLLECTION) -> "ExpertTipStore":
        return cls(client.get_or_create_collection(name, metadata={"hnsw:space": "cosine"}), embedder)

    def add(self, content: str, category: str, topic: str, source_feedback_id: str) -> Optional[str]:
        """Returns the new tip id, or None when the tip could not be embedded or stored."""
        embedding = self.embedder.embed_document(content)
        if embedding is None:
            return None
        tip_id = str(uuid.uuid4())
        try:
            self.collection.add(
                ids=[tip_id],
                embeddings=[embedding],
                documents=[content],
                metadatas=[{
                    "category": category,
                    "topic": topic,
                    "source_feedback_id": source_feedback_id,
                    "created_at": time.time(),
                }],
            )
        except Exception:
            logger.error("Could not store expert tip", exc_info=True)
            return None
        return tip_id

    def retrieve(
        self, query: str, threshold: float = TIP_MATCH_THRESHOLD, count: int = TIP_MATCH_COUNT
    ) -> List[ExpertTip]:
        if not query or not query.strip():
            return []
        embedding = self.embedder.embed_query(query)
        if embedding is None:
            return []
        try:
            available = self.collection.count()
            if available == 0:
                return []
            result = self.collection.query(
                query_embeddings=[embedding],
                n_results=min(count, available),
                include=["documents", "metadatas", "distances"],
            )
        except Exception:
            logger.warning("Expert tip retrieval failed", exc_info=True)
            return []

        tips = []
        for tip_id, document, metadata, distance in zip(
            result["ids"][0], result["documents"][0], result["metadatas"][0], result["distances"][0]
        ):
            similarity = 1.0 - float(distance)
            if similarity > threshold:
                tips.append(ExpertTip(
                    id=tip_id,
                    content=document,
                    category=metadata.get("category", "general"),
                    topic=metadata.get("topic", ""),
                    similarity=similarity,
                ))
        return tips


def format_expert_tips_for_prompt(tips: List[ExpertTip]) -> str:
    if not tips:
        return ""
    parts = []
    for i, tip in enumerate(tips, start=1):
        meta = " | ".join(
            m for m in [
                f"Category: {tip.category}" if tip.category else "",
                f"Topic: {tip.topic}" if tip.topic else "",
            ] if m
        )
        header = f"**Tip {i}**" + (f" ({meta})" if meta else "")
        parts.append(f"{header}:\n{tip.content}")
    return (
        "### COMMUNITY EXPERT TIPS:\n"
        "The following expert corrections and tips were contributed by experienced players. "
        "Prioritize this knowledge when it's relevant:\n\n"
        + "\n\n---\n\n".join(parts)
    )


def process_feedback(request: FeedbackRequest, tips: Optional[ExpertTipStore]) -> dict:
    """
    Plain ratings are only logged. A negative rating with a real correction is turned
    into an expert tip when a tip store is available.
    """
    feedback_id = str(uuid.uuid4())
    logger.info(
        "Feedback %s on message %s: rating=%d correction=%s",
        feedback_id, request.message_id, request.rating, bool(request.correction),
    )

    correction = (request.correction or "").strip()
    expert_tip_created = False
    if request.rating == -1 and len(correction) > MIN_CORRECTION_CHARS and tips is not None:
        content = build_expert_tip_content(request.user_message, request.assistant_message, correction)
        question = request.user_message or ""
        tip_id = tips.add(
            content,
            category=request.category or infer_category(question, correction),
            topic=request.topic or infer_topic(question, correction),
            source_feedback_id=feedback_id,
        )
        expert_tip_created = tip_id is not None

    return {
        "success": True,
        "stored": expert_tip_created,
        "feedbackId": feedback_id,
        "expertTipCreated": expert_tip_created,
    }
