# Request models shared by the API routes and the chat orchestrator.
# The frontend posts camelCase JSON; aliases are generated so Python code stays snake_case.

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_MESSAGES = 50
MAX_MESSAGE_CHARS = 8000


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─────────────────────────────────────────
# CHAT
# ─────────────────────────────────────────

class ChatMessage(_CamelModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)


class RareItem(_CamelModel):
    name: str = Field(min_length=1, max_length=200)
    quantity: int = Field(default=1, ge=0)


class UserContext(_CamelModel):
    """
    Snapshot of the player's external state, supplied fresh with every request.

    stats and gains are passed through exactly as the ranking service returned them
    (the frontend gets them from GET /player), so they stay plain dicts.
    """
    username: Optional[str] = Field(default=None, max_length=64)
    stats: Optional[dict] = None
    gains: Optional[dict] = None
    rare_items: List[RareItem] = Field(default_factory=list, max_length=500)
    account_type: Optional[str] = Field(default=None, max_length=32)

    @property
    def account_mode(self) -> Optional[str]:
        """Explicit account type wins; otherwise fall back to the ranking-service type."""
        if self.account_type:
            return self.account_type.lower()
        if self.stats and isinstance(self.stats.get("type"), str):
            return self.stats["type"].lower()
        return None


class Achievement(_CamelModel):
    type: str = Field(min_length=1, max_length=100)
    date: str = Field(max_length=40)
    description: Optional[str] = Field(default=None, max_length=500)


class ProfileMemory(_CamelModel):
    preferred_name: Optional[str] = Field(default=None, max_length=100)
    memory_notes: Optional[str] = Field(default=None, max_length=4000)
    achievements: List[Achievement] = Field(default_factory=list, max_length=100)
    notable_items: List[str] = Field(default_factory=list, max_length=200)
    goals: Optional[str] = Field(default=None, max_length=1000)
    play_style: Optional[str] = Field(default=None, max_length=200)


class ChatRequest(_CamelModel):
    messages: List[ChatMessage] = Field(min_length=1)
    user_context: Optional[UserContext] = None
    profile: Optional[ProfileMemory] = None

    @field_validator("messages")
    @classmethod
    def _ends_with_user(cls, messages: List[ChatMessage]) -> List[ChatMessage]:
        if messages[-1].role != "user":
            raise ValueError("the last message must come from the user")
        if len(messages) > MAX_MESSAGES:
            # Long conversations keep only their recent turns; the history must still open on a user message.
            messages = messages[-MAX_MESSAGES:]
            while messages[0].role != "user":
                messages = messages[1:]
        return messages

    @property
    def latest_user_message(self) -> str:
        return self.messages[-1].content


# ─────────────────────────────────────────
# PLAYER / FEEDBACK
# ─────────────────────────────────────────

class PlayerUpdateRequest(_CamelModel):
    username: str = Field(min_length=1, max_length=64)


class FeedbackRequest(_CamelModel):
    message_id: str = Field(min_length=1)
    chat_id: Optional[str] = None
    rating: Literal[-1, 1]
    correction: Optional[str] = Field(default=None, max_length=2000)
    user_message: Optional[str] = Field(default=None, max_length=10000)
    assistant_message: Optional[str] = Field(default=None, max_length=10000)
    category: Optional[str] = Field(default=None, max_length=100)
    topic: Optional[str] = Field(default=None, max_length=200)
