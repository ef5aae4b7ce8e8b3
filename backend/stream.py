# Incremental parser for one streamed model response.
#
# The Messages API streams raw events (content_block_start / content_block_delta /
# content_block_stop / message_delta ...). TurnAccumulator consumes them one at a time,
# hands back any visible text immediately, and builds up the tool calls whose JSON
# arguments arrive in fragments. Nothing from a tool_use block is ever surfaced as text.

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ToolInvocation:
    id: str
    name: str
    raw_arguments: str = ""

    def parsed_arguments(self) -> dict:
        if not self.raw_arguments.strip():
            return {}
        try:
            parsed = json.loads(self.raw_arguments)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}


@dataclass
class _Block:
    type: str
    text: str = ""
    tool: Optional[ToolInvocation] = None


@dataclass
class TurnAccumulator:
    """State for a single model response: one instance per request to the provider."""

    blocks: dict = field(default_factory=dict)
    stop_reason: Optional[str] = None

    def feed(self, event) -> str:
        """Consume one raw stream event. Returns text to forward to the caller ("" if none)."""
        kind = getattr(event, "type", None)

        if kind == "content_block_start":
            block = event.content_block
            if block.type == "tool_use":
                self.blocks[event.index] = _Block("tool_use", tool=ToolInvocation(id=block.id, name=block.name))
            elif block.type == "text":
                self.blocks[event.index] = _Block("text", text=getattr(block, "text", "") or "")
                return self.blocks[event.index].text
            return ""

        if kind == "content_block_delta":
            delta = event.delta
            block = self.blocks.get(event.index)
            if delta.type == "text_delta":
                if block is None:
                    block = self.blocks[event.index] = _Block("text")
                block.text += delta.text
                return delta.text
            if delta.type == "input_json_delta" and block is not None and block.tool is not None:
                block.tool.raw_arguments += delta.partial_json
            return ""

        if kind == "message_delta":
            reason = getattr(event.delta, "stop_reason", None)
            if reason:
                self.stop_reason = reason
            return ""

        # message_start, content_block_stop, message_stop, ping: nothing to do
        return ""

    @property
    def tool_calls(self) -> List[ToolInvocation]:
        return [b.tool for _, b in sorted(self.blocks.items()) if b.tool is not None]

    @property
    def text(self) -> str:
        return "".join(b.text for _, b in sorted(self.blocks.items()) if b.type == "text")

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls) and self.stop_reason in (None, "tool_use")

    def assistant_content(self) -> List[dict]:
        """The response as content blocks, ready to append to the transcript."""
        content = []
        for _, block in sorted(self.blocks.items()):
            if block.type == "text" and block.text:
                content.append({"type": "text", "text": block.text})
            elif block.tool is not None:
                content.append({
                    "type": "tool_use",
                    "id": block.tool.id,
                    "name": block.tool.name,
                    "input": block.tool.parsed_arguments(),
                })
        return content


def iter_text(
    events: Iterable,
    accumulator: TurnAccumulator,
    keep_going: Optional[Callable[[], bool]] = None,
) -> Iterator[str]:
    """
    Lazily forward visible text as each event arrives; reads pause on the underlying transport.
    keep_going is checked before every event; once it returns False the rest of the stream is dropped.
    """
    for event in events:
        if keep_going is not None and not keep_going():
            return
        text = accumulator.feed(event)
        if text:
            yield text
