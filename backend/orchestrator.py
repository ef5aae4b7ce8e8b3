# Chat turn orchestration: guardrail -> retrieval -> prompt -> streamed generation,
# with a bounded tool-calling loop in between.
#
# Nothing is kept after a turn finishes. Saving the conversation is the caller's job.

import json
import logging
import time
from typing import Callable, Iterator, List, Optional

from backend.config import Settings
from backend.feedback import ExpertTipStore, format_expert_tips_for_prompt
from backend.guardrail import REFUSAL_MESSAGE, is_off_topic
from backend.models import ChatRequest
from backend.prompts import build_system_prompt
from backend.rag import ContextRetriever, format_context_for_prompt
from backend.stream import ToolInvocation, TurnAccumulator, iter_text
from backend.tools import ToolRegistry

logger = logging.getLogger(__name__)

EMPTY_ANSWER_MESSAGE = "Sorry, I couldn't put together an answer this time. Please try asking again."


class ChatOrchestrator:
    def __init__(
        self,
        client,
        tools: ToolRegistry,
        retriever: Optional[ContextRetriever],
        settings: Settings,
        tips: Optional[ExpertTipStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.tools = tools
        self.retriever = retriever
        self.tips = tips
        self.settings = settings
        self.clock = clock

    # ─────────────────────────────────────────
    # PRE-GENERATION
    # ─────────────────────────────────────────

    def screen(self, request: ChatRequest) -> Optional[str]:
        """Refusal text when the latest message must be blocked, else None."""
        if is_off_topic(request.latest_user_message):
            logger.info("Guardrail blocked message: %r", request.latest_user_message[:120])
            return REFUSAL_MESSAGE
        return None

    def retrieve_context(self, query: str) -> str:
        if self.retriever is None:
            return ""
        try:
            documents = self.retriever.retrieve(
                query, self.settings.rag_match_threshold, self.settings.rag_match_count
            )
        except Exception:
            logger.warning("Context retrieval raised; continuing without it", exc_info=True)
            return ""
        return format_context_for_prompt(documents)

    def retrieve_tips(self, query: str) -> str:
        if self.tips is None:
            return ""
        try:
            return format_expert_tips_for_prompt(self.tips.retrieve(query))
        except Exception:
            logger.warning("Expert tip retrieval raised; continuing without it", exc_info=True)
            return ""

    def build_prompt(self, request: ChatRequest) -> str:
        query = request.latest_user_message
        t0 = time.time()
        context = self.retrieve_context(query)
        tips = self.retrieve_tips(query)
        logger.info("[TIMING] retrieval total=%.2fs", time.time() - t0)
        return build_system_prompt(
            user_context=request.user_context,
            profile=request.profile,
            retrieved_context=context,
            expert_tips=tips,
        )

    # ─────────────────────────────────────────
    # GENERATION
    # ─────────────────────────────────────────

    def _open_stream(self, system: str, messages: List[dict], allow_tools: bool):
        return self.client.messages.create(
            model=self.settings.anthropic_model,
            max_tokens=self.settings.max_output_tokens,
            system=system,
            messages=messages,
            tools=self.tools.definitions(),
            tool_choice={"type": "auto"} if allow_tools else {"type": "none"},
            stream=True,
        )

    def _run_tools(self, calls: List[ToolInvocation]) -> List[dict]:
        """Tool calls in one round run one at a time, in the order the model made them."""
        results = []
        for call in calls:
            result = self.tools.execute(call.name, call.raw_arguments)
            if not result.get("success"):
                logger.info("Tool %s failed softly: %s", call.name, result.get("message"))
            results.append({
                "type": "tool_result",
                "tool_use_id": call.id,
                "content": json.dumps(result, default=str),
                "is_error": not result.get("success", False),
            })
        return results

    def stream_turn(self, request: ChatRequest) -> Iterator[str]:
        """
        Yields the assistant's visible text as it streams in.

        Errors raised before any text has been yielded propagate to the caller (so it can
        still answer with a proper error status). After that the stream is just closed:
        text already sent can't be taken back, and there is no resume protocol.
        """
        t_start = self.clock()
        deadline = t_start + self.settings.turn_timeout
        system = self.build_prompt(request)
        messages: List[dict] = [{"role": m.role, "content": m.content} for m in request.messages]

        sent_any = False
        tool_rounds = 0
        try:
            while True:
                if tool_rounds and self.clock() > deadline:
                    logger.warning("Turn exceeded %.0fs before follow-up call; ending turn", self.settings.turn_timeout)
                    break
                allow_tools = tool_rounds < self.settings.max_tool_rounds
                accumulator = TurnAccumulator()
                events = self._open_stream(system, messages, allow_tools)
                try:
                    for text in iter_text(events, accumulator, keep_going=lambda: self.clock() <= deadline):
                        if not sent_any:
                            logger.info("[TIMING] time_to_first_token=%.2fs", self.clock() - t_start)
                        sent_any = True
                        yield text
                finally:
                    close = getattr(events, "close", None)
                    if callable(close):
                        close()

                if self.clock() > deadline:
                    logger.warning("Turn exceeded %.0fs; closing stream", self.settings.turn_timeout)
                    break
                if not accumulator.wants_tools:
                    break
                if not allow_tools:
                    logger.warning("Model asked for tools after %d rounds; stopping", tool_rounds)
                    break

                tool_rounds += 1
                calls = accumulator.tool_calls
                logger.info("Tool round %d: %s", tool_rounds, ", ".join(c.name for c in calls))
                messages.append({"role": "assistant", "content": accumulator.assistant_content()})
                messages.append({"role": "user", "content": self._run_tools(calls)})
        except Exception:
            if not sent_any:
                raise
            logger.exception("Chat stream failed mid-response; closing stream")
            return

        if not sent_any:
            yield EMPTY_ANSWER_MESSAGE
        logger.info("[TIMING] turn total=%.2fs  tool_rounds=%d", self.clock() - t_start, tool_rounds)
