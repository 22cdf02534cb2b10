"""Mock LLM Layer — canned replies for tests, no API calls.

Speaks the same interface StructuredGenerator uses on LLMLayer:
complete_raw, build_cached_system, estimate_cost.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.config import ModelTier
from app.llm.layer import LLMResponse

DEFAULT_REPLY = "Mock response"


@dataclass
class _MockUsage:
    input_tokens: int = 100
    output_tokens: int = 50
    cache_read_input_tokens: int = 0


@dataclass
class _MockTextBlock:
    text: str
    type: str = "text"


@dataclass
class _MockMessage:
    """Just enough of anthropic.types.Message for message_text and metadata."""

    text: str = DEFAULT_REPLY
    stop_reason: str = "end_turn"
    model: str = "mock-model"
    usage: _MockUsage = field(default_factory=_MockUsage)
    content: list[Any] = field(init=False)

    def __post_init__(self) -> None:
        self.content = [_MockTextBlock(self.text)]


class MockLLMLayer:
    """Replies keyed by "<tier>:raw".

    A reply is a string, an exception instance (raised from the call), or a
    list of those consumed one per call; the last list entry repeats.

        mock = MockLLMLayer({"haiku:raw": '{"entities": [], "relationships": []}'})
        message, meta = await mock.complete_raw(messages=[...], model_tier="haiku")
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses or {}
        self.call_log: list[dict] = []

    def _next_reply(self, model_tier: ModelTier) -> Any:
        reply = self.responses.get(f"{model_tier}:raw", DEFAULT_REPLY)
        if not isinstance(reply, list):
            return reply
        if len(reply) > 1:
            return reply.pop(0)
        return reply[0] if reply else DEFAULT_REPLY

    async def complete_raw(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> tuple[_MockMessage, LLMResponse]:
        self.call_log.append({
            "method": "complete_raw",
            "model_tier": model_tier,
            "messages": messages,
            "system": system,
            "temperature": temperature,
        })
        reply = self._next_reply(model_tier)
        if isinstance(reply, BaseException):
            raise reply
        meta = LLMResponse(
            model_version=f"mock-{model_tier}",
            input_tokens=100,
            output_tokens=50,
            stop_reason="end_turn",
        )
        return _MockMessage(str(reply)), meta

    def build_cached_system(self, text: str) -> list[dict]:
        return [{"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}]

    def estimate_cost(self, model_tier: ModelTier, input_tokens: int,
                      output_tokens: int, cached_input_tokens: int = 0) -> float:
        return 0.0
