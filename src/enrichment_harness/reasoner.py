# reasoner.py
# Reasoning capability: the only place that talks to a language model.
#
# The harness depends on the Reasoner protocol, never on the client. The
# OpenRouter implementation speaks the OpenAI chat-completions dialect and
# translates a Conversation to and from chat messages.

import json
import os
from enum import Enum
from typing import Any, Protocol, Sequence

from dotenv import load_dotenv
from openai import AsyncOpenAI
from pydantic import ValidationError

from enrichment_harness.models import (
    ActionCall,
    ActionResultTurn,
    AssistantTurn,
    Conversation,
    Judgment,
    Outcome,
    UserTurn,
)
from enrichment_harness.tools import Action

load_dotenv()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

JUDGMENT_TOOL = "judgment"


class ReasoningProtocolError(Exception):
    """Raised when a model response cannot be turned into the requested shape."""


class ChoiceMode(str, Enum):
    """How many actions the model is allowed to choose."""

    EXACTLY_ONE = "required"


class Reasoner(Protocol):
    async def invoke(
        self,
        conversation: Conversation,
        actions: Sequence[Action],
        mode: ChoiceMode,
    ) -> AssistantTurn: ...

    async def invoke_for_judgment(
        self,
        conversation: Conversation,
        candidate_prompt: str,
    ) -> Judgment: ...

    async def complete(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Message translation
# ---------------------------------------------------------------------------


def to_messages(conversation: Conversation) -> list[dict[str, Any]]:
    """Render turns as chat messages. Empty assistant turns are dropped."""
    messages: list[dict[str, Any]] = []
    for turn in conversation.turns:
        if isinstance(turn, UserTurn):
            messages.append({"role": "user", "content": turn.text})
        elif isinstance(turn, AssistantTurn):
            if not turn.text and not turn.action_calls:
                continue
            message: dict[str, Any] = {"role": "assistant", "content": turn.text or ""}
            if turn.action_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments),
                        },
                    }
                    for call in turn.action_calls
                ]
            messages.append(message)
        elif isinstance(turn, ActionResultTurn):
            content = turn.content
            if turn.outcome is Outcome.FAILURE and not content.startswith("Error"):
                content = f"Error: {content}"
            messages.append({"role": "tool", "tool_call_id": turn.call_id, "content": content})
    return messages


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        # strict=False allows literal newlines inside strings
        args = json.loads(raw, strict=False)
    except json.JSONDecodeError as exc:
        raise ReasoningProtocolError(f"Tool arguments are malformed: {exc}\nPayload: {raw}") from exc
    if not isinstance(args, dict):
        raise ReasoningProtocolError(f"Tool arguments must be a JSON object, got: {raw}")
    return args


def _judgment_tool() -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": JUDGMENT_TOOL,
            "description": "Record your judgment of the proposed info.",
            "parameters": Judgment.model_json_schema(),
        },
    }


# ---------------------------------------------------------------------------
# OpenRouter client
# ---------------------------------------------------------------------------


class OpenRouterReasoner:
    """
    Reasoner backed by any OpenRouter-supported model.

    Example:
        reasoner = OpenRouterReasoner("anthropic/claude-3.5-sonnet")
        turn = await reasoner.invoke(conversation, actions, ChoiceMode.EXACTLY_ONE)
    """

    def __init__(self, model: str, client: AsyncOpenAI | None = None) -> None:
        self._model = model
        self._client = client or AsyncOpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=os.getenv("OPENROUTER_API_KEY"),
        )

    async def _create(self, messages: list[dict[str, Any]], **kwargs: Any):
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            **kwargs,
        )
        if not response.choices:
            raise ReasoningProtocolError("Model returned no choices.")
        return response.choices[0].message

    async def invoke(
        self,
        conversation: Conversation,
        actions: Sequence[Action],
        mode: ChoiceMode,
    ) -> AssistantTurn:
        message = await self._create(
            to_messages(conversation),
            tools=[action.as_tool() for action in actions],
            tool_choice=mode.value,
        )
        calls = tuple(
            ActionCall(
                id=tool_call.id or "",
                name=tool_call.function.name,
                arguments=_parse_arguments(tool_call.function.arguments),
            )
            for tool_call in message.tool_calls or []
        )
        return AssistantTurn(text=message.content, action_calls=calls)

    async def invoke_for_judgment(
        self,
        conversation: Conversation,
        candidate_prompt: str,
    ) -> Judgment:
        messages = to_messages(conversation)
        messages.append({"role": "user", "content": candidate_prompt})
        message = await self._create(
            messages,
            tools=[_judgment_tool()],
            tool_choice={"type": "function", "function": {"name": JUDGMENT_TOOL}},
        )
        if not message.tool_calls:
            raise ReasoningProtocolError("Model did not return a judgment.")

        try:
            return Judgment.model_validate(_parse_arguments(message.tool_calls[0].function.arguments))
        except ValidationError as exc:
            raise ReasoningProtocolError(f"Judgment is invalid: {exc}") from exc

    async def complete(self, prompt: str) -> str:
        message = await self._create([{"role": "user", "content": prompt}])
        return (message.content or "").strip()
