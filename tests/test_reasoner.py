import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from enrichment_harness.models import (
    ActionCall,
    ActionResultTurn,
    AssistantTurn,
    Conversation,
    Outcome,
    UserTurn,
)
from enrichment_harness.reasoner import (
    JUDGMENT_TOOL,
    ChoiceMode,
    OpenRouterReasoner,
    ReasoningProtocolError,
    to_messages,
)
from enrichment_harness.tools import SEARCH


def _tool_call(call_id: str, name: str, arguments: str):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _client(content=None, tool_calls=None) -> MagicMock:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    response = SimpleNamespace(choices=[SimpleNamespace(message=message)])
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


# ---------------------------------------------------------------------------
# Message translation
# ---------------------------------------------------------------------------


def test_to_messages_pairs_tool_results():
    conversation = Conversation().extend([
        UserTurn(text="research this"),
        AssistantTurn(action_calls=(ActionCall(id="c1", name="search", arguments={"query": "q"}),)),
        ActionResultTurn(call_id="c1", action_name="search", content="boom", outcome=Outcome.FAILURE),
    ])

    messages = to_messages(conversation)

    assert messages[0] == {"role": "user", "content": "research this"}
    assert messages[1]["tool_calls"][0]["id"] == "c1"
    assert json.loads(messages[1]["tool_calls"][0]["function"]["arguments"]) == {"query": "q"}
    assert messages[2] == {"role": "tool", "tool_call_id": "c1", "content": "Error: boom"}


def test_to_messages_skips_empty_assistant_turns():
    conversation = Conversation().extend([UserTurn(text="hi"), AssistantTurn()])

    assert to_messages(conversation) == [{"role": "user", "content": "hi"}]


# ---------------------------------------------------------------------------
# OpenRouter client
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_invoke_requires_a_tool_and_parses_calls():
    client = _client(tool_calls=[_tool_call("c1", "search", '{"query": "acme ceo"}')])
    reasoner = OpenRouterReasoner("test/model", client=client)

    turn = await reasoner.invoke(
        Conversation().extend([UserTurn(text="hi")]), [SEARCH], ChoiceMode.EXACTLY_ONE
    )

    assert turn.action_calls == (ActionCall(id="c1", name="search", arguments={"query": "acme ceo"}),)
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "test/model"
    assert kwargs["tool_choice"] == "required"
    assert kwargs["tools"][0]["function"]["name"] == "search"


@pytest.mark.asyncio
async def test_invoke_malformed_arguments():
    client = _client(tool_calls=[_tool_call("c1", "search", "{broken: json}")])
    reasoner = OpenRouterReasoner("test/model", client=client)

    with pytest.raises(ReasoningProtocolError):
        await reasoner.invoke(Conversation(), [SEARCH], ChoiceMode.EXACTLY_ONE)


@pytest.mark.asyncio
async def test_invoke_without_calls_returns_empty_turn():
    reasoner = OpenRouterReasoner("test/model", client=_client(content="I think..."))

    turn = await reasoner.invoke(Conversation(), [SEARCH], ChoiceMode.EXACTLY_ONE)

    assert turn.text == "I think..."
    assert turn.action_calls == ()


@pytest.mark.asyncio
async def test_judgment_forced_and_parsed():
    payload = json.dumps({"reasons": ["a", "b", "c"], "is_acceptable": False, "improvement_notes": "more"})
    client = _client(tool_calls=[_tool_call("j1", JUDGMENT_TOOL, payload)])
    reasoner = OpenRouterReasoner("test/model", client=client)

    judgment = await reasoner.invoke_for_judgment(Conversation(), "Is this good?")

    assert judgment.is_acceptable is False
    assert judgment.improvement_notes == "more"
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["tool_choice"]["function"]["name"] == JUDGMENT_TOOL
    assert kwargs["messages"][-1] == {"role": "user", "content": "Is this good?"}


@pytest.mark.asyncio
async def test_judgment_with_too_few_reasons():
    payload = json.dumps({"reasons": ["a"], "is_acceptable": True})
    reasoner = OpenRouterReasoner(
        "test/model", client=_client(tool_calls=[_tool_call("j1", JUDGMENT_TOOL, payload)])
    )

    with pytest.raises(ReasoningProtocolError, match="Judgment is invalid"):
        await reasoner.invoke_for_judgment(Conversation(), "Is this good?")


@pytest.mark.asyncio
async def test_judgment_missing():
    reasoner = OpenRouterReasoner("test/model", client=_client(content="looks fine"))

    with pytest.raises(ReasoningProtocolError):
        await reasoner.invoke_for_judgment(Conversation(), "Is this good?")


@pytest.mark.asyncio
async def test_complete_returns_text():
    reasoner = OpenRouterReasoner("test/model", client=_client(content="  notes  "))

    assert await reasoner.complete("summarize") == "notes"
