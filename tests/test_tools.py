from unittest.mock import AsyncMock, patch

import httpx
import pytest

from enrichment_harness.config import Configuration
from enrichment_harness.tools import (
    SEARCH,
    SUBMIT,
    Action,
    ActionNotFoundError,
    ActionRegistry,
    RunContext,
    default_registry,
    make_fetch_and_summarize,
)

SCHEMA = {"type": "object", "properties": {"ceo": {"type": "string"}}, "required": ["ceo"]}


def _context(**overrides) -> RunContext:
    return RunContext(
        topic="Acme",
        target_schema=SCHEMA,
        configuration=Configuration(quiet=True, **overrides),
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_search_success(mock_ddgs_cls):
    mock_instance = mock_ddgs_cls.return_value
    mock_instance.text.return_value = [
        {"title": "Result 1", "body": "Body 1", "href": "http://1.com"}
    ]

    result = await SEARCH.invoke({"query": "test"}, _context(max_search_results=2))

    assert "Result 1" in result
    assert "Body 1" in result
    assert "http://1.com" in result
    mock_instance.text.assert_called_once_with("test", max_results=2)


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_search_empty_query(mock_ddgs_cls):
    with pytest.raises(ValueError, match="no query provided"):
        await SEARCH.invoke({"query": "   "}, _context())
    mock_ddgs_cls.assert_not_called()


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_search_no_results(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.return_value = []

    result = await SEARCH.invoke({"query": "ghost"}, _context())

    assert "No results found" in result


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_search_exception_propagates(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.side_effect = Exception("Network timeout")

    with pytest.raises(Exception, match="Network timeout"):
        await SEARCH.invoke({"query": "crash"}, _context())


# ---------------------------------------------------------------------------
# Fetch and summarize
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_truncates_and_summarizes():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="0123456789ABCDEF"))
    summarize = AsyncMock(return_value="The CEO is Jane.")
    action = make_fetch_and_summarize(summarize, transport=transport)

    result = await action.invoke({"url": "https://acme.test/about"}, _context(fetch_max_chars=10))

    assert result == "The CEO is Jane."
    prompt = summarize.await_args.args[0]
    assert "https://acme.test/about" in prompt
    assert "0123456789" in prompt
    assert "ABCDEF" not in prompt
    assert '"ceo"' in prompt


@pytest.mark.asyncio
async def test_fetch_http_error_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(404, text="missing"))
    summarize = AsyncMock()
    action = make_fetch_and_summarize(summarize, transport=transport)

    with pytest.raises(httpx.HTTPStatusError):
        await action.invoke({"url": "https://acme.test/gone"}, _context())
    summarize.assert_not_awaited()


@pytest.mark.asyncio
async def test_fetch_requires_url():
    action = make_fetch_and_summarize(AsyncMock())
    with pytest.raises(ValueError, match="no URL provided"):
        await action.invoke({}, _context())


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_registry_lookup():
    registry = default_registry(AsyncMock())

    assert registry.names == ["search", "fetch_and_summarize"]
    assert registry.get("search") is SEARCH
    with pytest.raises(ActionNotFoundError, match='Tool "nope" not found.'):
        registry.get("nope")


def test_registry_rejects_reserved_and_duplicate_names():
    with pytest.raises(ValueError, match="reserved"):
        ActionRegistry([Action(name=SUBMIT, description="", input_schema={})])
    with pytest.raises(ValueError, match="Duplicate"):
        ActionRegistry([SEARCH, SEARCH])


def test_submit_uses_target_schema():
    actions = ActionRegistry([SEARCH]).with_submit(SCHEMA)

    submit = actions[-1]
    assert submit.name == SUBMIT
    assert submit.as_tool()["function"]["parameters"] == SCHEMA


@pytest.mark.asyncio
async def test_submit_is_not_executable():
    actions = ActionRegistry([]).with_submit(SCHEMA)
    with pytest.raises(TypeError):
        await actions[0].invoke({"ceo": "Jane"}, _context())


def test_as_tool_shape():
    tool = SEARCH.as_tool()

    assert tool["type"] == "function"
    assert tool["function"]["name"] == "search"
    assert tool["function"]["parameters"]["required"] == ["query"]
