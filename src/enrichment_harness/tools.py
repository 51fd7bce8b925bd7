# tools.py
# Action registry: every external action the decision step may choose.
# The harness looks actions up by name and never calls these functions directly.
#
# "submit" is not registered here: its input schema is the caller's target
# schema, so it is built per run by submit_action() and handled by the
# validation step instead of being executed.

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel, ConfigDict

from enrichment_harness.config import Configuration
from enrichment_harness.prompts import INFO_PROMPT, SUBMIT_DESCRIPTION

SUBMIT = "submit"


class ActionNotFoundError(LookupError):
    """Raised when a call names an action absent from the registry."""


class RunContext(BaseModel):
    """Run-scoped values handed to every action alongside its arguments."""

    model_config = ConfigDict(frozen=True)

    topic: str
    target_schema: dict[str, Any]
    configuration: Configuration


ActionFn = Callable[[dict[str, Any], RunContext], Awaitable[str]]


@dataclass(frozen=True)
class Action:
    name: str
    description: str
    input_schema: dict[str, Any]
    fn: ActionFn | None = field(default=None, compare=False)

    async def invoke(self, arguments: dict[str, Any], context: RunContext) -> str:
        if self.fn is None:
            raise TypeError(f"Action '{self.name}' is not executable.")
        return await self.fn(arguments, context)

    def as_tool(self) -> dict[str, Any]:
        """OpenAI-style function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


def submit_action(target_schema: dict[str, Any]) -> Action:
    return Action(name=SUBMIT, description=SUBMIT_DESCRIPTION, input_schema=target_schema)


class ActionRegistry:
    """Fixed set of named actions. Read-only once built."""

    def __init__(self, actions: list[Action]) -> None:
        self._actions: dict[str, Action] = {}
        for action in actions:
            if action.name == SUBMIT:
                raise ValueError(f"'{SUBMIT}' is reserved for the target schema.")
            if action.name in self._actions:
                raise ValueError(f"Duplicate action name '{action.name}'.")
            self._actions[action.name] = action

    @property
    def names(self) -> list[str]:
        return list(self._actions)

    def get(self, name: str) -> Action:
        try:
            return self._actions[name]
        except KeyError:
            raise ActionNotFoundError(f'Tool "{name}" not found.') from None

    def with_submit(self, target_schema: dict[str, Any]) -> list[Action]:
        """Registry actions plus the run's dynamic submit action."""
        return [*self._actions.values(), submit_action(target_schema)]


# ---------------------------------------------------------------------------
# Built-in actions
# ---------------------------------------------------------------------------

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The search query to look up"},
    },
    "required": ["query"],
}

FETCH_SCHEMA = {
    "type": "object",
    "properties": {
        "url": {"type": "string", "description": "The URL of the website to fetch"},
    },
    "required": ["url"],
}


def _ddgs_text(query: str, max_results: int) -> list[dict]:
    from ddgs import DDGS

    # Coerce the generator to a list to ensure actual execution
    return list(DDGS().text(query, max_results=max_results))


async def _action_search(args: dict[str, Any], context: RunContext) -> str:
    query = str(args.get("query", "")).strip()
    if not query:
        raise ValueError("no query provided.")

    max_results = context.configuration.max_search_results
    results = await asyncio.to_thread(_ddgs_text, query, max_results)
    if not results:
        return "No results found."

    lines = []
    for r in results:
        lines.append(f"[{r.get('title', 'No Title')}]\n{r.get('body', '')}\nSource: {r.get('href', '')}")
    return "\n\n".join(lines)


Summarizer = Callable[[str], Awaitable[str]]


def make_fetch_and_summarize(
    summarize: Summarizer,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Action:
    """
    Build the fetch_and_summarize action around a summarizer.

    The page body is truncated to `fetch_max_chars` and handed to the
    summarizer together with the run's target schema, so the notes focus on
    the fields being researched.
    """

    async def _action_fetch(args: dict[str, Any], context: RunContext) -> str:
        url = str(args.get("url", "")).strip()
        if not url:
            raise ValueError("no URL provided.")

        config = context.configuration
        async with httpx.AsyncClient(
            transport=transport,
            follow_redirects=True,
            timeout=config.action_timeout,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()

        content = response.text[: config.fetch_max_chars]
        prompt = INFO_PROMPT.format(
            info=json.dumps(context.target_schema, indent=2),
            url=url,
            content=content,
        )
        return await summarize(prompt)

    return Action(
        name="fetch_and_summarize",
        description="Fetch content from a given website URL and take notes relevant to the research",
        input_schema=FETCH_SCHEMA,
        fn=_action_fetch,
    )


SEARCH = Action(
    name="search",
    description="Search the internet for information on a given topic",
    input_schema=SEARCH_SCHEMA,
    fn=_action_search,
)


def default_registry(
    summarize: Summarizer,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ActionRegistry:
    return ActionRegistry([SEARCH, make_fetch_and_summarize(summarize, transport)])
