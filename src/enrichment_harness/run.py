# run.py
# Entry point. Config and wiring only. No logic lives here.
#
# Swap the model string for any OpenRouter-supported model.
# https://openrouter.ai/models

import asyncio
import logging

from enrichment_harness.config import ensure_configuration
from enrichment_harness.harness import run

MODEL = "anthropic/claude-3.5-sonnet"

# Example topics, each with the record shape to fill in.
TOPICS = [
    (
        "Top 5 chip providers for LLM training",
        {
            "type": "object",
            "properties": {
                "companies": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string", "description": "Company name"},
                            "technologies": {
                                "type": "string",
                                "description": "Brief summary of key technologies used by the company",
                            },
                            "market_share": {
                                "type": "string",
                                "description": "Overview of market share for this company",
                            },
                        },
                        "required": ["name", "technologies", "market_share"],
                    },
                    "description": "List of companies",
                }
            },
            "required": ["companies"],
        },
    ),
    (
        "The Python programming language",
        {
            "type": "object",
            "properties": {
                "creator": {"type": "string"},
                "first_release_year": {"type": "integer"},
                "latest_stable_version": {"type": "string"},
            },
            "required": ["creator", "first_release_year"],
        },
    ),
]


async def _main() -> None:
    configuration = ensure_configuration({"model": MODEL})

    # Independent topics share nothing and run side by side.
    results = await asyncio.gather(
        *(run(topic, schema, configuration) for topic, schema in TOPICS)
    )
    for (topic, _), result in zip(TOPICS, results):
        print(f"\n[{result.terminated.value.upper()}] {topic}\n{result.record}\n")


def main() -> None:
    logging.basicConfig(level=logging.WARNING)
    asyncio.run(_main())


if __name__ == "__main__":
    main()
