"""
Starter domain plugin.

A template to copy when building a new answer service: one example tool, a
knowledge file, and all three hooks. Serve it with

    answerengine --plugin answerengine.starter:plugin serve
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from answerengine.agent.interaction_log import LogConfig
from answerengine.plugin import HistoryConfig, create_plugin
from answerengine.tools.registry import tool

UNCERTAINTY_PHRASES = ("i'm not sure", "i don't know")
FOOTER = "\n\n---\n*Powered by answerengine*"


class SearchArgs(BaseModel):
    query: str = Field(description="Search query")


@tool("SearchExample", "Search for information in your domain", SearchArgs)
async def search_example(args):
    # Replace with a real lookup for your domain
    query = args.get("query", "")
    return {
        "content": [
            {"type": "text", "text": f'Results for "{query}": Example result 1, Example result 2'}
        ]
    }


def build_system_prompt() -> str:
    return (
        "You are a helpful assistant for [YOUR DOMAIN].\n"
        "\n"
        "Your role:\n"
        "- Answer questions accurately and concisely\n"
        "- Use the SearchExample tool to find information\n"
        "- Be friendly and professional\n"
        "\n"
        "Guidelines:\n"
        "- Stay within your domain expertise\n"
        "- Cite sources when possible\n"
        "- Escalate complex queries to a human\n"
        "\n"
        f"Today's date: {date.today().strftime('%A, %B %d, %Y')}"
    )


def reject_short_queries(prompt, context):
    if len(prompt) < 3:
        return None
    return prompt


async def add_footer(response, context):
    if not response:
        return None
    return response + FOOTER


async def escalate_on_uncertainty(context, response):
    lowered = response.lower()
    return any(phrase in lowered for phrase in UNCERTAINTY_PHRASES)


plugin = create_plugin(
    name="starter-example",
    version="0.1.0",
    system_prompt=build_system_prompt,
    tools=[search_example],
    allowed_tools=["SearchExample", "WebFetch", "WebSearch"],
    knowledge_base="./knowledge/notes.md",
    logging=LogConfig(enabled=True, path="./logs/interactions.log"),
    history=HistoryConfig(max_turns=20, enabled=True),
    before_query=reject_short_queries,
    after_response=add_footer,
    should_escalate=escalate_on_uncertainty,
)
