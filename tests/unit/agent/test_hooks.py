"""
Unit tests for the operator hook pipeline.
"""

import pytest

from answerengine.agent.hooks import (
    Accepted,
    HookPipeline,
    PluginContext,
    Rejected,
    Replaced,
    Unchanged,
    maybe_await,
)


@pytest.fixture
def context():
    return PluginContext(prompt="hello", metadata={"source": "test"})


class TestBeforeQuery:
    """before_query: None rejects, a string rewrites."""

    @pytest.mark.asyncio
    async def test_no_hook_accepts_prompt(self, context):
        result = await HookPipeline().before("hello", context)
        assert result == Accepted("hello")

    @pytest.mark.asyncio
    async def test_none_rejects(self, context):
        pipeline = HookPipeline(before_query=lambda prompt, ctx: None)
        assert await pipeline.before("hello", context) == Rejected()

    @pytest.mark.asyncio
    async def test_string_rewrites(self, context):
        pipeline = HookPipeline(before_query=lambda prompt, ctx: prompt.upper())
        assert await pipeline.before("hello", context) == Accepted("HELLO")

    @pytest.mark.asyncio
    async def test_async_hook(self, context):
        async def hook(prompt, ctx):
            return f"{prompt} [{ctx.metadata['source']}]"

        pipeline = HookPipeline(before_query=hook)
        assert await pipeline.before("hello", context) == Accepted("hello [test]")

    @pytest.mark.asyncio
    async def test_explicit_rejection_keeps_reason(self, context):
        pipeline = HookPipeline(before_query=lambda prompt, ctx: Rejected("off topic"))
        result = await pipeline.before("hello", context)
        assert isinstance(result, Rejected)
        assert result.reason == "off topic"

    @pytest.mark.asyncio
    async def test_invalid_return_type(self, context):
        pipeline = HookPipeline(before_query=lambda prompt, ctx: 42)
        with pytest.raises(TypeError):
            await pipeline.before("hello", context)


class TestAfterResponse:
    """after_response: None keeps the original, a string replaces it."""

    @pytest.mark.asyncio
    async def test_no_hook_is_unchanged(self, context):
        assert await HookPipeline().after("answer", context) == Unchanged()

    @pytest.mark.asyncio
    async def test_none_is_unchanged(self, context):
        pipeline = HookPipeline(after_response=lambda response, ctx: None)
        assert await pipeline.after("answer", context) == Unchanged()

    @pytest.mark.asyncio
    async def test_string_replaces(self, context):
        async def hook(response, ctx):
            return response + " (footer)"

        pipeline = HookPipeline(after_response=hook)
        assert await pipeline.after("answer", context) == Replaced("answer (footer)")

    @pytest.mark.asyncio
    async def test_empty_string_replaces(self, context):
        pipeline = HookPipeline(after_response=lambda response, ctx: "")
        assert await pipeline.after("answer", context) == Replaced("")


class TestEscalation:
    """should_escalate is advisory and coerced to bool."""

    @pytest.mark.asyncio
    async def test_no_hook_never_escalates(self, context):
        assert await HookPipeline().escalate(context, "I don't know") is False

    @pytest.mark.asyncio
    async def test_async_predicate(self, context):
        async def hook(ctx, response):
            return "don't know" in response

        pipeline = HookPipeline(should_escalate=hook)
        assert await pipeline.escalate(context, "I don't know") is True
        assert await pipeline.escalate(context, "Paris") is False

    @pytest.mark.asyncio
    async def test_truthy_value_is_coerced(self, context):
        pipeline = HookPipeline(should_escalate=lambda ctx, response: "yes")
        assert await pipeline.escalate(context, "x") is True


@pytest.mark.asyncio
async def test_maybe_await():
    async def coro():
        return 1

    assert await maybe_await(coro()) == 1
    assert await maybe_await(2) == 2
