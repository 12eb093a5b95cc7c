"""
Unit tests for AgentEngine query orchestration.

A scripted provider stands in for the model so every test controls exactly
which provider events arrive, and when.
"""

import asyncio
import json

import pytest

from answerengine.agent.cancellation import CancellationToken
from answerengine.agent.engine import AgentEngine
from answerengine.agent.events import (
    AssistantMessage,
    AssistantTextEvent,
    DoneEvent,
    ErrorEvent,
    ResultMessage,
    StartEvent,
    StreamEvent,
    TextBlock,
    ToolUseEvent,
)
from answerengine.agent.interaction_log import LogConfig
from answerengine.agent.models import AgentExecutionError, QueryRejectedError
from answerengine.knowledge.loader import KnowledgeSource
from answerengine.llm.provider import ModelProvider
from answerengine.plugin import HistoryConfig, create_plugin
from answerengine.tools.registry import tool


def _delta(text):
    return StreamEvent(event={
        "type": "content_block_delta",
        "index": 0,
        "delta": {"type": "text_delta", "text": text},
    })


def _success(result="", cost=0.01):
    return ResultMessage(
        subtype="success",
        result=result,
        total_cost_usd=cost,
        usage={"input_tokens": 10, "output_tokens": 4},
    )


def _answer(text):
    """Provider script for a plain streamed answer."""
    return [_delta(text), AssistantMessage(content=[TextBlock(text=text)]), _success(text)]


class ScriptedProvider(ModelProvider):
    """
    Replays a fixed list of provider events.

    An Exception instance in the script is raised at that point; a float
    pauses for that many seconds.
    """

    def __init__(self, script):
        self.script = list(script)
        self.requests = []
        self.closed = False

    async def query(self, request):
        self.requests.append(request)
        try:
            for item in self.script:
                if isinstance(item, Exception):
                    raise item
                if isinstance(item, float):
                    await asyncio.sleep(item)
                    continue
                yield item
        finally:
            self.closed = True


def _plugin(tmp_path, **overrides):
    options = {
        "name": "test",
        "system_prompt": "You are a test assistant.",
        "logging": LogConfig(path=str(tmp_path / "interactions.log")),
    }
    options.update(overrides)
    return create_plugin(**options)


def _log_records(tmp_path):
    log_file = tmp_path / "interactions.log"
    if not log_file.exists():
        return []
    return [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]


class TestStreamHappyPath:
    """Test a successful streamed query."""

    @pytest.mark.asyncio
    async def test_returns_result_and_emits_events(self, tmp_path):
        provider = ScriptedProvider(_answer("Paris"))
        engine = AgentEngine(_plugin(tmp_path), provider=provider)
        events = []

        result = await engine.stream("What is the capital of France?", on_event=events.append)

        assert result.response == "Paris"
        assert result.streamed is True
        assert result.cost == 0.01
        assert result.usage.input_tokens == 10
        assert result.cancelled is False
        assert result.escalated is False

        names = [e.event_name for e in events]
        assert names == ["start", "assistant-text", "assistant-text", "result", "done"]
        assert events[-1] == DoneEvent(response="Paris")

    @pytest.mark.asyncio
    async def test_provider_request(self, tmp_path):
        provider = ScriptedProvider(_answer("ok"))
        plugin = _plugin(tmp_path, knowledge_base=KnowledgeSource(type="string", source="Opening hours: 9-5"))
        engine = AgentEngine(plugin, provider=provider)

        await engine.stream(
            "  and on Sunday?  ",
            history=[
                {"role": "user", "content": "When are you open?"},
                {"role": "assistant", "content": "9 to 5"},
            ],
        )

        request = provider.requests[0]
        assert request.prompt == "User: When are you open?\n\nAgent: 9 to 5\n\nUser: and on Sunday?"
        assert request.system_prompt == "You are a test assistant.\n\nKnowledge Base:\nOpening hours: 9-5\n"
        assert request.allowed_tools == ["WebSearch", "WebFetch"]
        assert request.permission_mode == "bypassPermissions"
        assert request.tool_servers == {}

    @pytest.mark.asyncio
    async def test_plugin_tools_registered(self, tmp_path):
        async def handler(args):
            return "found"

        provider = ScriptedProvider(_answer("ok"))
        plugin = _plugin(tmp_path, tools=[tool("SearchExample", "Search", None, handler)])
        engine = AgentEngine(plugin, provider=provider)

        await engine.stream("find it")

        request = provider.requests[0]
        assert list(request.tool_servers) == ["test-tools"]
        assert request.allowed_tools == ["SearchExample", "WebSearch", "WebFetch"]

    @pytest.mark.asyncio
    async def test_success_is_logged_once(self, tmp_path):
        engine = AgentEngine(
            _plugin(tmp_path, metadata={"plugin": "test"}),
            provider=ScriptedProvider(_answer("Paris")),
        )

        await engine.stream("Capital?", history=[{"role": "user", "content": "hi"}], metadata={"source": "cli"})

        records = _log_records(tmp_path)
        assert len(records) == 1
        assert records[0]["userPrompt"] == "Capital?"
        assert records[0]["assistantResponse"] == "Paris"
        assert records[0]["success"] is True
        assert records[0]["metadata"] == {"plugin": "test", "source": "cli"}
        assert records[0]["history"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_response_from_last_assistant_message(self, tmp_path):
        script = [
            _delta("Let me check. "),
            AssistantMessage(content=[TextBlock(text="Let me check.")]),
            _delta("It is Paris."),
            AssistantMessage(content=[TextBlock(text="It is Paris.")]),
            _success(),
        ]
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(script))

        result = await engine.stream("Capital?")

        assert result.response == "It is Paris."

    @pytest.mark.asyncio
    async def test_no_result_message_still_completes(self, tmp_path):
        script = [AssistantMessage(content=[TextBlock(text="Hi")])]
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(script))

        result = await engine.stream("hello")

        assert result.response == "Hi"
        assert result.cost is None
        assert result.usage is None


class TestHooks:
    """Test before_query, after_response and should_escalate."""

    @pytest.mark.asyncio
    async def test_rejection_skips_provider(self, tmp_path):
        provider = ScriptedProvider(_answer("never"))
        plugin = _plugin(tmp_path, before_query=lambda prompt, ctx: None)
        engine = AgentEngine(plugin, provider=provider)
        events = []

        with pytest.raises(QueryRejectedError):
            await engine.stream("hi", on_event=events.append)

        assert provider.requests == []
        assert isinstance(events[0], StartEvent)
        assert isinstance(events[-1], ErrorEvent)
        assert "rejected" in events[-1].message

        records = _log_records(tmp_path)
        assert len(records) == 1
        assert records[0]["success"] is False
        assert records[0]["assistantResponse"] == ""
        assert "rejected" in records[0]["error"]

    @pytest.mark.asyncio
    async def test_rewritten_prompt_is_sent_and_logged(self, tmp_path):
        provider = ScriptedProvider(_answer("ok"))

        async def rewrite(prompt, ctx):
            return f"[{ctx.metadata['source']}] {prompt}"

        engine = AgentEngine(_plugin(tmp_path, before_query=rewrite), provider=provider)

        await engine.stream("hello", metadata={"source": "web"})

        assert provider.requests[0].prompt == "[web] hello"
        assert _log_records(tmp_path)[0]["userPrompt"] == "[web] hello"

    @pytest.mark.asyncio
    async def test_after_response_replaces_result_not_log(self, tmp_path):
        plugin = _plugin(tmp_path, after_response=lambda response, ctx: response + " (footer)")
        engine = AgentEngine(plugin, provider=ScriptedProvider(_answer("Paris")))
        events = []

        result = await engine.stream("Capital?", on_event=events.append)

        assert result.response == "Paris (footer)"
        assert events[-1] == DoneEvent(response="Paris (footer)")
        assert _log_records(tmp_path)[0]["assistantResponse"] == "Paris"

    @pytest.mark.asyncio
    async def test_after_response_none_keeps_original(self, tmp_path):
        plugin = _plugin(tmp_path, after_response=lambda response, ctx: None)
        engine = AgentEngine(plugin, provider=ScriptedProvider(_answer("Paris")))

        result = await engine.stream("Capital?")

        assert result.response == "Paris"

    @pytest.mark.asyncio
    async def test_escalation_sees_final_response(self, tmp_path):
        seen = []

        async def escalate(ctx, response):
            seen.append(response)
            return "don't know" in response

        plugin = _plugin(
            tmp_path,
            after_response=lambda response, ctx: response + "!",
            should_escalate=escalate,
        )
        engine = AgentEngine(plugin, provider=ScriptedProvider(_answer("I don't know")))

        result = await engine.stream("Hard question")

        assert result.escalated is True
        assert seen == ["I don't know!"]

    @pytest.mark.asyncio
    async def test_failing_after_hook_ends_with_error(self, tmp_path):
        def broken(response, ctx):
            raise RuntimeError("hook broke")

        engine = AgentEngine(_plugin(tmp_path, after_response=broken), provider=ScriptedProvider(_answer("x")))
        events = []

        with pytest.raises(RuntimeError):
            await engine.stream("q", on_event=events.append)

        assert events[-1] == ErrorEvent(message="hook broke")
        assert sum(isinstance(e, (DoneEvent, ErrorEvent)) for e in events) == 1


class TestFailures:
    """Test provider errors, logging and the terminal event contract."""

    @pytest.mark.asyncio
    async def test_error_result_raises(self, tmp_path):
        script = [
            AssistantMessage(content=[TextBlock(text="partial")]),
            ResultMessage(subtype="error_during_execution", is_error=True),
        ]
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(script))
        events = []

        with pytest.raises(AgentExecutionError, match="Agent execution failed."):
            await engine.stream("q", on_event=events.append)

        assert events[-1] == ErrorEvent(message="Agent execution failed.")
        records = _log_records(tmp_path)
        assert len(records) == 1
        assert records[0]["success"] is False
        assert records[0]["assistantResponse"] == "partial"

    @pytest.mark.asyncio
    async def test_provider_exception_is_logged_and_rethrown(self, tmp_path):
        script = [_delta("Hel"), ConnectionError("socket closed")]
        provider = ScriptedProvider(script)
        engine = AgentEngine(_plugin(tmp_path), provider=provider)
        events = []

        with pytest.raises(ConnectionError):
            await engine.stream("q", on_event=events.append)

        assert provider.closed is True
        assert [e.event_name for e in events] == ["start", "assistant-text", "error"]
        assert events[-1].message == "socket closed"
        records = _log_records(tmp_path)
        assert len(records) == 1
        assert records[0]["error"] == "socket closed"

    @pytest.mark.asyncio
    async def test_logging_disabled_writes_nothing(self, tmp_path):
        plugin = _plugin(tmp_path, logging=LogConfig(path=str(tmp_path / "interactions.log"), enabled=False))
        engine = AgentEngine(plugin, provider=ScriptedProvider([ConnectionError("down")]))

        with pytest.raises(ConnectionError):
            await engine.stream("q")

        assert not (tmp_path / "interactions.log").exists()

    @pytest.mark.asyncio
    async def test_logging_disabled_on_success_writes_nothing(self, tmp_path):
        plugin = _plugin(tmp_path, logging=LogConfig(path=str(tmp_path / "interactions.log"), enabled=False))
        engine = AgentEngine(plugin, provider=ScriptedProvider(_answer("ok")))

        result = await engine.stream("q")

        assert result.response == "ok"
        assert not (tmp_path / "interactions.log").exists()

    @pytest.mark.asyncio
    async def test_knowledge_failure_still_answers(self, tmp_path):
        def fetch():
            raise OSError("knowledge service down")

        provider = ScriptedProvider(_answer("ok"))
        plugin = _plugin(tmp_path, knowledge_base=KnowledgeSource(type="function", source=fetch))
        engine = AgentEngine(plugin, provider=provider)

        result = await engine.stream("q")

        assert result.response == "ok"
        assert provider.requests[0].system_prompt == "You are a test assistant."

    @pytest.mark.asyncio
    async def test_async_event_callback(self, tmp_path):
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(_answer("hi")))
        events = []

        async def on_event(event):
            events.append(event.event_name)

        await engine.stream("q", on_event=on_event)

        assert events[0] == "start"
        assert events[-1] == "done"


class TestCancellation:
    """Test cancelling a query mid-stream."""

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_returns_partial(self, tmp_path):
        token = CancellationToken()
        script = [
            AssistantMessage(content=[TextBlock(text="Partial answer")]),
            5.0,
            _success("never"),
        ]
        provider = ScriptedProvider(script)
        engine = AgentEngine(_plugin(tmp_path), provider=provider)
        events = []

        def on_event(event):
            events.append(event)
            if isinstance(event, AssistantTextEvent):
                asyncio.get_running_loop().call_later(0.01, token.cancel)

        result = await asyncio.wait_for(
            engine.stream("q", on_event=on_event, cancellation=token), timeout=2
        )

        assert result.cancelled is True
        assert result.response == "Partial answer"
        assert provider.closed is True
        assert [e.event_name for e in events] == ["start", "assistant-text", "done"]

        records = _log_records(tmp_path)
        assert len(records) == 1
        assert records[0]["assistantResponse"] == "Partial answer"
        assert "error" not in records[0]

    @pytest.mark.asyncio
    async def test_cancelled_before_start_makes_no_events(self, tmp_path):
        token = CancellationToken()
        token.cancel()
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(_answer("x")))
        events = []

        result = await engine.stream("q", on_event=events.append, cancellation=token)

        assert result.cancelled is True
        assert result.response == ""
        assert [e.event_name for e in events] == ["start", "done"]

    @pytest.mark.asyncio
    async def test_task_cancelled_mid_stream(self, tmp_path):
        script = [
            AssistantMessage(content=[TextBlock(text="partial")]),
            5.0,
            _success("never"),
        ]
        provider = ScriptedProvider(script)
        engine = AgentEngine(_plugin(tmp_path), provider=provider)
        events = []
        text_seen = asyncio.Event()

        def on_event(event):
            events.append(event)
            if isinstance(event, AssistantTextEvent):
                text_seen.set()

        task = asyncio.create_task(engine.stream("q", on_event=on_event))
        await asyncio.wait_for(text_seen.wait(), timeout=2)
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert provider.closed is True
        assert [e.event_name for e in events] == ["start", "assistant-text", "done"]

        records = _log_records(tmp_path)
        assert len(records) == 1
        assert records[0]["assistantResponse"] == "partial"
        assert records[0]["success"] is True
        assert "error" not in records[0]


class TestInitialization:
    """Test one-time knowledge and system prompt resolution."""

    @pytest.mark.asyncio
    async def test_concurrent_queries_initialize_once(self, tmp_path):
        calls = []

        async def build_prompt():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "Built prompt"

        provider = ScriptedProvider(_answer("ok"))
        engine = AgentEngine(_plugin(tmp_path, system_prompt=build_prompt), provider=provider)

        results = await asyncio.gather(*[engine.stream(f"q{i}") for i in range(5)])

        assert len(calls) == 1
        assert all(r.response == "ok" for r in results)
        assert {r.system_prompt for r in provider.requests} == {"Built prompt"}

    @pytest.mark.asyncio
    async def test_history_disabled_is_ignored(self, tmp_path):
        provider = ScriptedProvider(_answer("ok"))
        plugin = _plugin(tmp_path, history=HistoryConfig(enabled=False))
        engine = AgentEngine(plugin, provider=provider)

        await engine.stream("now", history=[{"role": "user", "content": "before"}])

        assert provider.requests[0].prompt == "now"

    @pytest.mark.asyncio
    async def test_history_window_from_plugin(self, tmp_path):
        provider = ScriptedProvider(_answer("ok"))
        plugin = _plugin(tmp_path, history=HistoryConfig(max_turns=1))
        engine = AgentEngine(plugin, provider=provider)

        await engine.stream("now", history=[
            {"role": "user", "content": "old"},
            {"role": "assistant", "content": "recent"},
        ])

        assert provider.requests[0].prompt == "Agent: recent\n\nUser: now"


class TestRun:
    """Test the text-chunk convenience wrapper."""

    @pytest.mark.asyncio
    async def test_forwards_deltas(self, tmp_path):
        script = [
            _delta("Par"),
            _delta("is"),
            AssistantMessage(content=[TextBlock(text="Paris")]),
            _success("Paris"),
        ]
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(script))
        chunks = []

        result = await engine.run("Capital?", on_text_chunk=chunks.append)

        assert chunks == ["Par", "is"]
        assert result.response == "Paris"

    @pytest.mark.asyncio
    async def test_falls_back_to_first_block(self, tmp_path):
        script = [
            AssistantMessage(content=[TextBlock(text="first")]),
            AssistantMessage(content=[TextBlock(text="second")]),
            _success(),
        ]
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(script))
        chunks = []

        result = await engine.run("q", on_text_chunk=chunks.append)

        assert chunks == ["first"]
        assert result.streamed is True
        assert result.response == "second"

    @pytest.mark.asyncio
    async def test_tool_events_not_forwarded(self, tmp_path):
        script = [
            StreamEvent(event={
                "type": "content_block_start",
                "content_block": {"type": "tool_use", "id": "t1", "name": "SearchExample"},
            }),
            *_answer("done"),
        ]
        engine = AgentEngine(_plugin(tmp_path), provider=ScriptedProvider(script))
        chunks = []

        await engine.run("q", on_text_chunk=chunks.append)

        assert chunks == ["done"]


def test_tool_use_event_type_is_exported():
    assert ToolUseEvent(id="x", stage="end").event_name == "tool-use"
