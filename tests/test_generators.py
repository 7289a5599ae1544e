import pytest
from pydantic import BaseModel

import agent_generation.generators as generators
from agent_generation.config import GenerationConfig
from agent_generation.contracts import ActionResponse
from agent_generation.errors import ConfigurationError, RetryExhaustedError
from agent_generation.retry import RetryPolicy
from agent_generation.runtime import AgentRuntime
from agent_generation.tiering import ModelClass


class ScriptedModel:
    """Stands in for `generate_text`, replaying canned replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def __call__(self, runtime, context, model_class, **kwargs):
        self.calls.append({"context": context, "model_class": model_class, **kwargs})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def delays():
    return []


@pytest.fixture
def policy(delays):
    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    return RetryPolicy(sleeper=sleep)


@pytest.fixture
def runtime():
    return AgentRuntime(token="sk-test", read_environment=False)


def _script(monkeypatch, *replies) -> ScriptedModel:
    model = ScriptedModel(*replies)
    monkeypatch.setattr(generators, "generate_text", model)
    return model


@pytest.mark.asyncio
async def test_true_or_false_parses_first_reply_without_sleeping(monkeypatch, runtime, policy, delays):
    model = _script(monkeypatch, "true")
    assert await generators.generate_true_or_false(runtime, "Is the sky blue?", ModelClass.SMALL, policy=policy) is True
    assert len(model.calls) == 1
    assert delays == []


@pytest.mark.asyncio
async def test_true_or_false_retries_after_unparseable_reply(monkeypatch, runtime, policy, delays):
    model = _script(monkeypatch, "banana", "false")
    assert await generators.generate_true_or_false(runtime, "Is it raining?", ModelClass.SMALL, policy=policy) is False
    assert len(model.calls) == 2
    assert delays == [1.0]


@pytest.mark.asyncio
async def test_true_or_false_merges_newline_stop(monkeypatch, runtime, policy):
    model = _script(monkeypatch, "yes")
    await generators.generate_true_or_false(runtime, "ok?", ModelClass.SMALL, stop=["###", "\n"], policy=policy)
    assert model.calls[0]["stop"] == ["###", "\n"]


@pytest.mark.asyncio
async def test_should_respond_retries_through_errors(monkeypatch, runtime, policy, delays):
    model = _script(monkeypatch, RuntimeError("upstream 503"), "", "[IGNORE]")
    assert await generators.generate_should_respond(runtime, "hello", ModelClass.SMALL, policy=policy) == "IGNORE"
    assert len(model.calls) == 3
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_text_array_empty_context_skips_the_model(monkeypatch, runtime, policy):
    model = _script(monkeypatch)
    assert await generators.generate_text_array(runtime, "", ModelClass.SMALL, policy=policy) == []
    assert model.calls == []


@pytest.mark.asyncio
async def test_text_array_stringifies_non_string_items(monkeypatch, runtime, policy):
    _script(monkeypatch, '```json\n["a", {"b": 1}]\n```')
    out = await generators.generate_text_array(runtime, "list things", ModelClass.SMALL, policy=policy)
    assert out == ["a", '{"b": 1}']


@pytest.mark.asyncio
async def test_object_array_empty_context(monkeypatch, runtime, policy):
    model = _script(monkeypatch)
    assert await generators.generate_object_array(runtime, "", ModelClass.SMALL, policy=policy) == []
    assert model.calls == []


@pytest.mark.asyncio
async def test_message_response_empty_context(monkeypatch, runtime, policy):
    model = _script(monkeypatch)
    assert await generators.generate_message_response(runtime, "", ModelClass.SMALL, policy=policy) == {}
    assert model.calls == []


@pytest.mark.asyncio
async def test_message_response_retries_until_object(monkeypatch, runtime, policy, delays):
    _script(monkeypatch, "[1, 2]", '{"user": "agent", "text": "hi"}')
    out = await generators.generate_message_response(runtime, "say hi", ModelClass.LARGE, policy=policy)
    assert out == {"user": "agent", "text": "hi"}
    assert delays == [1.0]


@pytest.mark.asyncio
async def test_tweet_actions(monkeypatch, runtime, policy):
    _script(monkeypatch, "[RETWEET]\n[QUOTE]")
    out = await generators.generate_tweet_actions(runtime, "what now?", ModelClass.SMALL, policy=policy)
    assert out == ActionResponse(retweet=True, quote=True)


@pytest.mark.asyncio
async def test_bounded_policy_gives_up(monkeypatch, runtime, delays):
    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    _script(monkeypatch, "maybe", "perhaps")
    with pytest.raises(RetryExhaustedError):
        await generators.generate_true_or_false(
            runtime, "?", ModelClass.SMALL, policy=RetryPolicy(max_attempts=2, sleeper=sleep)
        )
    assert delays == [1.0]


@pytest.mark.asyncio
async def test_policy_defaults_to_runtime_config(monkeypatch):
    runtime = AgentRuntime(config=GenerationConfig(retry_initial_delay_seconds=0.0), read_environment=False)
    model = _script(monkeypatch, "nope?", "no")
    assert await generators.generate_true_or_false(runtime, "?", ModelClass.SMALL) is False
    assert len(model.calls) == 2


class Person(BaseModel):
    name: str
    age: int


@pytest.mark.asyncio
async def test_generate_object_empty_context_raises(monkeypatch, runtime, policy):
    model = _script(monkeypatch)
    with pytest.raises(ConfigurationError):
        await generators.generate_object(runtime, "", ModelClass.SMALL, policy=policy)
    assert model.calls == []


@pytest.mark.asyncio
async def test_generate_object_validates_against_schema(monkeypatch, runtime, policy, delays):
    model = _script(monkeypatch, '{"name": "Ada"}', '```json\n{"name": "Ada", "age": 36}\n```')
    result = await generators.generate_object(
        runtime, "Describe Ada.", ModelClass.MEDIUM, schema=Person, schema_name="Person", policy=policy
    )
    assert result.object == Person(name="Ada", age=36)
    assert "```json" in result.raw_text
    assert delays == [1.0]
    assert '"age"' in model.calls[0]["context"]


@pytest.mark.asyncio
async def test_generate_object_array_output(monkeypatch, runtime, policy):
    _script(monkeypatch, '[{"name": "a", "age": 1}, {"name": "b", "age": 2}]')
    result = await generators.generate_object(
        runtime, "People.", ModelClass.MEDIUM, schema=Person, output="array", policy=policy
    )
    assert [p.name for p in result.object] == ["a", "b"]


@pytest.mark.asyncio
async def test_generate_object_tool_mode_needs_schema(monkeypatch, runtime, policy):
    _script(monkeypatch)
    with pytest.raises(ConfigurationError):
        await generators.generate_object(runtime, "x", ModelClass.SMALL, mode="tool", policy=policy)


@pytest.mark.asyncio
async def test_generate_object_deprecated_returns_plain_value(monkeypatch, runtime, policy):
    _script(monkeypatch, '{"ok": true}')
    assert await generators.generate_object_deprecated(runtime, "x", ModelClass.SMALL, policy=policy) == {"ok": True}
