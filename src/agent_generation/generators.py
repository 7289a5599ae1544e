"""Retrying generators: one text call, one parser, backoff until it parses."""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any, Literal, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from .contracts import ActionResponse, ObjectGenerationResult, ShouldRespond
from .errors import ConfigurationError
from .logging import log_function_call
from .parsing import (
    parse_action_response,
    parse_boolean,
    parse_json_array,
    parse_json_object,
    parse_should_respond,
)
from .retry import RetryPolicy, run_with_retry
from .runtime import AgentRuntime
from .text import generate_text
from .tiering import ModelClass

log = structlog.get_logger()

T = TypeVar("T")

# Boolean replies are one token; cut the model off at the first newline.
TRUE_OR_FALSE_STOP = ("\n",)


async def _generate_parsed(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    parser: Callable[[str], T | None],
    *,
    name: str,
    policy: RetryPolicy | None,
    stop: Sequence[str] | None = None,
) -> T:
    async def attempt() -> T | None:
        response = await generate_text(runtime, context, model_class, stop=stop)
        log.debug("generation_response", generator=name, response=response)
        parsed = parser(response)
        if parsed is not None:
            log.debug("generation_parsed", generator=name, parsed=parsed)
        return parsed

    return await run_with_retry(attempt, policy=policy or runtime.config.retry_policy(), name=name)


async def generate_should_respond(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    policy: RetryPolicy | None = None,
) -> ShouldRespond:
    log_function_call("generate_should_respond", runtime)
    return await _generate_parsed(
        runtime,
        context,
        model_class,
        lambda text: parse_should_respond(text.strip()),
        name="should_respond",
        policy=policy,
    )


async def generate_true_or_false(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    stop: Sequence[str] | None = None,
    policy: RetryPolicy | None = None,
) -> bool:
    log_function_call("generate_true_or_false", runtime)
    merged_stop = list(dict.fromkeys([*(stop or ()), *TRUE_OR_FALSE_STOP]))
    return await _generate_parsed(
        runtime,
        context,
        model_class,
        lambda text: parse_boolean(text.strip()),
        name="true_or_false",
        policy=policy,
        stop=merged_stop,
    )


async def generate_text_array(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    policy: RetryPolicy | None = None,
) -> list[str]:
    log_function_call("generate_text_array", runtime)
    if not context:
        log.error("generate_text_array_empty_context")
        return []

    def parse(text: str) -> list[str] | None:
        items = parse_json_array(text)
        if items is None:
            return None
        return [item if isinstance(item, str) else json.dumps(item) for item in items]

    return await _generate_parsed(runtime, context, model_class, parse, name="text_array", policy=policy)


async def generate_object_array(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    policy: RetryPolicy | None = None,
) -> list[Any]:
    log_function_call("generate_object_array", runtime)
    if not context:
        log.error("generate_object_array_empty_context")
        return []
    return await _generate_parsed(runtime, context, model_class, parse_json_array, name="object_array", policy=policy)


async def generate_message_response(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    policy: RetryPolicy | None = None,
) -> dict[str, Any]:
    log_function_call("generate_message_response", runtime)
    if not context:
        log.error("generate_message_response_empty_context")
        return {}
    log.debug("generate_message_response_context", context=context)
    return await _generate_parsed(runtime, context, model_class, parse_json_object, name="message_response", policy=policy)


async def generate_tweet_actions(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    policy: RetryPolicy | None = None,
) -> ActionResponse:
    log_function_call("generate_tweet_actions", runtime)
    return await _generate_parsed(
        runtime,
        context,
        model_class,
        lambda text: parse_action_response(text.strip()),
        name="tweet_actions",
        policy=policy,
    )


def _object_prompt(
    context: str,
    *,
    schema: type[BaseModel] | None,
    schema_name: str | None,
    schema_description: str | None,
    mode: str,
) -> str:
    if mode == "tool" and schema is None:
        raise ConfigurationError("mode='tool' requires a schema.")
    parts = [context, "", "Respond with a single JSON value inside a ```json code block and nothing else."]
    if schema_name:
        parts.append(f"The value is a {schema_name}.")
    if schema_description:
        parts.append(schema_description)
    if schema is not None:
        parts.append("It must validate against this JSON schema:")
        parts.append(json.dumps(schema.model_json_schema()))
    return "\n".join(parts)


async def generate_object(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    schema: type[BaseModel] | None = None,
    schema_name: str | None = None,
    schema_description: str | None = None,
    stop: Sequence[str] | None = None,
    mode: Literal["auto", "json", "tool"] = "json",
    output: Literal["object", "array"] = "object",
    verifiable_inference: bool = False,
    policy: RetryPolicy | None = None,
) -> ObjectGenerationResult:
    """
    Structured generation: ask for JSON, parse it and, when `schema` is given,
    validate it. Replies that do not parse or validate are retried under
    `policy`. An empty context is a caller error and raises immediately.
    """
    log_function_call("generate_object", runtime)
    if not context:
        log.error("generate_object_empty_context")
        raise ConfigurationError("generate_object context is empty")

    prompt = _object_prompt(
        context, schema=schema, schema_name=schema_name, schema_description=schema_description, mode=mode
    )
    parser = parse_json_array if output == "array" else parse_json_object
    validator: TypeAdapter[Any] | None = None
    if schema is not None:
        validator = TypeAdapter(list[schema]) if output == "array" else TypeAdapter(schema)  # type: ignore[valid-type]

    async def attempt() -> ObjectGenerationResult | None:
        raw = await generate_text(
            runtime, prompt, model_class, stop=stop, verifiable_inference=verifiable_inference
        )
        parsed = parser(raw)
        if parsed is None:
            return None
        if validator is not None:
            try:
                parsed = validator.validate_python(parsed)
            except ValidationError as e:
                log.debug("generate_object_invalid", errors=e.error_count())
                return None
        return ObjectGenerationResult(object=parsed, raw_text=raw)

    return await run_with_retry(attempt, policy=policy or runtime.config.retry_policy(), name="object")


async def generate_object_deprecated(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    policy: RetryPolicy | None = None,
) -> Any:
    log_function_call("generate_object_deprecated", runtime)
    result = await generate_object(runtime, context, model_class, policy=policy)
    return result.object
