from __future__ import annotations

import inspect
import json
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from openai import AsyncOpenAI

from .contracts import GenerationRequest, ModelProviderName, StepResult, Tool
from .errors import AuthenticationError, ConfigurationError, UpstreamProtocolError, VerificationError
from .logging import log_function_call
from .metrics import text_generation_latency_seconds, text_generation_requests_total
from .runtime import AgentRuntime, VerifiableInferenceAdapter
from .tiering import ModelClass

log = structlog.get_logger()

CLOUDFLARE_GATEWAY_BASE = "https://gateway.ai.cloudflare.com/v1"

StepCallback = Callable[[StepResult], Awaitable[None] | None]


@dataclass(frozen=True)
class TextProviderDefaults:
    endpoint: str
    api_key_setting: str
    models: Mapping[ModelClass, str]


_TOGETHER = TextProviderDefaults(
    endpoint="https://api.together.xyz/v1",
    api_key_setting="TOGETHER_API_KEY",
    models={
        ModelClass.SMALL: "meta-llama/Llama-3.2-3B-Instruct-Turbo",
        ModelClass.MEDIUM: "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo",
        ModelClass.LARGE: "meta-llama/Meta-Llama-3.1-405B-Instruct-Turbo",
        ModelClass.EMBEDDING: "togethercomputer/m2-bert-80M-32k-retrieval",
    },
)

TEXT_PROVIDER_DEFAULTS: dict[ModelProviderName, TextProviderDefaults] = {
    ModelProviderName.OPENAI: TextProviderDefaults(
        endpoint="https://api.openai.com/v1",
        api_key_setting="OPENAI_API_KEY",
        models={
            ModelClass.SMALL: "gpt-4o-mini",
            ModelClass.MEDIUM: "gpt-4o",
            ModelClass.LARGE: "gpt-4o",
            ModelClass.EMBEDDING: "text-embedding-3-small",
        },
    ),
    ModelProviderName.TOGETHER: _TOGETHER,
    ModelProviderName.LLAMACLOUD: _TOGETHER,
    ModelProviderName.HEURIST: TextProviderDefaults(
        endpoint="https://llm-gateway.heurist.xyz",
        api_key_setting="HEURIST_API_KEY",
        models={
            ModelClass.SMALL: "meta-llama/llama-3-70b-instruct",
            ModelClass.MEDIUM: "meta-llama/llama-3-70b-instruct",
            ModelClass.LARGE: "meta-llama/llama-3.3-70b-instruct",
        },
    ),
    ModelProviderName.VENICE: TextProviderDefaults(
        endpoint="https://api.venice.ai/api/v1",
        api_key_setting="VENICE_API_KEY",
        models={
            ModelClass.SMALL: "llama-3.3-70b",
            ModelClass.MEDIUM: "llama-3.3-70b",
            ModelClass.LARGE: "llama-3.1-405b",
        },
    ),
    ModelProviderName.NINETEEN_AI: TextProviderDefaults(
        endpoint="https://api.nineteen.ai/v1",
        api_key_setting="NINETEEN_AI_API_KEY",
        models={
            ModelClass.SMALL: "unsloth/Llama-3.2-3B-Instruct",
            ModelClass.MEDIUM: "unsloth/Meta-Llama-3.1-8B-Instruct",
            ModelClass.LARGE: "hugging-quants/Meta-Llama-3.1-70B-Instruct-AWQ-INT4",
        },
    ),
    ModelProviderName.DEEPSEEK: TextProviderDefaults(
        endpoint="https://api.deepseek.com",
        api_key_setting="DEEPSEEK_API_KEY",
        models={
            ModelClass.SMALL: "deepseek-chat",
            ModelClass.MEDIUM: "deepseek-chat",
            ModelClass.LARGE: "deepseek-chat",
        },
    ),
    ModelProviderName.OPENROUTER: TextProviderDefaults(
        endpoint="https://openrouter.ai/api/v1",
        api_key_setting="OPENROUTER_API_KEY",
        models={
            ModelClass.SMALL: "nousresearch/hermes-3-llama-3.1-405b",
            ModelClass.MEDIUM: "nousresearch/hermes-3-llama-3.1-405b",
            ModelClass.LARGE: "nousresearch/hermes-3-llama-3.1-405b",
        },
    ),
}

# Providers the Cloudflare AI gateway can front.
_CLOUDFLARE_GATEWAY_PROVIDERS = {
    ModelProviderName.OPENAI,
    ModelProviderName.DEEPSEEK,
    ModelProviderName.OPENROUTER,
}


def _provider_defaults(provider: ModelProviderName) -> TextProviderDefaults:
    defaults = TEXT_PROVIDER_DEFAULTS.get(provider)
    if defaults is None:
        raise ConfigurationError(f"Provider {provider.value!r} does not serve text models.")
    return defaults


def resolve_model_name(runtime: AgentRuntime, model_class: ModelClass) -> str:
    provider = runtime.model_provider
    tier = model_class.value.upper()
    configured = runtime.get_setting(f"{tier}_{provider.value.upper()}_MODEL") or runtime.get_setting(
        f"{tier}_MODEL"
    )
    if configured:
        return configured
    model = _provider_defaults(provider).models.get(model_class)
    if model is None:
        raise ConfigurationError(f"No {model_class.value} model configured for provider {provider.value!r}.")
    return model


def get_cloudflare_gateway_base_url(runtime: AgentRuntime, provider: ModelProviderName) -> str | None:
    enabled = runtime.get_setting("CLOUDFLARE_GW_ENABLED") == "true"
    account_id = runtime.get_setting("CLOUDFLARE_AI_ACCOUNT_ID")
    gateway_id = runtime.get_setting("CLOUDFLARE_AI_GATEWAY_ID")

    log.debug(
        "cloudflare_gateway_config",
        enabled=enabled,
        has_account_id=bool(account_id),
        has_gateway_id=bool(gateway_id),
        provider=provider.value,
    )
    if not enabled:
        return None
    if not account_id:
        log.warning("cloudflare_gateway_missing_account_id")
        return None
    if not gateway_id:
        log.warning("cloudflare_gateway_missing_gateway_id")
        return None

    base_url = f"{CLOUDFLARE_GATEWAY_BASE}/{account_id}/{gateway_id}/{provider.value.lower()}"
    log.info("cloudflare_gateway_enabled", provider=provider.value, base_url=base_url)
    return base_url


def resolve_endpoint(runtime: AgentRuntime) -> str:
    override = runtime.character.model_endpoint_override or runtime.get_setting("MODEL_ENDPOINT")
    if override:
        return override
    provider = runtime.model_provider
    if provider in _CLOUDFLARE_GATEWAY_PROVIDERS:
        gateway = get_cloudflare_gateway_base_url(runtime, provider)
        if gateway:
            return gateway
    return _provider_defaults(provider).endpoint


def resolve_api_key(runtime: AgentRuntime) -> str:
    api_key = runtime.token or runtime.get_setting(_provider_defaults(runtime.model_provider).api_key_setting)
    if not api_key:
        raise AuthenticationError(f"Missing API key for provider {runtime.model_provider.value!r}.")
    return api_key


def build_client(runtime: AgentRuntime) -> AsyncOpenAI:
    # Retries belong to the generators above this call, not to the SDK.
    return AsyncOpenAI(
        api_key=resolve_api_key(runtime),
        base_url=resolve_endpoint(runtime),
        http_client=runtime.get_http_client(),
        max_retries=0,
    )


def _tool_specs(tools: Mapping[str, Tool]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": name, "description": tool.description, "parameters": dict(tool.parameters)},
        }
        for name, tool in tools.items()
    ]


async def _run_tool(tools: Mapping[str, Tool], name: str, arguments: str | None) -> Any:
    tool = tools.get(name)
    if tool is None:
        raise UpstreamProtocolError(f"Model called unknown tool {name!r}.")
    try:
        args = json.loads(arguments or "{}")
    except json.JSONDecodeError as e:
        raise UpstreamProtocolError(f"Malformed arguments for tool {name!r}.") from e
    output = tool.execute(**args)
    if inspect.isawaitable(output):
        output = await output
    return output


async def _complete(
    client: AsyncOpenAI,
    *,
    model: str,
    system: str | None,
    request: GenerationRequest,
    on_step_finish: StepCallback | None,
) -> str:
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": request.context})

    tools = request.tools or {}
    text = ""
    for step in range(max(1, request.max_steps)):
        params: dict[str, Any] = {"model": model, "messages": messages}
        if request.stop:
            params["stop"] = list(request.stop)
        if tools:
            params["tools"] = _tool_specs(tools)

        completion = await client.chat.completions.create(**params)
        if not completion.choices:
            raise UpstreamProtocolError("Missing choices in upstream response.")
        choice = completion.choices[0]
        text = choice.message.content or ""
        tool_calls = list(choice.message.tool_calls or []) if tools else []

        tool_results: list[dict[str, Any]] = []
        if tool_calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": choice.message.content,
                    "tool_calls": [call.model_dump(exclude_none=True) for call in tool_calls],
                }
            )
            for call in tool_calls:
                output = await _run_tool(tools, call.function.name, call.function.arguments)
                tool_results.append({"tool_call_id": call.id, "name": call.function.name, "result": output})
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": output if isinstance(output, str) else json.dumps(output, default=str),
                    }
                )

        if on_step_finish is not None:
            maybe = on_step_finish(
                StepResult(
                    step=step,
                    text=text,
                    tool_calls=[{"id": c.id, "name": c.function.name, "arguments": c.function.arguments} for c in tool_calls],
                    tool_results=tool_results,
                    finish_reason=choice.finish_reason,
                )
            )
            if inspect.isawaitable(maybe):
                await maybe

        if not tool_calls:
            break
    return text


async def _generate_verified(adapter: VerifiableInferenceAdapter, request: GenerationRequest) -> str:
    log.info("verifiable_inference_start", adapter=type(adapter).__name__)
    try:
        result = await adapter.generate_text(
            request.context, request.model_class, request.verifiable_inference_options
        )
        if not await adapter.verify_proof(result):
            raise VerificationError("Failed to verify inference proof")
    except Exception as e:
        log.error("verifiable_inference_error", error=str(e))
        raise
    return result.text


async def generate_text(
    runtime: AgentRuntime,
    context: str,
    model_class: ModelClass,
    *,
    tools: Mapping[str, Tool] | None = None,
    on_step_finish: StepCallback | None = None,
    max_steps: int = 1,
    stop: Sequence[str] | None = None,
    verifiable_inference: bool | None = None,
    verifiable_inference_options: Mapping[str, Any] | None = None,
) -> str:
    """Issue one completion for `context` and return the reply text.

    An empty context returns "" without contacting the provider. Provider and
    network errors propagate unchanged.
    """
    log_function_call("generate_text", runtime)
    if not context:
        log.error("generate_text_empty_context")
        return ""

    if verifiable_inference is None:
        verifiable_inference = runtime.config.verifiable_inference_enabled
    request = GenerationRequest(
        context=context,
        model_class=model_class,
        tools=tools,
        stop=stop,
        max_steps=max_steps,
        verifiable_inference=verifiable_inference,
        verifiable_inference_options=verifiable_inference_options,
    )

    if request.verifiable_inference and runtime.verifiable_inference_adapter is not None:
        return await _generate_verified(runtime.verifiable_inference_adapter, request)

    provider = runtime.model_provider.value
    start = time.time()
    try:
        model = resolve_model_name(runtime, model_class)
        client = build_client(runtime)
        log.info("generate_text_start", provider=provider, model=model, model_class=model_class.value)
        with text_generation_latency_seconds.labels(provider=provider).time():
            text = await _complete(
                client,
                model=model,
                system=runtime.character.system or runtime.get_setting("SYSTEM_PROMPT") or runtime.config.system_prompt,
                request=request,
                on_step_finish=on_step_finish,
            )
    except Exception as e:
        text_generation_requests_total.labels(provider=provider, status="error").inc()
        log.exception("generate_text_error", provider=provider, error=str(e))
        raise

    text_generation_requests_total.labels(provider=provider, status="success").inc()
    log.debug("generate_text_ok", provider=provider, model=model, latency_seconds=time.time() - start)
    return text
