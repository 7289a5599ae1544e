from __future__ import annotations

import base64
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from openai import AsyncOpenAI

from .contracts import ModelProviderName
from .errors import AuthenticationError, ConfigurationError, UpstreamProtocolError
from .image_contracts import ImageGenerationRequest, ImageGenerationResult, to_data_url
from .logging import log_function_call
from .metrics import image_generation_requests_total
from .runtime import AgentRuntime

log = structlog.get_logger()

HEURIST_SUBMIT_URL = "http://sequencer.heurist.xyz/submit_job"
TOGETHER_IMAGES_URL = "https://api.together.xyz/v1/images/generations"
FAL_RUN_BASE = "https://fal.run"
VENICE_IMAGES_URL = "https://api.venice.ai/api/v1/image/generate"
NINETEEN_AI_IMAGES_URL = "https://api.nineteen.ai/v1/text-to-image"

OPENAI_IMAGE_SIZES = ("1024x1024", "1792x1024", "1024x1792")
DEFAULT_OPENAI_IMAGE_SIZE = "1024x1024"
DEFAULT_FAL_SEED = 6252023


@dataclass(frozen=True)
class ImageModelSettings:
    name: str
    steps: int | None = None


IMAGE_MODEL_SETTINGS: dict[ModelProviderName, ImageModelSettings] = {
    ModelProviderName.OPENAI: ImageModelSettings("dall-e-3"),
    ModelProviderName.TOGETHER: ImageModelSettings("black-forest-labs/FLUX.1-schnell", steps=4),
    ModelProviderName.LLAMACLOUD: ImageModelSettings("black-forest-labs/FLUX.1-schnell", steps=4),
    ModelProviderName.HEURIST: ImageModelSettings("FLUX.1-dev", steps=20),
    ModelProviderName.FAL: ImageModelSettings("fal-ai/flux-lora", steps=28),
    ModelProviderName.VENICE: ImageModelSettings("fluently-xl"),
    ModelProviderName.NINETEEN_AI: ImageModelSettings("dataautogpt3/ProteusV0.4-Lightning"),
    ModelProviderName.LIVEPEER: ImageModelSettings("ByteDance/SDXL-Lightning"),
}

_API_KEY_SETTINGS: dict[ModelProviderName, str] = {
    ModelProviderName.HEURIST: "HEURIST_API_KEY",
    ModelProviderName.TOGETHER: "TOGETHER_API_KEY",
    ModelProviderName.LLAMACLOUD: "TOGETHER_API_KEY",
    ModelProviderName.FAL: "FAL_API_KEY",
    ModelProviderName.OPENAI: "OPENAI_API_KEY",
    ModelProviderName.VENICE: "VENICE_API_KEY",
    ModelProviderName.NINETEEN_AI: "NINETEEN_AI_API_KEY",
    ModelProviderName.LIVEPEER: "LIVEPEER_GATEWAY_URL",
}

# Tried in order for providers with no key setting of their own.
_FALLBACK_KEY_SETTINGS = (
    "HEURIST_API_KEY",
    "NINETEEN_AI_API_KEY",
    "TOGETHER_API_KEY",
    "FAL_API_KEY",
    "OPENAI_API_KEY",
    "VENICE_API_KEY",
    "LIVEPEER_GATEWAY_URL",
)


@dataclass(frozen=True)
class ImageCall:
    request: ImageGenerationRequest
    runtime: AgentRuntime
    client: httpx.AsyncClient
    model: ImageModelSettings
    api_key: str | None


ImageHandler = Callable[[ImageCall], Awaitable[list[str]]]


def get_image_model_settings(runtime: AgentRuntime, provider: ModelProviderName) -> ImageModelSettings:
    # Providers without an image branch are served by the default (OpenAI) branch.
    settings = IMAGE_MODEL_SETTINGS.get(provider, IMAGE_MODEL_SETTINGS[ModelProviderName.OPENAI])
    override = runtime.get_setting("IMAGE_MODEL")
    if override:
        return ImageModelSettings(override, steps=settings.steps)
    return settings


def resolve_image_api_key(runtime: AgentRuntime) -> str | None:
    provider = runtime.image_model_provider
    if provider == runtime.model_provider and runtime.token:
        return runtime.token
    specific = _API_KEY_SETTINGS.get(provider)
    if specific:
        # A provider with its own key never borrows another vendor's credential.
        return runtime.get_setting(specific)
    for setting in _FALLBACK_KEY_SETTINGS:
        value = runtime.get_setting(setting)
        if value:
            return value
    return None


def _require_key(call: ImageCall, provider: str) -> str:
    if not call.api_key:
        raise AuthenticationError(f"Missing API key for {provider} image generation.")
    return call.api_key


async def _post_json(
    client: httpx.AsyncClient, url: str, *, payload: dict[str, Any], headers: dict[str, str], provider: str
) -> Any:
    resp = await client.post(url, json=payload, headers=headers)
    if resp.status_code >= 400:
        log.warning("image_upstream_error", provider=provider, status_code=resp.status_code, body=resp.text[:500])
        raise UpstreamProtocolError(f"{provider} image generation failed: {resp.status_code}")
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamProtocolError(f"Invalid JSON from {provider}.") from e


async def _fetch_as_data_url(client: httpx.AsyncClient, url: str, *, default_mime: str) -> str:
    resp = await client.get(url)
    if resp.status_code >= 400:
        raise UpstreamProtocolError(f"Failed to fetch image: {resp.status_code}")
    content_type = resp.headers.get("content-type", "").split(";", 1)[0].strip()
    mime = content_type if content_type.startswith("image/") else default_mime
    return to_data_url(mime, base64.b64encode(resp.content).decode("ascii"))


def _base64_images(result: Any, provider: str) -> list[str]:
    images = result.get("images") if isinstance(result, dict) else None
    if not isinstance(images, list):
        raise UpstreamProtocolError(f"Invalid response format from {provider}")
    out: list[str] = []
    for b64 in images:
        if not isinstance(b64, str) or not b64:
            raise UpstreamProtocolError(f"Empty base64 string in {provider} response")
        out.append(to_data_url("image/png", b64))
    return out


async def _generate_heurist(call: ImageCall) -> list[str]:
    req = call.request
    result = await _post_json(
        call.client,
        HEURIST_SUBMIT_URL,
        payload={
            "job_id": req.job_id or str(uuid.uuid4()),
            "model_input": {
                "SD": {
                    "prompt": req.prompt,
                    "neg_prompt": req.negative_prompt,
                    "num_iterations": req.num_iterations or call.model.steps or 20,
                    "width": req.width or 512,
                    "height": req.height or 512,
                    "guidance_scale": req.guidance_scale or 3,
                    "seed": req.seed if req.seed is not None else -1,
                }
            },
            "model_id": call.model.name,
            "deadline": 60,
            "priority": 1,
        },
        headers={"Authorization": f"Bearer {_require_key(call, 'Heurist')}"},
        provider="Heurist",
    )
    # The sequencer answers with the URL of the finished image.
    if not isinstance(result, str) or not result.startswith("http"):
        raise UpstreamProtocolError("Invalid response format from Heurist")
    return [await _fetch_as_data_url(call.client, result, default_mime="image/png")]


async def _generate_together(call: ImageCall) -> list[str]:
    req = call.request
    result = await _post_json(
        call.client,
        TOGETHER_IMAGES_URL,
        payload={
            "model": call.model.name,
            "prompt": req.prompt,
            "width": req.width,
            "height": req.height,
            "steps": call.model.steps or 4,
            "n": req.count,
        },
        headers={"Authorization": f"Bearer {_require_key(call, 'Together AI')}"},
        provider="Together AI",
    )
    data = result.get("data") if isinstance(result, dict) else None
    if not isinstance(data, list):
        raise UpstreamProtocolError("Invalid response format from Together AI")

    out: list[str] = []
    for image in data:
        if image.get("b64_json"):
            out.append(to_data_url("image/jpeg", image["b64_json"]))
        elif image.get("url"):
            out.append(await _fetch_as_data_url(call.client, image["url"], default_mime="image/jpeg"))
        else:
            log.error("together_image_missing_url", image=image)
            raise UpstreamProtocolError("Missing URL in Together AI response")
    if not out:
        raise UpstreamProtocolError("No images generated by Together AI")
    log.debug("together_images_generated", count=len(out))
    return out


async def _generate_fal(call: ImageCall) -> list[str]:
    req, runtime = call.request, call.runtime
    payload: dict[str, Any] = {
        "prompt": req.prompt,
        "image_size": "square",
        "num_inference_steps": call.model.steps or 50,
        "guidance_scale": req.guidance_scale or 3.5,
        "num_images": req.count,
        "enable_safety_checker": runtime.get_setting("FAL_AI_ENABLE_SAFETY_CHECKER") == "true",
        "safety_tolerance": int(runtime.get_setting("FAL_AI_SAFETY_TOLERANCE") or "2"),
        "output_format": "png",
        "seed": req.seed if req.seed is not None else DEFAULT_FAL_SEED,
    }
    lora_path = runtime.get_setting("FAL_AI_LORA_PATH")
    if lora_path:
        payload["loras"] = [{"path": lora_path, "scale": 1}]

    result = await _post_json(
        call.client,
        f"{FAL_RUN_BASE}/{call.model.name}",
        payload=payload,
        headers={"Authorization": f"Key {_require_key(call, 'Fal')}"},
        provider="Fal",
    )
    images = result.get("images") if isinstance(result, dict) else None
    if not isinstance(images, list) or not images:
        raise UpstreamProtocolError("Invalid response format from Fal")
    return [
        await _fetch_as_data_url(call.client, image["url"], default_mime=image.get("content_type") or "image/png")
        for image in images
    ]


async def _generate_venice(call: ImageCall) -> list[str]:
    req = call.request
    result = await _post_json(
        call.client,
        VENICE_IMAGES_URL,
        payload={
            "model": call.model.name,
            "prompt": req.prompt,
            "cfg_scale": req.guidance_scale or req.cfg_scale,
            "negative_prompt": req.negative_prompt,
            "width": req.width,
            "height": req.height,
            "steps": req.num_iterations,
            "safe_mode": req.safe_mode,
            "seed": req.seed,
            "style_preset": req.style_preset,
            "hide_watermark": req.hide_watermark,
        },
        headers={"Authorization": f"Bearer {_require_key(call, 'Venice AI')}"},
        provider="Venice AI",
    )
    return _base64_images(result, "Venice AI")


async def _generate_nineteen_ai(call: ImageCall) -> list[str]:
    req = call.request
    result = await _post_json(
        call.client,
        NINETEEN_AI_IMAGES_URL,
        payload={
            "model": call.model.name,
            "prompt": req.prompt,
            "negative_prompt": req.negative_prompt,
            "width": req.width,
            "height": req.height,
            "steps": req.num_iterations,
            "cfg_scale": req.guidance_scale or req.cfg_scale or 3,
        },
        headers={"Authorization": f"Bearer {_require_key(call, 'Nineteen AI')}"},
        provider="Nineteen AI",
    )
    return _base64_images(result, "Nineteen AI")


async def _generate_livepeer(call: ImageCall) -> list[str]:
    if not call.api_key:
        raise ConfigurationError("Livepeer Gateway is not defined")
    gateway = httpx.URL(call.api_key)
    if gateway.scheme not in ("http", "https"):
        raise ConfigurationError("Invalid Livepeer Gateway URL protocol")
    base = call.api_key.rstrip("/")

    headers = {}
    token = call.runtime.get_setting("LIVEPEER_API_KEY")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    req = call.request
    result = await _post_json(
        call.client,
        f"{base}/text-to-image",
        payload={
            "model_id": req.model_id or call.model.name,
            "prompt": req.prompt,
            "width": req.width or 1024,
            "height": req.height or 1024,
        },
        headers=headers,
        provider="Livepeer",
    )
    images = result.get("images") if isinstance(result, dict) else None
    if not images:
        raise UpstreamProtocolError("No images generated")

    out: list[str] = []
    for image in images:
        url = image.get("url", "")
        log.debug("livepeer_image_url", url=url)
        absolute = url if url.startswith("http") else f"{base}/{url.lstrip('/')}"
        out.append(await _fetch_as_data_url(call.client, absolute, default_mime="image/jpeg"))
    return out


def coerce_openai_size(width: int, height: int) -> str:
    size = f"{width}x{height}"
    return size if size in OPENAI_IMAGE_SIZES else DEFAULT_OPENAI_IMAGE_SIZE


async def _generate_openai(call: ImageCall) -> list[str]:
    req, runtime = call.request, call.runtime
    size = coerce_openai_size(req.width, req.height)
    api_key = runtime.get_setting("OPENAI_API_KEY")
    if runtime.image_model_provider == ModelProviderName.OPENAI:
        api_key = call.api_key or api_key
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY is not set")

    client = AsyncOpenAI(api_key=api_key, http_client=call.client, max_retries=0)
    response = await client.images.generate(
        model=call.model.name,
        prompt=req.prompt,
        size=size,  # type: ignore[arg-type]
        n=req.count,
        response_format="b64_json",
    )
    return [to_data_url("image/png", image.b64_json or "") for image in response.data or []]


# Providers missing from this table use the default branch, `_generate_openai`.
IMAGE_HANDLERS: dict[ModelProviderName, ImageHandler] = {
    ModelProviderName.HEURIST: _generate_heurist,
    ModelProviderName.TOGETHER: _generate_together,
    ModelProviderName.LLAMACLOUD: _generate_together,
    ModelProviderName.FAL: _generate_fal,
    ModelProviderName.VENICE: _generate_venice,
    ModelProviderName.NINETEEN_AI: _generate_nineteen_ai,
    ModelProviderName.LIVEPEER: _generate_livepeer,
    ModelProviderName.OPENAI: _generate_openai,
}


async def generate_image(request: ImageGenerationRequest, runtime: AgentRuntime) -> ImageGenerationResult:
    """Generate images with the runtime's image provider.

    Never raises: every failure comes back as `success=False` with the error
    message. Successful results hold base64 data URLs in provider order.
    """
    log_function_call("generate_image", runtime)
    provider = runtime.image_model_provider
    handler = IMAGE_HANDLERS.get(provider, _generate_openai)

    try:
        model = get_image_model_settings(runtime, provider)
        log.info("generate_image_start", image_model_provider=provider.value, model=model.name)
        call = ImageCall(
            request=request,
            runtime=runtime,
            client=runtime.get_http_client(),
            model=model,
            api_key=resolve_image_api_key(runtime),
        )
        data = await handler(call)
        result = ImageGenerationResult.ok(data)
    except Exception as e:
        image_generation_requests_total.labels(provider=provider.value, status="error").inc()
        log.exception("generate_image_error", image_model_provider=provider.value, error=str(e))
        return ImageGenerationResult.failed(e)

    image_generation_requests_total.labels(provider=provider.value, status="success").inc()
    log.debug("generate_image_ok", image_model_provider=provider.value, count=len(data))
    return result
