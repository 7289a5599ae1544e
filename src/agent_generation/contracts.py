from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from .tiering import ModelClass

ShouldRespond = Literal["RESPOND", "IGNORE", "STOP"]


class ModelProviderName(str, Enum):
    OPENAI = "openai"
    TOGETHER = "together"
    LLAMACLOUD = "llama_cloud"
    HEURIST = "heurist"
    FAL = "fal"
    VENICE = "venice"
    NINETEEN_AI = "nineteen_ai"
    LIVEPEER = "livepeer"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"


class ServiceType(str, Enum):
    IMAGE_DESCRIPTION = "image_description"


@dataclass(frozen=True)
class Tool:
    """A function the model may call during multi-step generation.

    `parameters` is a JSON schema object; `execute` receives the decoded
    arguments and may be sync or async.
    """

    description: str
    parameters: Mapping[str, Any]
    execute: Callable[..., Any | Awaitable[Any]]


@dataclass(frozen=True)
class StepResult:
    step: int
    text: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    tool_results: list[dict[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None


@dataclass(frozen=True)
class GenerationRequest:
    context: str
    model_class: ModelClass
    tools: Mapping[str, Tool] | None = None
    stop: Sequence[str] | None = None
    max_steps: int = 1
    verifiable_inference: bool = False
    verifiable_inference_options: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class VerifiableInferenceResult:
    text: str
    proof: Any
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class ActionResponse:
    like: bool = False
    retweet: bool = False
    quote: bool = False
    reply: bool = False


@dataclass(frozen=True)
class Caption:
    title: str
    description: str


@dataclass(frozen=True)
class ObjectGenerationResult:
    object: Any
    raw_text: str
