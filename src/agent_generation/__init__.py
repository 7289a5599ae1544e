from .caption import generate_caption
from .config import GenerationConfig
from .contracts import ActionResponse, Caption, ModelProviderName, ServiceType, Tool
from .generators import (
    generate_message_response,
    generate_object,
    generate_object_array,
    generate_object_deprecated,
    generate_should_respond,
    generate_text_array,
    generate_true_or_false,
    generate_tweet_actions,
)
from .image_contracts import ImageGenerationRequest, ImageGenerationResult
from .images import generate_image
from .retry import RetryPolicy
from .runtime import AgentRuntime, Character
from .text import generate_text
from .tiering import ModelClass
from .wallet import get_wallet_key

__all__ = [
    "ActionResponse",
    "AgentRuntime",
    "Caption",
    "Character",
    "GenerationConfig",
    "ImageGenerationRequest",
    "ImageGenerationResult",
    "ModelClass",
    "ModelProviderName",
    "RetryPolicy",
    "ServiceType",
    "Tool",
    "generate_caption",
    "generate_image",
    "generate_message_response",
    "generate_object",
    "generate_object_array",
    "generate_object_deprecated",
    "generate_should_respond",
    "generate_text",
    "generate_text_array",
    "generate_true_or_false",
    "generate_tweet_actions",
    "get_wallet_key",
]
