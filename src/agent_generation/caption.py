from __future__ import annotations

import structlog

from .contracts import Caption, ServiceType
from .errors import ServiceNotFoundError
from .logging import log_function_call
from .runtime import AgentRuntime, ImageDescriptionService

log = structlog.get_logger()


async def generate_caption(image_url: str, runtime: AgentRuntime) -> Caption:
    log_function_call("generate_caption", runtime)
    service: ImageDescriptionService | None = runtime.get_service(ServiceType.IMAGE_DESCRIPTION)
    if service is None:
        raise ServiceNotFoundError("Image description service not found")

    try:
        resp = await service.describe_image(image_url)
    except Exception as e:
        log.error("generate_caption_error", image_url=image_url, error=str(e))
        raise
    return Caption(title=resp.title.strip(), description=resp.description.strip())
