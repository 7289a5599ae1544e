from dataclasses import dataclass

import httpx
import pytest

from agent_generation.caption import generate_caption
from agent_generation.contracts import Caption, ServiceType
from agent_generation.errors import ServiceNotFoundError
from agent_generation.runtime import AgentRuntime


@dataclass
class FakeDescription:
    title: str
    description: str


class FakeDescriber:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.urls = []

    async def describe_image(self, image_url):
        self.urls.append(image_url)
        if self.error is not None:
            raise self.error
        return self.result


def _runtime() -> AgentRuntime:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("caption must not touch the network")

    return AgentRuntime(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), read_environment=False)


@pytest.mark.asyncio
async def test_missing_service_raises():
    with pytest.raises(ServiceNotFoundError, match="Image description service not found"):
        await generate_caption("https://example.com/cat.png", _runtime())


@pytest.mark.asyncio
async def test_caption_is_trimmed():
    runtime = _runtime()
    describer = FakeDescriber(FakeDescription(title="  A cat \n", description="\tSleeping on a mat. "))
    runtime.register_service(ServiceType.IMAGE_DESCRIPTION, describer)

    caption = await generate_caption("https://example.com/cat.png", runtime)

    assert caption == Caption(title="A cat", description="Sleeping on a mat.")
    assert describer.urls == ["https://example.com/cat.png"]


@pytest.mark.asyncio
async def test_service_errors_propagate():
    runtime = _runtime()
    runtime.register_service(ServiceType.IMAGE_DESCRIPTION, FakeDescriber(error=RuntimeError("vision down")))
    with pytest.raises(RuntimeError, match="vision down"):
        await generate_caption("https://example.com/cat.png", runtime)
