from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .config import GenerationConfig
from .contracts import ModelProviderName, ServiceType, VerifiableInferenceResult
from .logging import configure_logging
from .secrets_store import EncryptedSecretsStore
from .tiering import ModelClass


@dataclass
class Character:
    name: str = "agent"
    system: str | None = None
    model_endpoint_override: str | None = None
    secrets: dict[str, str] = field(default_factory=dict)


class VerifiableInferenceAdapter(Protocol):
    async def generate_text(
        self,
        context: str,
        model_class: ModelClass,
        options: Mapping[str, Any] | None = None,
    ) -> VerifiableInferenceResult: ...

    async def verify_proof(self, result: VerifiableInferenceResult) -> bool: ...


class ImageDescription(Protocol):
    title: str
    description: str


class ImageDescriptionService(Protocol):
    async def describe_image(self, image_url: str) -> ImageDescription: ...


class AgentRuntime:
    """
    The slice of an agent runtime the generation layer needs.

    Settings resolve through, in order: explicit `settings`, the character's
    secrets, the encrypted secrets store, then the process environment.
    Empty values count as unset.
    """

    def __init__(
        self,
        *,
        model_provider: ModelProviderName = ModelProviderName.OPENAI,
        image_model_provider: ModelProviderName | None = None,
        token: str | None = None,
        character: Character | None = None,
        settings: Mapping[str, str] | None = None,
        config: GenerationConfig | None = None,
        secrets_store: EncryptedSecretsStore | None = None,
        verifiable_inference_adapter: VerifiableInferenceAdapter | None = None,
        http_client: httpx.AsyncClient | None = None,
        read_environment: bool = True,
    ):
        self.model_provider = model_provider
        self.image_model_provider = image_model_provider or model_provider
        self.token = token
        self.character = character or Character()
        self.config = config or GenerationConfig()
        self.verifiable_inference_adapter = verifiable_inference_adapter
        self.http_client = http_client
        self._settings = dict(settings or {})
        self._secrets_store = secrets_store
        self._read_environment = read_environment
        self._services: dict[ServiceType, Any] = {}

    @classmethod
    def from_config(cls, cfg: GenerationConfig, *, setup_logging: bool = False, **kwargs: Any) -> "AgentRuntime":
        if cfg.secrets_path and "secrets_store" not in kwargs:
            kwargs["secrets_store"] = EncryptedSecretsStore(cfg.secrets_path, cfg.require_fernet_key())
        runtime = cls(config=cfg, **kwargs)
        if setup_logging:
            runtime.configure_logging()
        return runtime

    def configure_logging(self) -> None:
        """Install the structlog pipeline from config, redacting this runtime's credentials."""
        configure_logging(self.config.log_level, self.config.log_format, secrets=self.secret_values())

    def get_setting(self, key: str) -> str | None:
        for value in (
            self._settings.get(key),
            self.character.secrets.get(key),
            self._secrets_store.get(key) if self._secrets_store is not None else None,
            os.getenv(key) if self._read_environment else None,
        ):
            if value:
                return value
        return None

    def secret_values(self) -> list[str]:
        """Every configured credential, for the log redaction processor."""
        values = [self.token] if self.token else []
        stored = self._secrets_store.load() if self._secrets_store is not None and self._secrets_store.exists() else {}
        for key, value in {**stored, **self.character.secrets, **self._settings}.items():
            upper = key.upper()
            if value and ("KEY" in upper or "TOKEN" in upper or "SECRET" in upper):
                values.append(value)
        return values

    def register_service(self, service_type: ServiceType, service: Any) -> None:
        self._services[service_type] = service

    def get_service(self, service_type: ServiceType) -> Any | None:
        return self._services.get(service_type)

    def get_http_client(self) -> httpx.AsyncClient:
        """Shared client, created on first use with the configured upstream timeout."""
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=self.config.upstream_timeout_seconds)
        return self.http_client

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
