from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, MutableMapping
from typing import TYPE_CHECKING, Any, TypeAlias, cast

import structlog

if TYPE_CHECKING:
    from .runtime import AgentRuntime


_SENSITIVE_KEYS = {
    "authorization",
    "x-api-key",
    "api_key",
    "apikey",
    "token",
    "secret",
    "secret_key",
    "private_key",
    "password",
    "fernet_key",
    "credentials",
}

# Substrings that mark a key as sensitive regardless of prefix (OPENAI_API_KEY, wallet_private_key, ...).
# Token keys match on suffix only (access_token, not max_tokens).
_SENSITIVE_FRAGMENTS = ("api_key", "secret", "password", "private_key")

_BEARER_RE = re.compile(r"(?i)\b(Bearer|Key)\s+([A-Za-z0-9._:-]{6,})")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]

log = structlog.get_logger()


def _is_sensitive_key(key: str) -> bool:
    key = key.lower()
    return (
        key in _SENSITIVE_KEYS
        or key.endswith("token")
        or any(fragment in key for fragment in _SENSITIVE_FRAGMENTS)
    )


def _redact_str(value: str, *, secrets: list[str]) -> str:
    out = value
    for secret in secrets:
        if secret and secret in out:
            out = out.replace(secret, "[REDACTED]")
    return _BEARER_RE.sub(r"\1 [REDACTED]", out)


def _redact_obj(obj: Any, *, secrets: list[str]) -> Any:
    if obj is None or isinstance(obj, (int, float, bool)):
        return obj
    if isinstance(obj, str):
        return _redact_str(obj, secrets=secrets)
    if isinstance(obj, list):
        return [_redact_obj(v, secrets=secrets) for v in obj]
    if isinstance(obj, tuple):
        return tuple(_redact_obj(v, secrets=secrets) for v in obj)
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if _is_sensitive_key(str(k)) else _redact_obj(v, secrets=secrets)
            for k, v in obj.items()
        }
    return obj


def make_redaction_processor(*, secrets: list[str]) -> Processor:
    secrets_norm = [s for s in secrets if isinstance(s, str) and s]

    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], _redact_obj(event_dict, secrets=secrets_norm))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        make_redaction_processor(secrets=secrets or []),
    ]

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        cache_logger_on_first_use=True,
    )


def log_function_call(function_name: str, runtime: AgentRuntime) -> None:
    log.info(
        "function_call",
        function_name=function_name,
        model_provider=runtime.model_provider.value,
        endpoint=runtime.character.model_endpoint_override,
    )
