from __future__ import annotations


class GenerationError(Exception):
    """Base error for model-invocation failures."""


class ConfigurationError(GenerationError):
    pass


class AuthenticationError(GenerationError):
    pass


class UpstreamProtocolError(GenerationError):
    """Unexpected upstream response shape / contract mismatch."""


class VerificationError(GenerationError):
    """A verifiable-inference proof did not check out."""


class ServiceNotFoundError(GenerationError):
    pass


class InvalidKeyError(GenerationError):
    pass


class RetryExhaustedError(GenerationError):
    def __init__(self, name: str, attempts: int, last_error: BaseException | None = None):
        super().__init__(f"{name} gave up after {attempts} attempt(s)")
        self.name = name
        self.attempts = attempts
        self.last_error = last_error
