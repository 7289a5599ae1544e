from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

import base58
import structlog
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .errors import ConfigurationError, InvalidKeyError
from .runtime import AgentRuntime

log = structlog.get_logger()

SECRET_KEY_LENGTH = 64
PUBLIC_KEY_LENGTH = 32


@dataclass(frozen=True)
class Keypair:
    """ed25519 keypair in the 64-byte `seed || public key` layout Solana wallets use."""

    secret_key: bytes
    public_key: bytes

    @classmethod
    def from_secret_key(cls, secret_key: bytes) -> "Keypair":
        if len(secret_key) != SECRET_KEY_LENGTH:
            raise ValueError(f"secret key must be {SECRET_KEY_LENGTH} bytes, got {len(secret_key)}")
        seed, public_key = secret_key[:32], secret_key[32:]
        derived = Ed25519PrivateKey.from_private_bytes(seed).public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        if derived != public_key:
            raise ValueError("public key half does not match the seed")
        return cls(secret_key=secret_key, public_key=public_key)

    def sign(self, message: bytes) -> bytes:
        return Ed25519PrivateKey.from_private_bytes(self.secret_key[:32]).sign(message)

    @property
    def public_key_base58(self) -> str:
        return base58.b58encode(self.public_key).decode("ascii")


@dataclass(frozen=True)
class WalletKey:
    keypair: Keypair | None = None
    public_key: bytes | None = None

    @property
    def public_key_base58(self) -> str | None:
        key = self.keypair.public_key if self.keypair is not None else self.public_key
        return base58.b58encode(key).decode("ascii") if key is not None else None


def _keypair_from_base58(value: str) -> Keypair:
    return Keypair.from_secret_key(base58.b58decode(value))


def _keypair_from_base64(value: str) -> Keypair:
    return Keypair.from_secret_key(base64.b64decode(value, validate=True))


def get_wallet_key(runtime: AgentRuntime, require_private_key: bool = True) -> WalletKey:
    """Load the wallet keypair (or only its public key) from settings.

    Private keys are tried as base58 first, then base64.
    """
    if require_private_key:
        private_key = runtime.get_setting("SOLANA_PRIVATE_KEY") or runtime.get_setting("WALLET_PRIVATE_KEY")
        if not private_key:
            raise ConfigurationError("Private key not found in settings")
        try:
            return WalletKey(keypair=_keypair_from_base58(private_key))
        except ValueError as e:
            log.info("wallet_key_base58_decode_failed", error=str(e))
        try:
            return WalletKey(keypair=_keypair_from_base64(private_key))
        except (ValueError, binascii.Error) as e:
            log.error("wallet_key_decode_failed", error=str(e))
            raise InvalidKeyError("Invalid private key format") from e

    public_key = runtime.get_setting("SOLANA_PUBLIC_KEY") or runtime.get_setting("WALLET_PUBLIC_KEY")
    if not public_key:
        raise ConfigurationError(
            "Solana public key not found in settings, but the wallet was requested; set SOLANA_PUBLIC_KEY"
        )
    try:
        raw = base58.b58decode(public_key)
    except ValueError as e:
        raise InvalidKeyError("Invalid public key format") from e
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise InvalidKeyError("Invalid public key format")
    return WalletKey(public_key=raw)
