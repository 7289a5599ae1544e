from __future__ import annotations

import json
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken


class EncryptedSecretsStore:
    """
    Fernet-encrypted map of setting name -> value.

    Used as one of the lookup layers of `AgentRuntime.get_setting`, so API keys
    and wallet keys can live encrypted at rest instead of in the environment.
    The file is decrypted lazily, once.
    """

    def __init__(self, path: str, fernet_key: str):
        self.path = Path(path)
        self._fernet = Fernet(fernet_key.encode("utf-8"))
        self._cache: dict[str, str] | None = None

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, secrets: dict[str, str]) -> None:
        raw = json.dumps(secrets).encode("utf-8")
        self.path.write_bytes(self._fernet.encrypt(raw))
        self._cache = dict(secrets)

    def load(self) -> dict[str, str]:
        if self._cache is not None:
            return self._cache
        try:
            raw = self._fernet.decrypt(self.path.read_bytes())
        except InvalidToken as e:
            raise ValueError("Failed to decrypt secrets (wrong key or corrupted file).") from e
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict) or not all(isinstance(v, str) for v in payload.values()):
            raise ValueError("Secrets payload must be a JSON object of strings.")
        self._cache = {str(k): v for k, v in payload.items()}
        return self._cache

    def get(self, key: str) -> str | None:
        if not self.exists():
            return None
        return self.load().get(key)
