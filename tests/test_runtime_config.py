import pytest
from cryptography.fernet import Fernet

from agent_generation.config import GenerationConfig
from agent_generation.runtime import AgentRuntime, Character
from agent_generation.secrets_store import EncryptedSecretsStore


def test_secrets_store_roundtrip(tmp_path):
    key = Fernet.generate_key().decode("utf-8")
    path = tmp_path / "secrets.enc"
    store = EncryptedSecretsStore(str(path), key)
    assert store.get("OPENAI_API_KEY") is None

    store.save({"OPENAI_API_KEY": "sk-stored"})
    assert b"sk-stored" not in path.read_bytes()

    reopened = EncryptedSecretsStore(str(path), key)
    assert reopened.get("OPENAI_API_KEY") == "sk-stored"


def test_secrets_store_wrong_key(tmp_path):
    path = tmp_path / "secrets.enc"
    EncryptedSecretsStore(str(path), Fernet.generate_key().decode()).save({"A": "b"})
    with pytest.raises(ValueError):
        EncryptedSecretsStore(str(path), Fernet.generate_key().decode()).load()


def test_setting_lookup_order(tmp_path, monkeypatch):
    store = EncryptedSecretsStore(str(tmp_path / "s.enc"), Fernet.generate_key().decode())
    store.save({"A": "store", "B": "store", "C": "store"})
    monkeypatch.setenv("A", "env")
    monkeypatch.setenv("D", "env")

    runtime = AgentRuntime(
        settings={"A": "settings", "EMPTY": ""},
        character=Character(secrets={"A": "character", "B": "character"}),
        secrets_store=store,
    )
    assert runtime.get_setting("A") == "settings"
    assert runtime.get_setting("B") == "character"
    assert runtime.get_setting("C") == "store"
    assert runtime.get_setting("D") == "env"
    assert runtime.get_setting("EMPTY") is None


def test_environment_can_be_ignored(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    assert AgentRuntime(read_environment=False).get_setting("OPENAI_API_KEY") is None


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("RETRY_INITIAL_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("VERIFIABLE_INFERENCE_ENABLED", "TRUE")
    monkeypatch.delenv("RETRY_MAX_TOTAL_DELAY_SECONDS", raising=False)

    cfg = GenerationConfig()
    policy = cfg.retry_policy()

    assert cfg.verifiable_inference_enabled is True
    assert policy.initial_delay_seconds == 0.5
    assert policy.max_attempts == 4
    assert policy.max_total_delay_seconds is None


def test_from_config_builds_secrets_store(tmp_path):
    key = Fernet.generate_key().decode()
    path = tmp_path / "s.enc"
    EncryptedSecretsStore(str(path), key).save({"VENICE_API_KEY": "vk"})

    cfg = GenerationConfig(secrets_path=str(path), fernet_key=key)
    runtime = AgentRuntime.from_config(cfg, read_environment=False)
    assert runtime.get_setting("VENICE_API_KEY") == "vk"


def test_from_config_requires_fernet_key(tmp_path):
    cfg = GenerationConfig(secrets_path=str(tmp_path / "s.enc"), fernet_key=None)
    with pytest.raises(ValueError):
        AgentRuntime.from_config(cfg)


def test_secret_values_collects_credentials():
    runtime = AgentRuntime(
        token="tok",
        settings={"OPENAI_API_KEY": "sk-1", "SMALL_MODEL": "gpt-4o-mini"},
        character=Character(secrets={"WALLET_PRIVATE_KEY": "pk"}),
        read_environment=False,
    )
    assert sorted(runtime.secret_values()) == ["pk", "sk-1", "tok"]
