"""Tests for API-key stores."""

from __future__ import annotations

import pytest

from streamchat.config import EndpointConfig
from streamchat.credentials import EnvCredentialStore, MemoryCredentialStore


class TestEnvCredentialStore:
    def test_reads_named_variable(self, monkeypatch):
        monkeypatch.setenv("LOCAL_KEY", "sk-local")
        store = EnvCredentialStore([EndpointConfig(id="local", api_key_env="LOCAL_KEY")])
        assert store.get_api_key("local") == "sk-local"

    def test_unset_variable(self, monkeypatch):
        monkeypatch.delenv("LOCAL_KEY", raising=False)
        store = EnvCredentialStore([EndpointConfig(id="local", api_key_env="LOCAL_KEY")])
        assert store.get_api_key("local") is None

    def test_empty_variable(self, monkeypatch):
        monkeypatch.setenv("LOCAL_KEY", "")
        store = EnvCredentialStore([EndpointConfig(id="local", api_key_env="LOCAL_KEY")])
        assert store.get_api_key("local") is None

    def test_unknown_endpoint(self):
        assert EnvCredentialStore([]).get_api_key("ghost") is None


class TestMemoryCredentialStore:
    def test_lifecycle(self):
        store = MemoryCredentialStore()
        assert not store.api_key_exists("a")

        store.store_api_key("a", "sk-1")
        assert store.api_key_exists("a")
        assert store.get_api_key("a") == "sk-1"

        store.store_api_key("a", "sk-2")
        assert store.get_api_key("a") == "sk-2"

        assert store.delete_api_key("a")
        assert store.get_api_key("a") is None
        assert not store.delete_api_key("a")

    def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            MemoryCredentialStore().store_api_key("a", "")
