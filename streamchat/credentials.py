"""
API-key lookup for endpoint configurations.

The chat core only ever asks "what is the key for this configuration?" and
treats ``None`` as an authentication failure.  Two stores are provided: one
reading environment variables named by each endpoint, and an in-memory one
for embedding and tests.
"""

from __future__ import annotations

import os
from typing import Iterable, Protocol

from streamchat.config import EndpointConfig


class CredentialStore(Protocol):
    def get_api_key(self, config_id: str) -> str | None: ...


class EnvCredentialStore:
    """Resolve keys from the ``api_key_env`` variable of each endpoint."""

    def __init__(self, endpoints: Iterable[EndpointConfig]) -> None:
        self._env_names = {e.id: e.api_key_env for e in endpoints}

    def get_api_key(self, config_id: str) -> str | None:
        env_name = self._env_names.get(config_id)
        if not env_name:
            return None
        value = os.environ.get(env_name)
        return value or None


class MemoryCredentialStore:
    def __init__(self, keys: dict[str, str] | None = None) -> None:
        self._keys: dict[str, str] = dict(keys or {})

    def store_api_key(self, config_id: str, api_key: str) -> None:
        if not api_key:
            raise ValueError("API key must not be empty")
        self._keys[config_id] = api_key

    def get_api_key(self, config_id: str) -> str | None:
        return self._keys.get(config_id)

    def delete_api_key(self, config_id: str) -> bool:
        return self._keys.pop(config_id, None) is not None

    def api_key_exists(self, config_id: str) -> bool:
        return config_id in self._keys
