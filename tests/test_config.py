"""Tests for the layered configuration loader."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import yaml

from streamchat.config import (
    MAX_ENDPOINTS,
    EndpointConfig,
    NetworkConfig,
    StreamChatConfig,
    load_config,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "STREAMCHAT_ACTIVE_ENDPOINT",
        "STREAMCHAT_READ_TIMEOUT",
        "STREAMCHAT_MAX_IMAGES",
        "STREAMCHAT_LOG_LEVEL",
        "STREAMCHAT_IMAGE_DETAIL",
    ):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "streamchat.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:
    def test_no_file(self):
        cfg = load_config(None)
        endpoint = cfg.active_endpoint()
        assert endpoint.id == "openai"
        assert endpoint.base_url == "https://api.openai.com/v1"
        assert endpoint.model_id == "gpt-3.5-turbo"
        assert cfg.images.max_image_count == 4
        assert cfg.logging.level == "WARNING"

    def test_missing_file_ignored(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.active_endpoint().id == "openai"

    def test_timeout_policy(self):
        timeout = NetworkConfig().to_timeout()
        assert timeout == httpx.Timeout(connect=10.0, read=60.0, write=30.0, pool=10.0)


class TestFile:
    def test_endpoints_from_yaml(self, tmp_path):
        path = _write(tmp_path, {
            "endpoints": [
                {"id": "local", "name": "Local", "base_url": "http://localhost:8080/v1",
                 "model_id": "llama3", "api_key_env": "LOCAL_KEY"},
                {"name": "Azure Proxy", "base_url": "https://proxy.test/external/chat",
                 "model_id": "gpt-4o", "system_prompts": ["Be brief"], "is_default": True},
            ],
            "network": {"read_timeout_seconds": 120},
            "unknown_section": {"ignored": True},
        })
        cfg = load_config(path)

        assert [e.id for e in cfg.endpoints] == ["local", "azure-proxy"]
        assert cfg.active_endpoint().id == "azure-proxy"
        assert cfg.endpoint("azure-proxy").system_prompts == ["Be brief"]
        assert cfg.network.read_timeout_seconds == 120

    def test_active_overrides_default(self, tmp_path):
        path = _write(tmp_path, {
            "active": "b",
            "endpoints": [{"id": "a", "is_default": True}, {"id": "b"}],
        })
        assert load_config(path).active_endpoint().id == "b"

    def test_first_endpoint_when_none_default(self, tmp_path):
        path = _write(tmp_path, {"endpoints": [{"id": "a"}, {"id": "b"}]})
        assert load_config(path).active_endpoint().id == "a"

    def test_unknown_active(self, tmp_path):
        path = _write(tmp_path, {"active": "ghost", "endpoints": [{"id": "a"}]})
        with pytest.raises(KeyError, match="ghost"):
            load_config(path).active_endpoint()

    def test_duplicate_ids(self, tmp_path):
        path = _write(tmp_path, {"endpoints": [{"id": "a"}, {"id": "a"}]})
        with pytest.raises(ValueError, match="Duplicate"):
            load_config(path)

    def test_too_many_endpoints(self, tmp_path):
        path = _write(tmp_path, {
            "endpoints": [{"id": f"e{i}"} for i in range(MAX_ENDPOINTS + 1)],
        })
        with pytest.raises(ValueError, match="Maximum"):
            load_config(path)

    def test_empty_endpoint_list(self, tmp_path):
        path = _write(tmp_path, {"endpoints": []})
        with pytest.raises(KeyError):
            load_config(path).active_endpoint()

    def test_profile_overlay(self, tmp_path):
        path = _write(tmp_path, {
            "endpoints": [{"id": "a"}, {"id": "b"}],
            "profiles": {"work": {"active": "b", "logging": {"level": "DEBUG"}}},
        })
        cfg = load_config(path, profile="work")
        assert cfg.active_endpoint().id == "b"
        assert cfg.logging.level == "DEBUG"


class TestPrecedence:
    def test_env_over_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"network": {"read_timeout_seconds": 90}})
        monkeypatch.setenv("STREAMCHAT_READ_TIMEOUT", "15")
        monkeypatch.setenv("STREAMCHAT_MAX_IMAGES", "2")
        cfg = load_config(path)
        assert cfg.network.read_timeout_seconds == 15.0
        assert cfg.images.max_image_count == 2

    def test_cli_over_env(self, monkeypatch):
        monkeypatch.setenv("STREAMCHAT_LOG_LEVEL", "INFO")
        cfg = load_config(None, cli_overrides={"logging.level": "DEBUG"})
        assert cfg.logging.level == "DEBUG"

    def test_session_override(self):
        cfg = load_config(None)
        cfg.set_override("network.read_timeout_seconds", 5.0)
        assert cfg.network.read_timeout_seconds == 5.0
        assert cfg.get_override("network.read_timeout_seconds") == 5.0
        assert cfg.get_override("images.detail") is None


def test_to_dict_hides_overrides():
    cfg = StreamChatConfig(endpoints=[EndpointConfig(id="x")])
    cfg.set_override("active", "x")
    data = cfg.to_dict()
    assert "_overrides" not in data
    assert data["endpoints"][0]["id"] == "x"


class TestValidation:
    def test_bad_image_detail_from_env(self, monkeypatch):
        monkeypatch.setenv("STREAMCHAT_IMAGE_DETAIL", "ultra")
        with pytest.raises(ValueError, match="images.detail"):
            load_config(None)

    def test_bad_image_detail_from_file(self, tmp_path):
        path = _write(tmp_path, {"images": {"detail": "medium"}})
        with pytest.raises(ValueError, match="images.detail"):
            load_config(path)

    def test_bad_log_level(self, monkeypatch):
        monkeypatch.setenv("STREAMCHAT_LOG_LEVEL", "LOUD")
        with pytest.raises(ValueError, match="logging.level"):
            load_config(None)

    def test_log_level_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("STREAMCHAT_LOG_LEVEL", "debug")
        assert load_config(None).logging.level == "debug"

    def test_negative_image_count(self, tmp_path):
        path = _write(tmp_path, {"images": {"max_image_count": -1}})
        with pytest.raises(ValueError, match="max_image_count"):
            load_config(path)
