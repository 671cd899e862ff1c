"""
Endpoint, network, image and logging settings.

Sources are layered from lowest to highest precedence: built-in defaults,
the YAML config file (and an optional profile from it), STREAMCHAT_* env
vars, CLI flags, then per-session overrides.
"""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import httpx
import yaml

from streamchat.llm.types import ImageDetail

MAX_ENDPOINTS = 50
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class EndpointConfig:
    id: str = "openai"
    name: str = "OpenAI"
    base_url: str = "https://api.openai.com/v1"
    model_id: str = "gpt-3.5-turbo"
    api_key_env: str = "OPENAI_API_KEY"
    system_prompts: list[str] = field(default_factory=list)
    is_default: bool = False


@dataclass
class NetworkConfig:
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 60.0
    write_timeout_seconds: float = 30.0
    pool_timeout_seconds: float = 10.0

    def to_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout_seconds,
            read=self.read_timeout_seconds,
            write=self.write_timeout_seconds,
            pool=self.pool_timeout_seconds,
        )


@dataclass
class ImagesConfig:
    storage_dir: str = "~/.streamchat/images"
    max_image_count: int = 4
    detail: str = "auto"


@dataclass
class LoggingConfig:
    level: str = "WARNING"


def _default_endpoints() -> list[EndpointConfig]:
    return [EndpointConfig(is_default=True)]


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class StreamChatConfig:
    endpoints: list[EndpointConfig] = field(default_factory=_default_endpoints)
    active: str | None = None
    network: NetworkConfig = field(default_factory=NetworkConfig)
    images: ImagesConfig = field(default_factory=ImagesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def active_endpoint(self) -> EndpointConfig:
        """
        Return the active endpoint.

        Falls back to the first ``is_default`` entry, then the first entry.
        Raises ``KeyError`` if ``active`` names an unknown endpoint.
        """
        if self.active is not None:
            return self.endpoint(self.active)
        for endpoint in self.endpoints:
            if endpoint.is_default:
                return endpoint
        if not self.endpoints:
            raise KeyError("No endpoints configured")
        return self.endpoints[0]

    def endpoint(self, endpoint_id: str) -> EndpointConfig:
        for endpoint in self.endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        raise KeyError(
            f"Unknown endpoint {endpoint_id!r}. "
            f"Configured: {[e.id for e in self.endpoints]}"
        )

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'network.read_timeout_seconds')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def validate(self) -> None:
        """Raise ``ValueError`` for settings that would only fail later."""
        details = [d.value for d in ImageDetail]
        if self.images.detail not in details:
            raise ValueError(
                f"images.detail must be one of {details}, got {self.images.detail!r}"
            )
        if self.images.max_image_count < 0:
            raise ValueError("images.max_image_count must not be negative")
        if str(self.logging.level).upper() not in LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {list(LOG_LEVELS)}, got {self.logging.level!r}"
            )

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d



# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(target: Any, dotpath: str, value: Any) -> None:
    """Set ``a.b.c`` on *target* by walking attributes."""
    *path, attr = dotpath.split(".")
    for name in path:
        target = getattr(target, name)
    setattr(target, attr, value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Return *base* updated with *overlay*; nested mappings merge key by key."""
    result = dict(base)
    for key, value in overlay.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = value
    return result


def _coerce(value: str, target_type: type) -> Any:
    if target_type in (int, float):
        return target_type(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Instantiate section dataclass *cls*, dropping keys it does not know."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in known})


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "endpoint"


def _build_endpoints(raw: list | None) -> list[EndpointConfig]:
    if raw is None:
        return _default_endpoints()
    if len(raw) > MAX_ENDPOINTS:
        raise ValueError(f"Maximum number of endpoints ({MAX_ENDPOINTS}) exceeded")

    endpoints: list[EndpointConfig] = []
    seen: set[str] = set()
    for item in raw:
        item = dict(item)
        item.setdefault("id", _slug(item.get("name", "")))
        endpoint = _build_section(EndpointConfig, item)
        if endpoint.id in seen:
            raise ValueError(f"Duplicate endpoint id: {endpoint.id!r}")
        seen.add(endpoint.id)
        endpoint.system_prompts = list(endpoint.system_prompts or [])
        endpoints.append(endpoint)
    return endpoints


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "STREAMCHAT_ACTIVE_ENDPOINT":  ("active", str),
    "STREAMCHAT_CONNECT_TIMEOUT":  ("network.connect_timeout_seconds", float),
    "STREAMCHAT_READ_TIMEOUT":     ("network.read_timeout_seconds", float),
    "STREAMCHAT_WRITE_TIMEOUT":    ("network.write_timeout_seconds", float),
    "STREAMCHAT_POOL_TIMEOUT":     ("network.pool_timeout_seconds", float),
    "STREAMCHAT_IMAGES_DIR":       ("images.storage_dir", str),
    "STREAMCHAT_MAX_IMAGES":       ("images.max_image_count", int),
    "STREAMCHAT_IMAGE_DETAIL":     ("images.detail", str),
    "STREAMCHAT_LOG_LEVEL":        ("logging.level", str),
}


def _apply_env(cfg: StreamChatConfig) -> None:
    for name, (dotpath, target_type) in _ENV_MAP.items():
        raw_value = os.environ.get(name)
        if raw_value is not None:
            _apply_dotpath(cfg, dotpath, _coerce(raw_value, target_type))


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _read_file(config_path: str | Path | None) -> dict[str, Any]:
    if config_path is None:
        return {}
    path = Path(config_path).expanduser()
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> StreamChatConfig:
    """
    Load the effective configuration.

    The YAML file (plus the named *profile* from its ``profiles`` table) is
    read first, then ``STREAMCHAT_*`` environment variables and finally
    *cli_overrides*, a mapping of dotpath to value.

    Raises ``ValueError`` for duplicate endpoint ids, too many endpoints, or
    an unknown image detail or log level.
    """
    raw = _read_file(config_path)
    if profile:
        raw = _deep_merge(raw, raw.get("profiles", {}).get(profile) or {})

    cfg = StreamChatConfig(
        endpoints=_build_endpoints(raw.get("endpoints")),
        active=raw.get("active"),
        network=_build_section(NetworkConfig, raw.get("network") or {}),
        images=_build_section(ImagesConfig, raw.get("images") or {}),
        logging=_build_section(LoggingConfig, raw.get("logging") or {}),
        profiles=raw.get("profiles") or {},
    )

    _apply_env(cfg)
    for dotpath, value in (cli_overrides or {}).items():
        _apply_dotpath(cfg, dotpath, value)
    cfg.validate()
    return cfg
