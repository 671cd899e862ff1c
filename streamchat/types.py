from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath


@dataclass(frozen=True)
class ImageAttachment:
    """A locally stored image, referenced by id until a turn is sent."""

    id: str
    filename: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def media_type(self) -> str:
        if PurePath(self.filename).suffix.lower() == ".png":
            return "image/png"
        return "image/jpeg"


@dataclass
class ConfigurationTestResult:
    successful: bool
    content: str
    endpoint_name: str
    tested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Exception | None = None

    @property
    def summary(self) -> str:
        if self.successful:
            return f"Configuration '{self.endpoint_name}' tested successfully"
        return f"Configuration '{self.endpoint_name}' test failed"
