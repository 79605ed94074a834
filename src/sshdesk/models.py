"""Data models shared by the stores, the controllers and the API."""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

AuthType = Literal["password", "privateKey"]

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id(prefix: Optional[str] = None) -> str:
    """Return ``[prefix-]<epoch-millis>-<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    core = f"{int(time.time() * 1000)}-{suffix}"
    return f"{prefix}-{core}" if prefix else core


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ServerInput(_CamelModel):
    """Payload for creating a server record."""

    name: Optional[str] = None
    host: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(min_length=1)
    auth_type: AuthType = "password"
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    passphrase: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _default_name(self) -> ServerInput:
        if not self.name:
            self.name = f"{self.username}@{self.host}"
        return self


class ServerUpdate(_CamelModel):
    """Partial payload for updating a server; only supplied fields are merged."""

    name: Optional[str] = None
    host: Optional[str] = Field(default=None, min_length=1)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    username: Optional[str] = Field(default=None, min_length=1)
    auth_type: Optional[AuthType] = None
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    passphrase: Optional[str] = None
    notes: Optional[str] = None


class ServerRecord(_CamelModel):
    """A stored server. Secrets are plaintext in memory, envelopes on disk."""

    id: str = Field(default_factory=generate_id)
    name: str
    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str
    auth_type: AuthType = "password"
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    passphrase: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    def to_document(self) -> dict:
        """Serialize with on-disk (camelCase) field names, omitting unset secrets."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def display(self) -> str:
        return f"{self.name}  [{self.username}@{self.host}:{self.port} | {self.auth_type}]"


class FileEntry(_CamelModel):
    """One row of a directory listing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    path: str
    is_directory: bool
    size: int = 0
    modified: Optional[int] = None  # epoch millis


class RemoteEntry(FileEntry):
    pass


class LocalEntry(FileEntry):
    pass


class AppSettings(_CamelModel):
    """Flat application settings; unknown keys are kept as-is."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    dark_mode: bool = False
    font_size: int = Field(default=14, ge=6, le=72)
