"""Base classes and registry for distribution channels."""

from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import requests

from quire.core.errors import PermanentSyncFailure, TransientSyncFailure

if TYPE_CHECKING:
    from quire.config import Settings
    from quire.core.models import ChannelDescriptor, Release, Version

USER_AGENT = "quire-sync"

_MEDIA_TYPES = {
    ".epub": "application/epub+zip",
    ".md": "text/markdown",
    ".pdf": "application/pdf",
    ".html": "text/html",
}


@dataclass
class SyncResult:
    """Result of pushing one release to one channel."""

    channel: str
    version: Version
    success: bool
    location: str = ""  # Where the release landed (directory, URL)
    outcome: str = "success"  # success, transient, permanent
    error: str | None = None
    attempts: int = 1
    time_seconds: float = 0.0


class Channel(ABC):
    """Base class for distribution channels.

    A channel receives a published release and the directory holding its
    artifact files. `push` returns a location string on success and raises
    TransientSyncFailure or PermanentSyncFailure otherwise.
    """

    kind: str = ""

    def __init__(
        self,
        descriptor: ChannelDescriptor,
        settings: Settings | None = None,
        source_dir: str | Path | None = None,
    ):
        if settings is None:
            from quire.config import get_settings

            settings = get_settings()
        self.descriptor = descriptor
        self.settings = settings
        self.source_dir = Path(source_dir) if source_dir else None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def options(self) -> dict:
        return self.descriptor.options

    def require_option(self, key: str) -> str:
        value = self.options.get(key)
        if not value:
            raise PermanentSyncFailure(self.name, f"channel option '{key}' is required")
        return value

    @abstractmethod
    def push(self, release: Release, release_dir: Path, timeout: float) -> str:
        """Deliver a release. Returns the location it was delivered to."""
        ...


# Channel registry
_CHANNELS: dict[str, type[Channel]] = {}


def register_channel(kind: str):
    """Decorator to register a channel class."""

    def wrapper(cls):
        cls.kind = kind
        _CHANNELS[kind] = cls
        return cls

    return wrapper


def get_channel(
    descriptor: ChannelDescriptor,
    settings: Settings | None = None,
    source_dir: str | Path | None = None,
) -> Channel:
    """Get an instantiated channel for a descriptor."""
    if descriptor.kind not in _CHANNELS:
        raise ValueError(f"Unknown channel kind: {descriptor.kind}. Available: {sorted(_CHANNELS)}")
    return _CHANNELS[descriptor.kind](descriptor, settings, source_dir)


def available_channels() -> list[str]:
    return sorted(_CHANNELS)


# -- HTTP helpers -------------------------------------------------------------


def media_type_for(filename: str) -> str:
    suffix = Path(filename).suffix.lower()
    if suffix in _MEDIA_TYPES:
        return _MEDIA_TYPES[suffix]
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


def check_response(channel: str, response: requests.Response, action: str) -> None:
    """Raise the sync failure matching an HTTP error status.

    429 and 5xx are retryable; any other 4xx needs operator action.
    """
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:200].strip() or response.reason or ""
    message = f"{action} failed with HTTP {status}: {detail}"
    if status == 429 or status >= 500:
        raise TransientSyncFailure(channel, message, status)
    raise PermanentSyncFailure(channel, message, status)


def send(
    channel: str,
    method: str,
    url: str,
    action: str,
    timeout: float,
    session: requests.Session | None = None,
    **kwargs,
) -> requests.Response:
    """Issue an HTTP request, mapping transport errors to sync failures."""
    client = session or requests
    try:
        response = client.request(method, url, timeout=timeout, **kwargs)
    except (requests.ConnectionError, requests.Timeout) as e:
        raise TransientSyncFailure(channel, f"{action}: {e}") from e
    except requests.RequestException as e:
        raise PermanentSyncFailure(channel, f"{action}: {e}") from e
    check_response(channel, response, action)
    return response
