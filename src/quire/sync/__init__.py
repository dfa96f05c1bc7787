"""Distribution channels and the sync service."""

from quire.sync.base import (
    Channel,
    SyncResult,
    available_channels,
    get_channel,
    register_channel,
)
from quire.sync.directory import DirectoryChannel
from quire.sync.github import GitHubChannel
from quire.sync.webhook import WebhookChannel

__all__ = [
    "Channel",
    "DirectoryChannel",
    "GitHubChannel",
    "SyncResult",
    "WebhookChannel",
    "available_channels",
    "get_channel",
    "register_channel",
]
