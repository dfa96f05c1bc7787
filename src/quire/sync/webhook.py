"""Webhook channel — ask a distribution platform to regenerate from a release."""

from __future__ import annotations

from quire.sync.base import USER_AGENT, Channel, register_channel, send


@register_channel("webhook")
class WebhookChannel(Channel):
    """POST the release description to a regeneration endpoint.

    Options:
    - url — endpoint to notify (required)
    - api_key — bearer token; falls back to QUIRE_WEBHOOK_API_KEY
    - headers — extra request headers
    """

    def push(self, release, release_dir, timeout):
        url = self.require_option("url")
        headers = {"User-Agent": USER_AGENT, **self.options.get("headers", {})}
        api_key = self.options.get("api_key") or self.settings.webhook_api_key
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        payload = {
            "event": "regenerate",
            "version": str(release.version),
            "tag": release.version.tag,
            "changelog": release.changelog,
            "published_at": release.published_at.isoformat() if release.published_at else None,
            "artifacts": [
                {
                    "target": a.target,
                    "format": a.format_id,
                    "filename": a.filename,
                    "content_hash": a.content_hash,
                    "size": a.size,
                }
                for a in release.artifacts
            ],
        }
        send(self.name, "POST", url, "trigger regeneration", timeout, headers=headers, json=payload)
        return url
