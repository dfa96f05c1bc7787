"""GitHub channel — tag a release and attach artifacts through the REST API."""

from __future__ import annotations

import logging

import requests

from quire.core.errors import PermanentSyncFailure
from quire.sync.base import USER_AGENT, Channel, media_type_for, register_channel, send

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"


@register_channel("github")
class GitHubChannel(Channel):
    """Publish a release as a GitHub release on tag ``v<version>``.

    Options:
    - repo — ``owner/name`` (required)
    - token — API token; falls back to QUIRE_GITHUB_TOKEN
    - api_url — API root; falls back to QUIRE_GITHUB_API_URL
    - target_commitish — branch or commit to tag (default: repository default)

    Pushing again after a partial failure reuses the existing release and
    uploads only the assets that are still missing.
    """

    def push(self, release, release_dir, timeout):
        repo = self.require_option("repo")
        token = self.options.get("token") or self.settings.github_token
        if not token:
            raise PermanentSyncFailure(self.name, "no GitHub token configured (set QUIRE_GITHUB_TOKEN)")
        api_url = (self.options.get("api_url") or self.settings.github_api_url).rstrip("/")

        with requests.Session() as session:
            session.headers.update({
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": API_VERSION,
            })
            gh_release = self._create_tag(session, api_url, repo, release, timeout)
            existing = {asset["name"] for asset in gh_release.get("assets", [])}
            upload_url = gh_release["upload_url"].split("{", 1)[0]

            for artifact in release.artifacts:
                if artifact.filename in existing:
                    logger.debug("Asset %s already attached to %s", artifact.filename, release.version.tag)
                    continue
                path = release_dir / artifact.filename
                send(
                    self.name,
                    "POST",
                    upload_url,
                    f"upload {artifact.filename}",
                    timeout,
                    session=session,
                    params={"name": artifact.filename},
                    headers={"Content-Type": media_type_for(artifact.filename)},
                    data=path.read_bytes(),
                )

        return gh_release.get("html_url", f"{repo}@{release.version.tag}")

    def _create_tag(self, session, api_url, repo, release, timeout) -> dict:
        """Create the GitHub release for the tag, or fetch it if it already exists."""
        tag = release.version.tag
        payload = {
            "tag_name": tag,
            "name": str(release.version),
            "body": release.changelog,
            "draft": False,
            "prerelease": False,
        }
        if self.options.get("target_commitish"):
            payload["target_commitish"] = self.options["target_commitish"]

        try:
            response = send(
                self.name, "POST", f"{api_url}/repos/{repo}/releases", f"create tag {tag}",
                timeout, session=session, json=payload,
            )
        except PermanentSyncFailure as e:
            if e.status_code != 422:
                raise
            # the tag already has a release
            response = send(
                self.name, "GET", f"{api_url}/repos/{repo}/releases/tags/{tag}", f"fetch tag {tag}",
                timeout, session=session,
            )
        return response.json()
