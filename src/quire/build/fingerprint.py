"""Fingerprinting — self-describing hashes for sources, render inputs and payloads."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import dataclass

from quire.core.models import Fragment, FormatConfig, TargetMetadata


@dataclass(frozen=True)
class Fingerprint:
    """A self-describing, versioned hash.

    Each fingerprint records its scheme (how it was generated) and its
    components (what went into it), so a cache miss can be explained.
    """

    scheme: str  # e.g. "quire:render:v1"
    digest: str  # SHA256 hex (full)
    components: dict[str, str]  # component_name -> component_hash

    def matches(self, other: Fingerprint | None) -> bool:
        """Match requires same scheme AND same digest."""
        if other is None:
            return False
        return self.scheme == other.scheme and self.digest == other.digest

    def explain_diff(self, other: Fingerprint | None) -> list[str]:
        """Human-readable list of reasons these fingerprints differ."""
        if other is None:
            return ["no stored fingerprint"]
        if self.scheme != other.scheme:
            return [f"scheme changed ({other.scheme} -> {self.scheme})"]
        all_keys = sorted(set(self.components) | set(other.components))
        changed = [k for k in all_keys if self.components.get(k) != other.components.get(k)]
        return [f"{k} changed" for k in changed] or ["unknown"]

    def to_dict(self) -> dict:
        return {
            "scheme": self.scheme,
            "digest": self.digest,
            "components": dict(self.components),
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> Fingerprint | None:
        """Deserialize from a dict. Returns None if data is empty/missing."""
        if not data or "scheme" not in data:
            return None
        return cls(
            scheme=data["scheme"],
            digest=data["digest"],
            components=data.get("components", {}),
        )


def compute_digest(components: dict[str, str]) -> str:
    """Deterministic digest from sorted component hashes."""
    parts = "|".join(f"{k}={v}" for k, v in sorted(components.items()))
    return hashlib.sha256(parts.encode()).hexdigest()


def fingerprint_value(obj) -> str:
    """Deterministic SHA256 prefix for any common Python value.

    Built-in hash() is salted per process, so values are serialized to a
    canonical string first. Unlike a set, list order is significant here:
    manifest order is part of a document's identity.
    """
    if obj is None:
        raw = ""
    elif isinstance(obj, str):
        raw = obj.replace("\r\n", "\n")
    elif isinstance(obj, dict):
        raw = json.dumps(obj, sort_keys=True, default=str)
    elif isinstance(obj, (list, tuple)):
        raw = json.dumps([str(x) for x in obj])
    else:
        raw = str(obj)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


def compute_source_digest(fragments: Iterable[Fragment], metadata: TargetMetadata) -> str:
    """SHA256 over ordered fragment identities and contents plus title metadata."""
    h = hashlib.sha256()
    h.update(json.dumps(metadata.to_dict(), sort_keys=True).encode())
    for fragment in fragments:
        h.update(b"\x00")
        h.update(fragment.identifier.encode())
        h.update(b"\x00")
        h.update(fragment.kind.value.encode())
        h.update(b"\x00")
        h.update(fragment.content.replace("\r\n", "\n").encode())
    return f"sha256:{h.hexdigest()}"


def compute_render_fingerprint(
    source_digest: str,
    config: FormatConfig,
    renderer_id: str,
) -> Fingerprint:
    """Combine document identity, format config and renderer version."""
    components = {
        "source": fingerprint_value(source_digest),
        "config": fingerprint_value(config.to_dict()),
        "renderer": fingerprint_value(renderer_id),
    }
    return Fingerprint(
        scheme="quire:render:v1",
        digest=compute_digest(components),
        components=components,
    )


def hash_bytes(payload: bytes) -> str:
    return f"sha256:{hashlib.sha256(payload).hexdigest()}"
