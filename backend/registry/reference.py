"""
Image reference parsing.

Splits a raw image string into registry host, repository and tag-or-digest.

Examples:
    nginx:1.21                      → (docker.io, library/nginx, 1.21)
    ghcr.io/org/app:v1              → (ghcr.io, org/app, v1)
    registry.local:5000/app         → (registry.local:5000, app, latest)
    alpine@sha256:<64 hex>          → (docker.io, library/alpine, sha256:<64 hex>)
"""

import re
from dataclasses import dataclass
from typing import Optional

from registry.errors import ReferenceParseError

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
DEFAULT_NAMESPACE = "library"

# Docker Hub host aliases that normalize to DEFAULT_REGISTRY
DOCKER_HUB_ALIASES = frozenset({
    "docker.io",
    "index.docker.io",
    "registry-1.docker.io",
    "registry.hub.docker.com",
})

# Docker Hub serves the v2 API from a different host than its canonical name
DOCKER_HUB_API_HOST = "registry-1.docker.io"

_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN_RE = re.compile(rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?")
_PATH_COMPONENT_RE = re.compile(r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*")
_TAG_RE = re.compile(r"[\w][\w.-]{0,127}", re.ASCII)
_DIGEST_RE = re.compile(r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}")


@dataclass(frozen=True)
class ImageReference:
    """Parsed image reference. `reference` is either a tag or a digest."""
    host: str
    repository: str
    reference: str

    @property
    def is_digest(self) -> bool:
        return ":" in self.reference

    def __str__(self) -> str:
        separator = "@" if self.is_digest else ":"
        return f"{self.host}/{self.repository}{separator}{self.reference}"


def normalize_registry_host(host: str) -> str:
    """
    Normalize a registry host name for lookups.

    Strips any URL scheme and path, lowercases, and folds Docker Hub aliases
    into "docker.io". Used for both image hosts and credential document keys
    (which are often written as "https://index.docker.io/v1/").
    """
    host = host.strip()
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.split("/", 1)[0].lower()
    if host in DOCKER_HUB_ALIASES:
        return DEFAULT_REGISTRY
    return host


def registry_api_host(host: str) -> str:
    """Host that actually serves the v2 API for a normalized registry host."""
    if host == DEFAULT_REGISTRY:
        return DOCKER_HUB_API_HOST
    return host


def _is_registry_host(segment: str) -> bool:
    """First path segment is a registry host only if it has a dot or port, or is localhost."""
    return "." in segment or ":" in segment or segment == "localhost"


def parse_image_reference(raw: str, default_namespace: Optional[str] = DEFAULT_NAMESPACE) -> ImageReference:
    """
    Parse a raw image string into an ImageReference.

    Args:
        raw: Image string as found in a pod spec
        default_namespace: Namespace prepended to single-component Docker Hub
            repositories ("nginx" → "library/nginx"). None or "" disables it.

    Raises:
        ReferenceParseError: If no valid repository/reference split exists
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ReferenceParseError(str(raw), "reference is empty")

    name = raw.strip()
    if name.count("@") > 1:
        raise ReferenceParseError(raw, "more than one '@' delimiter")

    digest = None
    if "@" in name:
        name, digest = name.split("@", 1)
        if not digest:
            raise ReferenceParseError(raw, "empty digest")
        if not _DIGEST_RE.fullmatch(digest):
            raise ReferenceParseError(raw, f"invalid digest '{digest}'")

    # Tag separator is the last colon after the last slash (a colon before it is a port)
    tag = None
    last_slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > last_slash:
        name, tag = name[:colon], name[colon + 1:]
        if not tag:
            raise ReferenceParseError(raw, "empty tag")
        if not _TAG_RE.fullmatch(tag):
            raise ReferenceParseError(raw, f"invalid tag '{tag}'")

    host = DEFAULT_REGISTRY
    segments = name.split("/")
    if len(segments) > 1 and _is_registry_host(segments[0]):
        if not _DOMAIN_RE.fullmatch(segments[0]):
            raise ReferenceParseError(raw, f"invalid registry host '{segments[0]}'")
        host = normalize_registry_host(segments[0])
        segments = segments[1:]

    for segment in segments:
        if not _PATH_COMPONENT_RE.fullmatch(segment):
            raise ReferenceParseError(raw, f"invalid repository component '{segment}'")

    if default_namespace and host == DEFAULT_REGISTRY and len(segments) == 1:
        segments = [default_namespace] + segments

    return ImageReference(
        host=host,
        repository="/".join(segments),
        reference=digest or tag or DEFAULT_TAG,
    )
