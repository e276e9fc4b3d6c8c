"""
Manifest and config blob retrieval.

Only what label resolution needs: the single-image manifest for a tag or
digest, the config blob it points at, and the `config.Labels` map inside it.
Manifest lists / image indexes are not resolved to a platform.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from registry.client import RegistryClient, RegistryResponse
from registry.errors import (
    AuthError,
    BlobDecodeError,
    NotFoundError,
    RegistryError,
    RegistryUnavailableError,
)

logger = logging.getLogger(__name__)

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_INDEX_V1 = "application/vnd.oci.image.index.v1+json"

MANIFEST_ACCEPT = f"{DOCKER_MANIFEST_V2},{OCI_MANIFEST_V1}"
INDEX_MEDIA_TYPES = (DOCKER_MANIFEST_LIST_V2, OCI_INDEX_V1)

# Manifests are small; anything beyond this is not a manifest we want
MAX_MANIFEST_BYTES = 4 * 1024 * 1024
DEFAULT_MAX_CONFIG_BYTES = 4 * 1024 * 1024


@dataclass
class ManifestDescriptor:
    """The parts of an image manifest needed to locate its config blob."""
    media_type: Optional[str]
    digest: Optional[str]
    config_digest: str
    config_size: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def _pull_scope(repository: str) -> str:
    return f"repository:{repository}:pull"


def _raise_for_status(response: RegistryResponse, what: str, host: str):
    """Map a registry HTTP status to the matching RegistryError subclass."""
    status = response.status
    if 200 <= status < 300:
        return
    if status == 404:
        raise NotFoundError(f"{what} not found", host=host, status=status)
    if status in (401, 403):
        raise AuthError(f"Access denied to {what} ({status})", host=host, status=status)
    if status == 429:
        raise RegistryUnavailableError(f"Rate limited by registry fetching {what}", host=host, status=status)
    if status >= 500:
        raise RegistryUnavailableError(f"Registry returned {status} for {what}", host=host, status=status)
    raise RegistryError(f"Registry returned {status} for {what}", host=host, status=status)


async def fetch_manifest(client: RegistryClient, repository: str, reference: str) -> ManifestDescriptor:
    """
    Fetch the image manifest for a tag or digest.

    Raises:
        NotFoundError, AuthError, RegistryUnavailableError: Per registry response
        BlobDecodeError: If the manifest is not a single-image manifest with a config digest
    """
    what = f"manifest {client.host}/{repository}:{reference}"
    response = await client.get(
        f"/v2/{repository}/manifests/{reference}",
        scope=_pull_scope(repository),
        accept=MANIFEST_ACCEPT,
        max_bytes=MAX_MANIFEST_BYTES,
    )
    _raise_for_status(response, what, client.host)

    try:
        manifest = json.loads(response.body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BlobDecodeError(f"{what} is not valid JSON: {e}")
    if not isinstance(manifest, dict):
        raise BlobDecodeError(f"{what} is not a JSON object")

    media_type = manifest.get("mediaType") or response.headers.get("content-type", "").split(";")[0] or None
    if media_type in INDEX_MEDIA_TYPES or "manifests" in manifest:
        raise BlobDecodeError(f"{what} is a manifest list; multi-platform resolution is not supported")

    config = manifest.get("config")
    config_digest = config.get("digest") if isinstance(config, dict) else None
    if not isinstance(config_digest, str) or not config_digest:
        raise BlobDecodeError(f"{what} has no config digest (mediaType={media_type})")

    descriptor = ManifestDescriptor(
        media_type=media_type,
        digest=response.headers.get("docker-content-digest"),
        config_digest=config_digest,
        config_size=config.get("size") if isinstance(config.get("size"), int) else None,
        raw=manifest,
    )
    logger.debug(f"Fetched {what}: mediaType={media_type}, config={config_digest}")
    return descriptor


async def download_config_blob(
    client: RegistryClient,
    repository: str,
    digest: str,
    max_bytes: int = DEFAULT_MAX_CONFIG_BYTES,
) -> bytes:
    """
    Download a config blob, fully buffered up to max_bytes.

    sha256 blobs are verified against their digest.

    Raises:
        BlobTooLargeError: If the blob is larger than max_bytes
        NotFoundError, AuthError, RegistryUnavailableError: Per registry response
        BlobDecodeError: On digest mismatch
    """
    what = f"blob {client.host}/{repository}@{digest}"
    response = await client.get(
        f"/v2/{repository}/blobs/{digest}",
        scope=_pull_scope(repository),
        max_bytes=max_bytes,
    )
    _raise_for_status(response, what, client.host)

    algorithm, _, expected = digest.partition(":")
    if algorithm == "sha256":
        actual = hashlib.sha256(response.body).hexdigest()
        if actual != expected.lower():
            raise BlobDecodeError(f"{what} digest mismatch (got sha256:{actual})")
    return response.body


def extract_labels(data: bytes) -> Dict[str, str]:
    """
    Read `config.Labels` from an image config blob.

    Absent or null `config` / `Labels` yield an empty dict.

    Raises:
        BlobDecodeError: If the blob is not JSON or has an unexpected shape
    """
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise BlobDecodeError(f"Image config is not valid JSON: {e}")
    if not isinstance(document, dict):
        raise BlobDecodeError("Image config is not a JSON object")

    config = document.get("config")
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise BlobDecodeError("Image config field 'config' is not an object")

    labels = config.get("Labels")
    if labels is None:
        return {}
    if not isinstance(labels, dict):
        raise BlobDecodeError("Image config field 'config.Labels' is not an object")

    for key, value in labels.items():
        if not isinstance(value, str):
            raise BlobDecodeError(f"Image label '{key}' has a non-string value")
    return dict(labels)
