"""
Label Service

Owns the shared state of the resolver (credential store, client pool, label
cache) and runs the resolution flow:

    image string → parse → trusted? → cache(fetch manifest → config blob → labels) → filter

One instance is created at startup and handed to request handlers, so tests
can build their own with fake clients and a fake clock.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from labels.cache import DEFAULT_TTL_SECONDS, LabelCache
from labels.validator import filter_labels
from registry.client import DEFAULT_TIMEOUT
from registry.credentials import CredentialStore
from registry.errors import PodFormatError, RegistryError, RegistryUnavailableError
from registry.manifests import DEFAULT_MAX_CONFIG_BYTES, download_config_blob, extract_labels, fetch_manifest
from registry.pool import ClientFactory, RegistryClientPool
from registry.reference import DEFAULT_NAMESPACE, ImageReference, parse_image_reference

logger = logging.getLogger(__name__)

MAX_RETRY_BACKOFF = 5.0


def get_pod_image(pod: Any) -> str:
    """
    Image of the pod's first container (spec.containers[0].image).

    Raises:
        PodFormatError: If the document has no such field
    """
    if not isinstance(pod, dict):
        raise PodFormatError("Request body must be a JSON object")
    try:
        image = pod["spec"]["containers"][0]["image"]
    except (KeyError, IndexError, TypeError):
        raise PodFormatError("Request body has no spec.containers[0].image")
    if not isinstance(image, str):
        raise PodFormatError("spec.containers[0].image must be a string")
    return image


def get_pod_labels(pod: Dict[str, Any]) -> Dict[str, str]:
    """The pod's own metadata.labels (empty if absent)."""
    metadata = pod.get("metadata")
    labels = metadata.get("labels") if isinstance(metadata, dict) else None
    if labels is None:
        return {}
    if not isinstance(labels, dict):
        raise PodFormatError("metadata.labels must be an object")
    return {key: value for key, value in labels.items() if isinstance(value, str)}


class LabelService:
    """Resolves filtered image labels for pods."""

    def __init__(
        self,
        credentials: CredentialStore,
        pool: Optional[RegistryClientPool] = None,
        cache: Optional[LabelCache] = None,
        client_factory: Optional[ClientFactory] = None,
        anonymous_registries: Iterable[str] = (),
        insecure_registries: Iterable[str] = (),
        registry_timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        cache_max_entries: int = LabelCache.MAX_CACHE_SIZE,
        max_config_bytes: int = DEFAULT_MAX_CONFIG_BYTES,
        default_namespace: Optional[str] = DEFAULT_NAMESPACE,
        retries: int = 0,
        retry_backoff: float = 0.5,
        fallback_on_error: bool = False,
        merge_pod_labels: bool = False,
    ):
        self.credentials = credentials
        self.pool = pool or RegistryClientPool(
            credentials,
            client_factory=client_factory,
            anonymous_hosts=anonymous_registries,
            insecure_hosts=insecure_registries,
            timeout=registry_timeout,
        )
        self.cache = cache or LabelCache(ttl_seconds=cache_ttl, max_entries=cache_max_entries)
        self.max_config_bytes = max_config_bytes
        self.default_namespace = default_namespace or None
        self.retries = retries
        self.retry_backoff = retry_backoff
        self.fallback_on_error = fallback_on_error
        self.merge_pod_labels = merge_pod_labels

    @classmethod
    def from_config(cls, config, credentials: CredentialStore) -> "LabelService":
        """Build the service from AppConfig-style settings."""
        return cls(
            credentials,
            anonymous_registries=config.ANONYMOUS_REGISTRIES,
            insecure_registries=config.INSECURE_REGISTRIES,
            registry_timeout=config.REGISTRY_TIMEOUT,
            cache_ttl=config.CACHE_TTL,
            cache_max_entries=config.CACHE_MAX_ENTRIES,
            max_config_bytes=config.MAX_CONFIG_BLOB_BYTES,
            default_namespace=config.DEFAULT_NAMESPACE,
            retries=config.REGISTRY_RETRIES,
            retry_backoff=config.REGISTRY_RETRY_BACKOFF,
            fallback_on_error=config.FALLBACK_ON_REGISTRY_ERROR,
            merge_pod_labels=config.MERGE_POD_LABELS,
        )

    async def fetch_labels(self, ref: ImageReference) -> Dict[str, str]:
        """Unfiltered labels straight from the registry (no cache)."""
        client = await self.pool.get(ref.host)
        manifest = await fetch_manifest(client, ref.repository, ref.reference)
        blob = await download_config_blob(client, ref.repository, manifest.config_digest, self.max_config_bytes)
        labels = extract_labels(blob)
        logger.info(f"Resolved {len(labels)} labels for {ref}")
        return labels

    async def _fetch_with_retry(self, ref: ImageReference) -> Dict[str, str]:
        backoff = self.retry_backoff
        for attempt in range(self.retries + 1):
            try:
                return await self.fetch_labels(ref)
            except RegistryUnavailableError as e:
                if attempt >= self.retries:
                    raise
                logger.warning(f"Registry unavailable for {ref} ({e}), retrying in {backoff}s")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_RETRY_BACKOFF)

    async def resolve_image_labels(self, image: str) -> Dict[str, str]:
        """
        Filtered labels for an image string.

        Untrusted registries yield {} without being contacted.

        Raises:
            ReferenceParseError: If the image string is malformed
            RegistryError, BlobDecodeError: If a trusted registry lookup fails
                (RegistryError becomes {} when fallback_on_error is set)
        """
        ref = parse_image_reference(image, default_namespace=self.default_namespace)

        if not self.pool.is_trusted(ref.host):
            logger.debug(f"No trust relationship with {ref.host}, skipping labels for {ref}")
            return {}

        try:
            labels = await self.cache.resolve(str(ref), lambda: self._fetch_with_retry(ref))
        except RegistryError as e:
            if not self.fallback_on_error:
                raise
            logger.warning(f"Failed to resolve labels for {ref}, continuing without labels: {e}")
            return {}

        return filter_labels(labels)

    async def resolve_pod_labels(self, pod: Any) -> Dict[str, str]:
        """
        Labels to report for a pod document.

        Raises:
            PodFormatError: If the pod has no readable image
        """
        image = get_pod_image(pod)
        labels = await self.resolve_image_labels(image)
        if not self.merge_pod_labels:
            return labels

        merged = get_pod_labels(pod)
        merged.update(labels)
        return merged

    async def start(self, sweep_interval: float = 0) -> Optional[asyncio.Task]:
        """Start background maintenance; returns the sweeper task if one was started."""
        if sweep_interval and sweep_interval > 0:
            return asyncio.create_task(self.cache.run_sweeper(sweep_interval))
        return None

    async def close(self):
        await self.pool.close()
