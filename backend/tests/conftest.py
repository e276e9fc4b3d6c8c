"""
Shared pytest fixtures for label resolver tests.

Fixtures provided:
- credential_store: CredentialStore trusting ghcr.io and docker.io
- fake_registry: In-memory registry serving manifests and config blobs
- fake_clock: Manually advanced clock for cache expiry tests
- make_service: Factory for LabelService wired to fake_registry

The fake registry stands in for RegistryClient at its `get()` seam, so the
real manifest/blob/label code runs against it.
"""

import hashlib
import json
import re
from typing import Dict, Optional

import pytest

from labels.cache import LabelCache
from labels.service import LabelService
from registry.client import RegistryResponse
from registry.credentials import Credential, CredentialStore
from registry.errors import BlobTooLargeError
from registry.manifests import DOCKER_MANIFEST_V2

_PATH_RE = re.compile(r"^/v2/(?P<repository>.+)/(?P<kind>manifests|blobs)/(?P<reference>[^/]+)$")


def make_config_blob(labels: Optional[Dict[str, str]]) -> bytes:
    """Image config JSON as a registry would serve it"""
    return json.dumps({
        "architecture": "amd64",
        "os": "linux",
        "config": {"Env": ["PATH=/usr/bin"], "Labels": labels},
        "rootfs": {"type": "layers", "diff_ids": []},
    }).encode()


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class FakeRegistryClient:
    """
    Registry double with the RegistryClient.get() interface.

    Counts manifest requests so tests can assert how often the registry was hit.
    """

    def __init__(self, host: str, registry: "FakeRegistry"):
        self.host = host
        self.registry = registry
        self.closed = False

    async def get(self, path, scope=None, accept=None, max_bytes=None) -> RegistryResponse:
        return await self.registry.handle(self.host, path, max_bytes)

    async def close(self):
        self.closed = True


class FakeRegistry:
    """Images keyed by (host, repository, reference); blobs keyed by digest."""

    def __init__(self):
        self.manifests: Dict[tuple, bytes] = {}
        self.blobs: Dict[str, bytes] = {}
        self.manifest_calls = 0
        self.blob_calls = 0
        self.clients_built = 0
        self.status_override: Optional[int] = None

    def add_image(self, host: str, repository: str, reference: str, labels: Optional[Dict[str, str]]):
        blob = make_config_blob(labels)
        digest = sha256_digest(blob)
        self.blobs[digest] = blob
        self.manifests[(host, repository, reference)] = json.dumps({
            "schemaVersion": 2,
            "mediaType": DOCKER_MANIFEST_V2,
            "config": {"mediaType": "application/vnd.docker.container.image.v1+json",
                       "size": len(blob), "digest": digest},
            "layers": [],
        }).encode()
        return digest

    async def handle(self, host: str, path: str, max_bytes: Optional[int]) -> RegistryResponse:
        match = _PATH_RE.match(path)
        if self.status_override is not None:
            return RegistryResponse(status=self.status_override, headers={}, body=b"")

        if match is None:
            return RegistryResponse(status=404, headers={}, body=b"")

        if match["kind"] == "manifests":
            self.manifest_calls += 1
            body = self.manifests.get((host, match["repository"], match["reference"]))
        else:
            self.blob_calls += 1
            body = self.blobs.get(match["reference"])

        if body is None:
            return RegistryResponse(status=404, headers={}, body=b'{"errors":[{"code":"MANIFEST_UNKNOWN"}]}')
        if max_bytes is not None and len(body) > max_bytes:
            raise BlobTooLargeError(f"{path} exceeds {max_bytes} bytes", limit=max_bytes, host=host)
        return RegistryResponse(status=200, headers={"content-type": "application/json"}, body=body)

    async def client_factory(self, host: str, credential: Optional[Credential]) -> FakeRegistryClient:
        self.clients_built += 1
        return FakeRegistryClient(host, self)


class FakeClock:
    """Monotonic clock advanced by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def credential_store():
    return CredentialStore({
        "ghcr.io": Credential("ci-bot", "s3cret"),
        "docker.io": Credential("hubuser", "hubpass"),
    })


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_service(credential_store, fake_registry, fake_clock):
    """Factory so tests can override LabelService options"""
    def _make(**kwargs) -> LabelService:
        kwargs.setdefault("cache", LabelCache(ttl_seconds=300, clock=fake_clock))
        return LabelService(credential_store, client_factory=fake_registry.client_factory, **kwargs)
    return _make
