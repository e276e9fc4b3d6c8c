"""
Registry Client Pool

Lazily builds one RegistryClient per registry host and keeps it for the
process lifetime. Concurrent first requests for the same host share a single
construction (one auth handshake); different hosts never wait on each other.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

from registry.client import DEFAULT_TIMEOUT, RegistryClient
from registry.credentials import Credential, CredentialStore
from registry.errors import RegistryUnavailableError
from registry.reference import normalize_registry_host, registry_api_host
from utils.tasks import log_task_exception

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, Optional[Credential]], Awaitable[RegistryClient]]


class RegistryClientPool:
    """
    Host → RegistryClient mapping with per-host construction coalescing.

    The lock only guards the two dicts; client construction (network I/O)
    runs in a task outside it.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        client_factory: Optional[ClientFactory] = None,
        anonymous_hosts: Iterable[str] = (),
        insecure_hosts: Iterable[str] = (),
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.credentials = credentials
        self._anonymous_hosts = {normalize_registry_host(h) for h in anonymous_hosts if h}
        self._insecure_hosts = {normalize_registry_host(h) for h in insecure_hosts if h}
        self._timeout = timeout
        self._client_factory = client_factory or self._connect
        self._clients: Dict[str, RegistryClient] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def _connect(self, host: str, credential: Optional[Credential]) -> RegistryClient:
        base_url = None
        if host in self._insecure_hosts:
            base_url = f"http://{registry_api_host(host)}"
        return await RegistryClient.connect(host, credential, base_url=base_url, timeout=self._timeout)

    def is_trusted(self, host: str) -> bool:
        """
        True if we were given a trust relationship with this registry at startup:
        either a credential or an explicit anonymous-access entry.

        Untrusted hosts are never queried; their images resolve to no labels.
        """
        host = normalize_registry_host(host)
        return host in self.credentials or host in self._anonymous_hosts

    async def get(self, host: str) -> RegistryClient:
        """
        Return the client for a host, building it on first use.

        Raises:
            RegistryError: If the handshake fails (not cached; next call retries)
            RegistryUnavailableError: If the pool has been closed
        """
        host = normalize_registry_host(host)

        async with self._lock:
            if self._closed:
                raise RegistryUnavailableError("Registry client pool is closed", host=host)
            client = self._clients.get(host)
            if client is not None:
                return client
            task = self._pending.get(host)
            if task is None:
                logger.info(f"Creating registry client for {host}")
                task = asyncio.create_task(self._build(host))
                task.add_done_callback(log_task_exception)
                self._pending[host] = task

        return await asyncio.shield(task)

    async def _build(self, host: str) -> RegistryClient:
        client = None
        try:
            client = await self._client_factory(host, self.credentials.lookup(host))
            return client
        finally:
            async with self._lock:
                self._pending.pop(host, None)
                if client is not None:
                    self._clients[host] = client

    async def close(self):
        """
        Close every pooled session (application shutdown).

        Handshakes still in flight are awaited first so the sessions they open
        are closed too; later get() calls fail.
        """
        async with self._lock:
            self._closed = True
            pending = list(self._pending.values())
        if pending:
            logger.info(f"Waiting for {len(pending)} registry handshake(s) before closing")
            await asyncio.gather(*pending, return_exceptions=True)

        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing registry client for {client.host}: {e}")

    def __contains__(self, host: str) -> bool:
        return normalize_registry_host(host) in self._clients

    def __len__(self) -> int:
        return len(self._clients)
