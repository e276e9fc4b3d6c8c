"""
Unit tests for RegistryClientPool.

Tests verify:
- One client per host, built once even under concurrent first access
- Hosts are built independently
- Failed construction is not cached
- Trust decisions (credential or anonymous allow-list)
- Close waits for in-flight handshakes and refuses later gets
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from registry.credentials import CredentialStore
from registry.errors import AuthError, RegistryUnavailableError
from registry.pool import RegistryClientPool


class SlowFactory:
    """Client factory that blocks per host until released"""

    def __init__(self, fake_registry):
        self.fake_registry = fake_registry
        self.release = asyncio.Event()
        self.calls = []
        self.fail_with = None

    async def __call__(self, host, credential):
        self.calls.append((host, credential))
        await self.release.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return await self.fake_registry.client_factory(host, credential)


class TestClientConstruction:

    @pytest.mark.asyncio
    async def test_client_reused_for_host(self, credential_store, fake_registry):
        pool = RegistryClientPool(credential_store, client_factory=fake_registry.client_factory)

        first = await pool.get("ghcr.io")
        second = await pool.get("GHCR.io")

        assert first is second
        assert fake_registry.clients_built == 1
        assert "ghcr.io" in pool
        assert len(pool) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_access_builds_once(self, credential_store, fake_registry):
        factory = SlowFactory(fake_registry)
        pool = RegistryClientPool(credential_store, client_factory=factory)

        callers = [asyncio.create_task(pool.get("ghcr.io")) for _ in range(8)]
        await asyncio.sleep(0)
        factory.release.set()
        clients = await asyncio.gather(*callers)

        assert len(factory.calls) == 1
        assert all(client is clients[0] for client in clients)

    @pytest.mark.asyncio
    async def test_credential_passed_to_factory(self, credential_store, fake_registry):
        factory = SlowFactory(fake_registry)
        factory.release.set()
        pool = RegistryClientPool(credential_store, client_factory=factory)

        await pool.get("ghcr.io")

        host, credential = factory.calls[0]
        assert host == "ghcr.io"
        assert credential.username == "ci-bot"

    @pytest.mark.asyncio
    async def test_docker_hub_aliases_share_one_client(self, credential_store, fake_registry):
        pool = RegistryClientPool(credential_store, client_factory=fake_registry.client_factory)

        hub = await pool.get("docker.io")
        alias = await pool.get("index.docker.io")

        assert hub is alias
        assert fake_registry.clients_built == 1

    @pytest.mark.asyncio
    async def test_slow_host_does_not_block_other_hosts(self, fake_registry):
        store = CredentialStore()
        slow = SlowFactory(fake_registry)

        async def factory(host, credential):
            if host == "slow.example.com":
                return await slow(host, credential)
            return await fake_registry.client_factory(host, credential)

        pool = RegistryClientPool(store, client_factory=factory)
        slow_caller = asyncio.create_task(pool.get("slow.example.com"))
        await asyncio.sleep(0)

        fast = await asyncio.wait_for(pool.get("fast.example.com"), timeout=1)

        assert fast.host == "fast.example.com"
        assert not slow_caller.done()
        slow.release.set()
        await slow_caller


class TestConstructionFailure:

    @pytest.mark.asyncio
    async def test_failure_shared_and_not_cached(self, credential_store, fake_registry):
        factory = SlowFactory(fake_registry)
        factory.fail_with = AuthError("bad credentials", host="ghcr.io", status=401)
        pool = RegistryClientPool(credential_store, client_factory=factory)

        callers = [asyncio.create_task(pool.get("ghcr.io")) for _ in range(3)]
        await asyncio.sleep(0)
        factory.release.set()
        results = await asyncio.gather(*callers, return_exceptions=True)

        assert all(isinstance(result, AuthError) for result in results)
        assert len(factory.calls) == 1
        assert "ghcr.io" not in pool

        factory.fail_with = None
        client = await pool.get("ghcr.io")
        assert client.host == "ghcr.io"
        assert len(factory.calls) == 2


class TestTrust:

    def test_credentialed_hosts_trusted(self, credential_store):
        pool = RegistryClientPool(credential_store)

        assert pool.is_trusted("ghcr.io")
        assert pool.is_trusted("docker.io")
        assert pool.is_trusted("registry-1.docker.io")

    def test_unknown_host_untrusted(self, credential_store):
        pool = RegistryClientPool(credential_store)

        assert not pool.is_trusted("quay.io")

    def test_anonymous_hosts_trusted_without_credentials(self):
        pool = RegistryClientPool(CredentialStore(), anonymous_hosts=["public.ecr.aws", ""])

        assert pool.is_trusted("public.ecr.aws")
        assert not pool.is_trusted("ghcr.io")


class TestClose:

    @pytest.mark.asyncio
    async def test_close_closes_every_client(self, credential_store, fake_registry):
        pool = RegistryClientPool(credential_store, client_factory=fake_registry.client_factory)
        ghcr = await pool.get("ghcr.io")
        hub = await pool.get("docker.io")

        await pool.close()

        assert ghcr.closed and hub.closed
        assert len(pool) == 0

    @pytest.mark.asyncio
    async def test_close_error_does_not_stop_other_clients(self, credential_store, fake_registry):
        broken = AsyncMock()
        broken.host = "ghcr.io"
        broken.close.side_effect = RuntimeError("session already gone")

        async def factory(host, credential):
            if host == "ghcr.io":
                return broken
            return await fake_registry.client_factory(host, credential)

        pool = RegistryClientPool(credential_store, client_factory=factory)
        await pool.get("ghcr.io")
        hub = await pool.get("docker.io")

        await pool.close()

        broken.close.assert_awaited_once()
        assert hub.closed

    @pytest.mark.asyncio
    async def test_close_waits_for_pending_handshake(self, credential_store, fake_registry):
        factory = SlowFactory(fake_registry)
        pool = RegistryClientPool(credential_store, client_factory=factory)
        caller = asyncio.create_task(pool.get("ghcr.io"))
        await asyncio.sleep(0)

        closing = asyncio.create_task(pool.close())
        await asyncio.sleep(0)
        assert not closing.done()
        factory.release.set()
        await closing

        client = await caller
        assert client.closed
        assert len(pool) == 0

    @pytest.mark.asyncio
    async def test_get_after_close_fails(self, credential_store, fake_registry):
        pool = RegistryClientPool(credential_store, client_factory=fake_registry.client_factory)
        await pool.close()

        with pytest.raises(RegistryUnavailableError):
            await pool.get("ghcr.io")
        assert fake_registry.clients_built == 0
