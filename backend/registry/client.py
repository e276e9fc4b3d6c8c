"""
Registry Client

One authenticated HTTP session against a single registry host, speaking the
Docker Registry v2 / OCI distribution API.

Authentication follows the registry's own challenge:
1. GET /v2/ without credentials when the client is built
2. 200 → anonymous access
3. 401 with WWW-Authenticate "Bearer realm=...,service=..." → token flow,
   tokens fetched per repository scope and cached until shortly before expiry
4. 401 with WWW-Authenticate "Basic" → Basic header on every request

The challenge is discovered once; host, credential and challenge never change
after construction.
"""

import aiohttp
import asyncio
import base64
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from registry.credentials import Credential
from registry.errors import (
    AuthError,
    BlobTooLargeError,
    RegistryError,
    RegistryTimeoutError,
    RegistryUnavailableError,
)
from registry.reference import registry_api_host

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
READ_CHUNK_SIZE = 64 * 1024

# Refresh bearer tokens this many seconds before the registry says they expire
TOKEN_EXPIRY_MARGIN = 10
DEFAULT_TOKEN_LIFETIME = 60


@dataclass
class RegistryResponse:
    """Fully buffered registry response. Header names are lowercased."""
    status: int
    headers: Dict[str, str]
    body: bytes


def _encode_basic_auth(credential: Credential) -> str:
    """Encode username:password as a Basic authentication header value"""
    encoded = base64.b64encode(f"{credential.username}:{credential.password}".encode()).decode()
    return f"Basic {encoded}"


def parse_www_authenticate(header: Optional[str]) -> Optional[Tuple[str, Dict[str, str]]]:
    """
    Parse a WWW-Authenticate header into (scheme, params).

    Example:
        Input: 'Bearer realm="https://ghcr.io/token",service="ghcr.io",scope="repository:user/app:pull"'
        Output: ("bearer", {"realm": "https://ghcr.io/token", "service": "ghcr.io",
                            "scope": "repository:user/app:pull"})
    """
    if not header:
        return None

    scheme, _, params_str = header.strip().partition(" ")
    scheme = scheme.lower()
    if scheme not in ("bearer", "basic"):
        logger.warning(f"Unexpected WWW-Authenticate scheme: {header[:20]}")
        return None

    params = {key.lower(): value for key, value in re.findall(r'(\w+)="([^"]*)"', params_str)}
    if scheme == "bearer" and "realm" not in params:
        logger.warning("WWW-Authenticate missing 'realm' parameter")
        return None
    return scheme, params


class RegistryClient:
    """
    Authenticated session for one registry host.

    Build with `await RegistryClient.connect(...)`; the constructor does no I/O.
    """

    def __init__(
        self,
        host: str,
        session: aiohttp.ClientSession,
        credential: Optional[Credential] = None,
        base_url: Optional[str] = None,
    ):
        self.host = host
        self.credential = credential
        self.base_url = (base_url or f"https://{registry_api_host(host)}").rstrip("/")
        self._session = session
        self._scheme: Optional[str] = None
        self._challenge: Dict[str, str] = {}
        self._tokens: Dict[str, Tuple[str, float]] = {}

    @classmethod
    async def connect(
        cls,
        host: str,
        credential: Optional[Credential] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "RegistryClient":
        """Create the session and discover how the registry wants us to authenticate."""
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
        client = cls(host, session, credential=credential, base_url=base_url)
        try:
            await client._discover_auth()
        except BaseException:
            await session.close()
            raise
        return client

    @property
    def auth_scheme(self) -> Optional[str]:
        """Auth scheme in use: "bearer", "basic", or None for anonymous access."""
        return self._scheme

    @property
    def closed(self) -> bool:
        return self._session.closed

    async def close(self):
        if not self._session.closed:
            await self._session.close()

    async def _discover_auth(self):
        url = f"{self.base_url}/v2/"
        try:
            async with self._session.get(url) as response:
                status = response.status
                www_auth = response.headers.get("WWW-Authenticate")
        except asyncio.TimeoutError:
            raise RegistryTimeoutError(f"Timeout contacting registry {self.host}", host=self.host)
        except aiohttp.ClientError as e:
            raise RegistryUnavailableError(f"Cannot reach registry {self.host}: {e}", host=self.host)

        if status == 200:
            logger.debug(f"Registry {self.host} allows anonymous access")
            return

        if status == 401:
            parsed = parse_www_authenticate(www_auth)
            if parsed is None:
                raise AuthError(f"Registry {self.host} returned 401 without a usable challenge",
                                host=self.host, status=status)
            self._scheme, self._challenge = parsed
            logger.info(f"Registry {self.host} uses {self._scheme} authentication")
            return

        if status == 429 or status >= 500:
            raise RegistryUnavailableError(f"Registry {self.host} returned {status}", host=self.host, status=status)
        raise RegistryError(f"Unexpected status {status} from {url}", host=self.host, status=status)

    async def _fetch_token(self, scope: Optional[str]) -> str:
        """Fetch a bearer token for a scope from the challenge's realm."""
        params = {}
        if self._challenge.get("service"):
            params["service"] = self._challenge["service"]
        if scope:
            params["scope"] = scope

        headers = {}
        if self.credential:
            headers["Authorization"] = _encode_basic_auth(self.credential)

        realm = self._challenge["realm"]
        try:
            async with self._session.get(realm, params=params, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise AuthError(
                        f"Token request to {realm} failed with status {response.status}: {text[:200]}",
                        host=self.host, status=response.status,
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise RegistryTimeoutError(f"Timeout fetching token from {realm}", host=self.host)
        except aiohttp.ClientError as e:
            raise RegistryUnavailableError(f"Error fetching token from {realm}: {e}", host=self.host)
        except ValueError as e:
            raise AuthError(f"Token endpoint {realm} returned invalid JSON: {e}", host=self.host)

        token = (data.get("token") or data.get("access_token")) if isinstance(data, dict) else None
        if not token:
            raise AuthError(f"Token endpoint {realm} returned no token", host=self.host)

        try:
            lifetime = int(data.get("expires_in", DEFAULT_TOKEN_LIFETIME))
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME
        bearer = f"Bearer {token}"
        now = time.monotonic()
        # One entry per repository ever pulled; drop the expired ones
        self._tokens = {key: entry for key, entry in self._tokens.items() if entry[1] > now}
        self._tokens[scope or ""] = (bearer, now + max(lifetime - TOKEN_EXPIRY_MARGIN, 0))
        logger.debug(f"Obtained token for {self.host} scope={scope}")
        return bearer

    async def _authorization(self, scope: Optional[str]) -> Optional[str]:
        if self._scheme == "basic":
            return _encode_basic_auth(self.credential) if self.credential else None
        if self._scheme == "bearer":
            cached = self._tokens.get(scope or "")
            if cached and time.monotonic() < cached[1]:
                return cached[0]
            return await self._fetch_token(scope)
        return None

    def _adopt_challenge(self, response: aiohttp.ClientResponse, scope: Optional[str]) -> bool:
        """Take up the challenge of a 401 response. Returns True when a retry can succeed."""
        parsed = parse_www_authenticate(response.headers.get("WWW-Authenticate", ""))
        if parsed is None:
            # Bare 401 from a bearer registry: the token was rejected
            if self._scheme != "bearer":
                return False
            logger.debug(f"Registry {self.host} rejected token for {scope}, refreshing")
            self._tokens.pop(scope or "", None)
            return True

        scheme, challenge = parsed
        if scheme == "basic" and (self._scheme == "basic" or not self.credential):
            return False
        if scheme != self._scheme:
            logger.info(f"Registry {self.host} challenged with {scheme} auth on {response.url.path}")
        self._scheme, self._challenge = scheme, challenge
        self._tokens.pop(scope or "", None)
        return True

    async def get(
        self,
        path: str,
        scope: Optional[str] = None,
        accept: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> RegistryResponse:
        """
        GET a registry API path and buffer the body.

        A 401 is answered once: its WWW-Authenticate challenge is adopted (a
        registry may leave /v2/ open and protect repositories only), or on a
        bearer registry the cached token is dropped for a fresh one.
        Non-2xx responses are returned, not raised; callers map statuses to
        errors.

        Raises:
            BlobTooLargeError: If the body exceeds max_bytes
            RegistryTimeoutError: On network timeout
            RegistryUnavailableError: On connection failure
        """
        url = f"{self.base_url}{path}"
        retried = False
        while True:
            headers = {}
            if accept:
                headers["Accept"] = accept
            authorization = await self._authorization(scope)
            if authorization:
                headers["Authorization"] = authorization

            try:
                async with self._session.get(url, headers=headers) as response:
                    if response.status == 401 and not retried and self._adopt_challenge(response, scope):
                        retried = True
                        continue
                    body = await self._read_body(response, max_bytes)
                    return RegistryResponse(
                        status=response.status,
                        headers={key.lower(): value for key, value in response.headers.items()},
                        body=body,
                    )
            except asyncio.TimeoutError:
                raise RegistryTimeoutError(f"Timeout fetching {url}", host=self.host)
            except aiohttp.ClientError as e:
                raise RegistryUnavailableError(f"Error fetching {url}: {e}", host=self.host)

    async def _read_body(self, response: aiohttp.ClientResponse, max_bytes: Optional[int]) -> bytes:
        if max_bytes is None:
            return await response.read()

        if response.content_length is not None and response.content_length > max_bytes:
            raise BlobTooLargeError(
                f"Response from {response.url} is {response.content_length} bytes, limit is {max_bytes}",
                limit=max_bytes, host=self.host,
            )

        buf = bytearray()
        async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
            buf.extend(chunk)
            if len(buf) > max_bytes:
                raise BlobTooLargeError(
                    f"Response from {response.url} exceeds limit of {max_bytes} bytes",
                    limit=max_bytes, host=self.host,
                )
        return bytes(buf)

    def __repr__(self) -> str:
        return f"RegistryClient(host={self.host!r}, auth={self._scheme or 'anonymous'})"
