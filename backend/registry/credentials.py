"""
Registry Credential Store

Loads registry credentials once at startup from a Docker config document
(the format of a kubernetes.io/dockerconfigjson secret):

    {"auths": {"ghcr.io": {"auth": base64("user:pass")}}}

Every entry is processed independently. A malformed entry is recorded as a
warning and skipped; only an unreadable or structurally broken document is fatal.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from registry.errors import CredentialError, CredentialsDocumentError
from registry.reference import normalize_registry_host

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Username/password pair for one registry."""
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password='***')"


def _decode_auth(host: str, raw_auth) -> Credential:
    """Decode a base64 "user:pass" auth string. Exactly one colon is expected."""
    if not isinstance(raw_auth, str):
        raise CredentialError(host, "'auth' must be a string")
    try:
        decoded = base64.b64decode(raw_auth, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise CredentialError(host, f"'auth' is not valid base64: {e}")

    parts = decoded.split(":")
    if len(parts) != 2:
        raise CredentialError(host, "invalid credential format, should be username:password base64 encoded")
    return Credential(username=parts[0], password=parts[1])


def _parse_entry(host: str, entry) -> Credential:
    if not isinstance(entry, dict):
        raise CredentialError(host, "entry must be an object")

    if "auth" in entry:
        return _decode_auth(host, entry["auth"])

    # Some tools write username/password explicitly instead of "auth"
    username = entry.get("username")
    password = entry.get("password")
    if isinstance(username, str) and isinstance(password, str):
        return Credential(username=username, password=password)

    raise CredentialError(host, "entry has neither 'auth' nor 'username'/'password'")


class CredentialStore:
    """
    Read-only host → Credential mapping.

    Hosts are normalized (scheme/path stripped, lowercased, Docker Hub aliases
    folded into docker.io) so lookups by image host match document keys.
    """

    def __init__(self, credentials: Optional[Dict[str, Credential]] = None,
                 warnings: Optional[Iterable[CredentialError]] = None):
        self._credentials: Dict[str, Credential] = {
            normalize_registry_host(host): cred for host, cred in (credentials or {}).items()
        }
        self.warnings: List[CredentialError] = list(warnings or [])

    @classmethod
    def from_document(cls, document) -> "CredentialStore":
        """
        Build a store from an already-decoded credentials document.

        Raises:
            CredentialsDocumentError: If the document has no "auths" object
        """
        if not isinstance(document, dict):
            raise CredentialsDocumentError("Credentials document must be a JSON object")
        auths = document.get("auths")
        if not isinstance(auths, dict):
            raise CredentialsDocumentError("Credentials document has no 'auths' object")

        credentials: Dict[str, Credential] = {}
        warnings: List[CredentialError] = []
        for host, entry in auths.items():
            try:
                credentials[host] = _parse_entry(host, entry)
            except CredentialError as e:
                logger.warning(f"Skipping registry credential: {e}")
                warnings.append(e)

        store = cls(credentials, warnings)
        logger.info(
            f"Loaded credentials for {len(store)} registries "
            f"({len(warnings)} malformed entries skipped)"
        )
        return store

    @classmethod
    def from_json(cls, text: str) -> "CredentialStore":
        try:
            document = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            raise CredentialsDocumentError(f"Credentials document is not valid JSON: {e}")
        return cls.from_document(document)

    @classmethod
    def from_file(cls, path: str) -> "CredentialStore":
        """
        Load the credentials document from disk.

        Raises:
            CredentialsDocumentError: If the file is unreadable or malformed
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise CredentialsDocumentError(f"Cannot read credentials file {path}: {e}")
        logger.info(f"Reading registry credentials from {path}")
        return cls.from_json(text)

    def lookup(self, host: str) -> Optional[Credential]:
        """Return the credential for a registry host, or None for anonymous access."""
        return self._credentials.get(normalize_registry_host(host))

    @property
    def hosts(self) -> List[str]:
        return sorted(self._credentials)

    def __contains__(self, host: str) -> bool:
        return normalize_registry_host(host) in self._credentials

    def __len__(self) -> int:
        return len(self._credentials)
