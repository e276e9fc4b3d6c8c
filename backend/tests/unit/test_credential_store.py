"""
Unit tests for the registry credential store.

Tests verify:
- auth field decoding (base64 "user:pass")
- Malformed entries are collected as warnings, never abort the load
- Malformed documents are fatal
- Host normalization for lookups
"""

import base64
import json

import pytest

from registry.credentials import Credential, CredentialStore
from registry.errors import CredentialError, CredentialsDocumentError


def _auth(raw: str) -> str:
    return base64.b64encode(raw.encode()).decode()


class TestLoadDocument:

    def test_decodes_auth_entries(self):
        store = CredentialStore.from_document({
            "auths": {
                "ghcr.io": {"auth": _auth("ci-bot:s3cret")},
                "registry.example.com:5000": {"auth": _auth("admin:hunter2")},
            }
        })

        assert store.lookup("ghcr.io") == Credential("ci-bot", "s3cret")
        assert store.lookup("registry.example.com:5000") == Credential("admin", "hunter2")
        assert store.warnings == []
        assert len(store) == 2

    def test_explicit_username_password_accepted(self):
        store = CredentialStore.from_document({
            "auths": {"quay.io": {"username": "robot", "password": "token"}}
        })

        assert store.lookup("quay.io") == Credential("robot", "token")

    def test_empty_auths_is_valid(self):
        store = CredentialStore.from_document({"auths": {}})

        assert len(store) == 0
        assert store.lookup("ghcr.io") is None

    def test_from_json(self):
        text = json.dumps({"auths": {"ghcr.io": {"auth": _auth("u:p")}}})

        assert CredentialStore.from_json(text).lookup("ghcr.io") == Credential("u", "p")


class TestMalformedEntries:
    """One bad entry must not stop the others from loading"""

    @pytest.mark.parametrize("entry,reason", [
        ({"auth": "!!!not-base64!!!"}, "bad base64"),
        ({"auth": _auth("no-colon")}, "missing colon"),
        ({"auth": _auth("too:many:colons")}, "multiple colons"),
        ({"auth": 12345}, "auth not a string"),
        ({}, "no auth at all"),
        ("just-a-string", "entry not an object"),
    ])
    def test_bad_entry_collected_as_warning(self, entry, reason):
        store = CredentialStore.from_document({
            "auths": {
                "bad.example.com": entry,
                "ghcr.io": {"auth": _auth("ci-bot:s3cret")},
            }
        })

        assert store.lookup("ghcr.io") == Credential("ci-bot", "s3cret"), reason
        assert "bad.example.com" not in store
        assert len(store.warnings) == 1
        assert isinstance(store.warnings[0], CredentialError)
        assert store.warnings[0].host == "bad.example.com"

    def test_every_bad_entry_reported(self):
        store = CredentialStore.from_document({
            "auths": {
                "a.example.com": {"auth": _auth("nocolon")},
                "b.example.com": {"auth": "%%%"},
                "c.example.com": {"auth": _auth("user:pass")},
            }
        })

        assert sorted(w.host for w in store.warnings) == ["a.example.com", "b.example.com"]
        assert store.hosts == ["c.example.com"]


class TestMalformedDocument:
    """Problems with the document as a whole are fatal"""

    @pytest.mark.parametrize("text", [
        "not json",
        "",
        "[]",
        '{"credsStore": "desktop"}',
        '{"auths": []}',
    ])
    def test_fatal_documents(self, text):
        with pytest.raises(CredentialsDocumentError):
            CredentialStore.from_json(text)

    def test_unreadable_file_is_fatal(self, tmp_path):
        with pytest.raises(CredentialsDocumentError):
            CredentialStore.from_file(str(tmp_path / "missing.json"))

    def test_from_file(self, tmp_path):
        path = tmp_path / ".dockerconfigjson"
        path.write_text(json.dumps({"auths": {"ghcr.io": {"auth": _auth("u:p")}}}))

        store = CredentialStore.from_file(str(path))

        assert store.lookup("ghcr.io") == Credential("u", "p")


class TestLookupNormalization:

    def test_docker_hub_legacy_key_matches_docker_io(self):
        """Docker writes Hub credentials under https://index.docker.io/v1/"""
        store = CredentialStore.from_document({
            "auths": {"https://index.docker.io/v1/": {"auth": _auth("hub:pw")}}
        })

        assert store.lookup("docker.io") == Credential("hub", "pw")
        assert store.lookup("registry-1.docker.io") == Credential("hub", "pw")
        assert "docker.io" in store

    def test_lookup_case_insensitive(self):
        store = CredentialStore({"GHCR.io": Credential("u", "p")})

        assert store.lookup("ghcr.io") == Credential("u", "p")

    def test_unknown_host_is_anonymous(self, credential_store):
        assert credential_store.lookup("quay.io") is None

    def test_repr_hides_password(self):
        assert "s3cret" not in repr(Credential("ci-bot", "s3cret"))
