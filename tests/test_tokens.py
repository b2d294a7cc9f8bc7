"""Tests for the companion token store.

Tests cover:
- Token issuance and persistence
- Validation of good, tampered, foreign and malformed tokens
"""

import json

import jwt
import pytest
from cryptography.fernet import Fernet
from jwt.utils import base64url_encode

from companion_server.settings import AUTH_TOKENS_KEY, SettingsStore
from companion_server.tokens import TokenStore


class TestIssue:
    """Tests for token issuance."""

    def test_issue_returns_signed_token(self, token_store):
        token = token_store.issue("my-app")

        assert token.app_id == "my-app"
        assert token.value
        claims = jwt.decode(token.value, options={"verify_signature": False})
        assert claims["sub"] == "my-app"
        assert claims["jti"] == token.id

    def test_multiple_tokens_per_app(self, token_store):
        first = token_store.issue("my-app")
        second = token_store.issue("my-app")

        assert first.value != second.value
        assert token_store.validate(first.value) == "my-app"
        assert token_store.validate(second.value) == "my-app"

    def test_records_are_encrypted_at_rest(self, settings, token_store):
        token = token_store.issue("my-app")

        raw = settings.get(AUTH_TOKENS_KEY)
        assert "my-app" not in raw
        records = json.loads(settings.get_secret(AUTH_TOKENS_KEY))
        assert records[0]["id"] == token.id
        assert token.value not in json.dumps(records)

    def test_tokens_survive_restart(self, tmp_path):
        key = Fernet.generate_key()
        settings = SettingsStore(tmp_path / "settings.json", key)
        token = TokenStore(settings).issue("my-app")

        reloaded = TokenStore(SettingsStore(tmp_path / "settings.json", key))
        assert reloaded.validate(token.value) == "my-app"


class TestValidate:
    """Tests for token validation."""

    @pytest.mark.parametrize("value", [None, "", 42, "not-a-jwt", ["list"]])
    def test_malformed_values_are_invalid(self, token_store, value):
        assert token_store.validate(value) is None

    def test_tampered_token(self, token_store):
        token = token_store.issue("my-app")
        header, _, signature = token.value.split(".")
        payload = base64url_encode(json.dumps({"jti": token.id, "sub": "evil-app", "iat": token.issued_at}).encode())
        tampered = ".".join([header, payload.decode(), signature])
        assert token_store.validate(tampered) is None

    def test_token_from_other_installation(self, token_store):
        other = TokenStore(SettingsStore())
        token = other.issue("my-app")
        assert token_store.validate(token.value) is None

    def test_forged_token_with_known_id(self, settings, token_store):
        token = token_store.issue("my-app")
        forged = jwt.encode(
            {"jti": token.id, "sub": "my-app", "iat": token.issued_at, "extra": 1},
            settings.get_secret("integrations.companionServerSigningKey"),
            algorithm="HS256",
        )
        assert token_store.validate(forged) is None

    def test_lookup_exposes_token_id(self, token_store):
        token = token_store.issue("my-app")
        found = token_store.lookup(token.value)
        assert found.id == token.id
        assert found.app_id == "my-app"

    def test_wiped_store_invalidates(self, settings, token_store):
        token = token_store.issue("my-app")
        settings.set(AUTH_TOKENS_KEY, None)
        assert token_store.validate(token.value) is None
