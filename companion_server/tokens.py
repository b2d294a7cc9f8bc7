"""
Companion authentication tokens
Tokens are HS256 JWTs; the issued records persist in encrypted settings
"""
import dataclasses
import hashlib
import hmac
import json
import logging
import secrets
import time
import uuid
from typing import List, Optional

import jwt

from .settings import AUTH_TOKENS_KEY, SIGNING_KEY_KEY, SettingsStore

logger = logging.getLogger("companion_server")

ALGORITHM = "HS256"


@dataclasses.dataclass(frozen=True)
class AuthToken:
    id: str
    value: str
    app_id: str
    issued_at: int


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class TokenStore:
    """Issues and validates long-lived tokens per companion app"""

    def __init__(self, settings: SettingsStore):
        self._settings = settings

    def _signing_key(self) -> str:
        key = self._settings.get_secret(SIGNING_KEY_KEY)
        if not key:
            key = secrets.token_hex(32)
            self._settings.set_secret(SIGNING_KEY_KEY, key)
        return key

    def _records(self) -> List[dict]:
        raw = self._settings.get_secret(AUTH_TOKENS_KEY)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored companion tokens are corrupt, ignoring them")
            return []
        return records if isinstance(records, list) else []

    def issue(self, app_id: str) -> AuthToken:
        """
        Mint a token for a companion app and persist its record

        Args:
            app_id: Name the companion app paired under

        Returns:
            The issued AuthToken, including the secret value
        """
        token_id = uuid.uuid4().hex
        issued_at = int(time.time())
        payload = {
            "jti": token_id,
            "sub": app_id,
            "iat": issued_at,
        }
        value = jwt.encode(payload, self._signing_key(), algorithm=ALGORITHM)

        records = self._records()
        records.append({
            "id": token_id,
            "appId": app_id,
            "issuedAt": issued_at,
            "digest": _digest(value),
        })
        self._settings.set_secret(AUTH_TOKENS_KEY, json.dumps(records))
        logger.info("🔐 Issued companion token %s for %s", token_id, app_id)
        return AuthToken(id=token_id, value=value, app_id=app_id, issued_at=issued_at)

    def lookup(self, value) -> Optional[AuthToken]:
        """Resolve a presented token value to its record, or None"""
        if not isinstance(value, str) or not value:
            return None
        try:
            payload = jwt.decode(
                value,
                self._signing_key(),
                algorithms=[ALGORITHM],
                options={"require": ["jti", "sub", "iat"]},
            )
        except jwt.InvalidTokenError:
            return None

        presented = _digest(value)
        for record in self._records():
            if record.get("id") != payload["jti"]:
                continue
            if not hmac.compare_digest(record.get("digest", ""), presented):
                return None
            if record.get("appId") != payload["sub"]:
                return None
            return AuthToken(
                id=record["id"],
                value=value,
                app_id=record["appId"],
                issued_at=record.get("issuedAt", payload["iat"]),
            )
        return None

    def validate(self, value) -> Optional[str]:
        """Return the app id a token was issued to, or None if invalid"""
        token = self.lookup(value)
        return token.app_id if token else None
