"""
Configuration and persistent settings storage
Secret fields are encrypted at rest with Fernet
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("companion_server")

PORT = int(os.environ.get("PORT", 9863))
SERVER_HOST = os.environ.get("SERVER_HOST", "0.0.0.0")
DATA_DIR = Path(os.getenv("YTMD_COMPANION_DATA_DIR", "./data"))
SECRET_KEY = os.environ.get("YTMD_COMPANION_SECRET_KEY", "")
ALLOW_PAIRING = os.environ.get("YTMD_COMPANION_ALLOW_PAIRING", "") in ("1", "true", "yes")

AUTH_WINDOW_ENABLED_KEY = "integrations.companionServerAuthWindowEnabled"
AUTH_TOKENS_KEY = "integrations.companionServerAuthTokens"
SIGNING_KEY_KEY = "integrations.companionServerSigningKey"


def load_or_create_secret_key(key_file: Path) -> bytes:
    """Read the Fernet key from disk, generating it on first run"""
    if SECRET_KEY:
        return SECRET_KEY.encode()
    if key_file.exists():
        return key_file.read_bytes().strip()
    key = Fernet.generate_key()
    key_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.write_bytes(key)
    os.chmod(key_file, 0o600)
    logger.info("🔑 Generated new settings encryption key at %s", key_file)
    return key


class SettingsStore:
    """
    Dotted-key settings document, optionally backed by a JSON file.
    With no path the store lives in memory only.
    """

    def __init__(self, path: Optional[Path] = None, secret_key: Optional[bytes] = None):
        self.path = Path(path) if path else None
        self._fernet = Fernet(secret_key or Fernet.generate_key())
        self._data: dict = {}
        if self.path and self.path.exists():
            with open(self.path, "r", encoding="utf-8") as settings_file:
                self._data = json.load(settings_file)
            logger.debug("Loaded settings from %s", self.path)

    @classmethod
    def from_data_dir(cls, data_dir: Path = DATA_DIR) -> "SettingsStore":
        data_dir.mkdir(parents=True, exist_ok=True)
        key = load_or_create_secret_key(data_dir / "secret.key")
        return cls(data_dir / "settings.json", key)

    def get(self, key: str, default: Any = None) -> Any:
        node = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
        self._save()

    def get_secret(self, key: str) -> Optional[str]:
        """Decrypt a secret field; unreadable values count as missing"""
        encrypted = self.get(key)
        if not encrypted:
            return None
        try:
            return self._fernet.decrypt(encrypted.encode()).decode()
        except (InvalidToken, AttributeError, ValueError):
            logger.warning("Could not decrypt setting %s", key)
            return None

    def set_secret(self, key: str, value: str) -> None:
        self.set(key, self._fernet.encrypt(value.encode()).decode())

    def _save(self) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as settings_file:
            json.dump(self._data, settings_file, indent=2)
        os.replace(tmp_path, self.path)
