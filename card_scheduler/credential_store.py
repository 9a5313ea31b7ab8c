"""
Credential store implementations

The store is a flat string key-value map. It holds the token pair (one entry
per token) and the serialized schedule list.
"""

import json
import os
import threading
from typing import Dict, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

from .errors import PersistenceFailure
from .logging_utils import get_logger

logger = get_logger(__name__)


class CredentialStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCredentialStore:
    """Process-local store, used for tests and ephemeral runs"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FernetFileStore:
    """
    Encrypted file-backed store.

    The whole map is serialized to JSON and encrypted with Fernet. Writes go
    to a temporary file that replaces the original, so a crash mid-write
    leaves the previous contents intact.
    """

    def __init__(self, path: str, key: str):
        self.path = path
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        self._lock = threading.Lock()

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "rb") as f:
                payload = self._fernet.decrypt(f.read())
            data = json.loads(payload.decode("utf-8"))
        except (OSError, InvalidToken, ValueError) as e:
            raise PersistenceFailure(f"Failed to read credential store {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceFailure(f"Credential store {self.path} is not a key-value map")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        tmp_path = f"{self.path}.tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            token = self._fernet.encrypt(json.dumps(data).encode("utf-8"))
            with open(tmp_path, "wb") as f:
                f.write(token)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceFailure(f"Failed to write credential store {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)
            logger.debug(f"Stored key {key} in {self.path}")

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)
