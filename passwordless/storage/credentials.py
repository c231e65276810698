from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import os
import secrets
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

from passwordless.logging import get_logger
from passwordless.storage.errors import CredentialStoreError

logger = get_logger(__name__)


class CredentialStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryCredentialStore:
    """Process-local credential store; contents are lost on exit."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    async def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temp file and rename, mode 0600."""
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}_", suffix=".tmp"
    )
    try:
        try:
            os.write(fd, data)
            os.fchmod(fd, 0o600)
            os.fsync(fd)
        finally:
            os.close(fd)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


class FileCredentialStore:
    """Durable credential store backed by one JSON file.

    Values are encrypted with Fernet before they reach disk. Every write
    replaces the whole file atomically, so a concurrent reader observes either
    the previous or the new contents and a crash never leaves a half-written
    credential behind.
    """

    FILENAME = "credentials.json"
    KEY_FILENAME = ".credential_key"

    def __init__(self, root: str | Path, *, encryption_key: str | None = None) -> None:
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            os.chmod(self.root, 0o700)
        except PermissionError:
            # Directory may be owned by another user in shared setups
            pass
        except OSError as exc:
            raise CredentialStoreError(
                "Unable to prepare credential store directory",
                detail={"path": str(self.root), "error": str(exc)},
            ) from exc
        self._lock = threading.RLock()
        self._cipher = self._build_cipher(encryption_key)

    @property
    def path(self) -> Path:
        return self.root / self.FILENAME

    @staticmethod
    def _derive_cipher_key(key_material: str) -> bytes:
        return base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())

    def _build_cipher(self, key_material: str | None) -> Fernet:
        material = key_material
        if not material:
            key_path = self.root / self.KEY_FILENAME
            try:
                if key_path.exists() and not key_path.is_symlink():
                    material = key_path.read_text().strip()
            except OSError as exc:
                logger.error("credential_key_read_failed", error=str(exc), path=str(key_path))
            if not material:
                generated = secrets.token_urlsafe(64)
                try:
                    _atomic_write(key_path, generated.encode())
                except OSError as exc:
                    raise CredentialStoreError(
                        "Unable to persist credential encryption key",
                        detail={"path": str(key_path)},
                    ) from exc
                material = generated
        return Fernet(self._derive_cipher_key(material))

    def _read_all(self) -> Dict[str, str]:
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise CredentialStoreError(
                "Unable to read credential store", detail={"path": str(self.path)}
            ) from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CredentialStoreError(
                "Credential store file is corrupt", detail={"path": str(self.path)}
            ) from exc
        if not isinstance(data, dict):
            raise CredentialStoreError(
                "Credential store file is corrupt", detail={"path": str(self.path)}
            )
        return {str(k): str(v) for k, v in data.items()}

    def _write_all(self, values: Dict[str, str]) -> None:
        try:
            _atomic_write(self.path, json.dumps(values, indent=2).encode())
        except OSError as exc:
            raise CredentialStoreError(
                "Unable to write credential store", detail={"path": str(self.path)}
            ) from exc

    def _get_sync(self, key: str) -> Optional[str]:
        with self._lock:
            encrypted = self._read_all().get(key)
        if encrypted is None:
            return None
        try:
            return self._cipher.decrypt(encrypted.encode()).decode()
        except InvalidToken as exc:
            raise CredentialStoreError(
                "Stored credential cannot be decrypted with the configured key",
                detail={"key": key},
            ) from exc

    def _set_sync(self, key: str, value: str) -> None:
        encrypted = self._cipher.encrypt(value.encode()).decode()
        with self._lock:
            values = self._read_all()
            values[key] = encrypted
            self._write_all(values)

    def _remove_sync(self, key: str) -> None:
        with self._lock:
            values = self._read_all()
            if key not in values:
                return
            del values[key]
            self._write_all(values)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove_sync, key)


__all__ = [
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
]
