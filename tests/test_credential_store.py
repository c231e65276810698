"""Tests for the durable session credential store."""

import json
import os
import stat

import pytest

from passwordless.storage.credentials import FileCredentialStore, MemoryCredentialStore
from passwordless.storage.errors import CredentialStoreError

KEY = "@access_token"


@pytest.fixture
def file_store(tmp_path):
    return FileCredentialStore(tmp_path, encryption_key="unit-test-key-material")


class TestMemoryCredentialStore:
    async def test_get_missing_returns_none(self):
        store = MemoryCredentialStore()
        assert await store.get(KEY) is None

    async def test_set_overwrites_previous_value(self):
        store = MemoryCredentialStore()
        await store.set(KEY, "tok-1")
        await store.set(KEY, "tok-2")
        assert await store.get(KEY) == "tok-2"

    async def test_remove_is_idempotent(self):
        store = MemoryCredentialStore()
        await store.remove(KEY)
        await store.set(KEY, "tok-1")
        await store.remove(KEY)
        await store.remove(KEY)
        assert await store.get(KEY) is None


class TestFileCredentialStore:
    async def test_value_survives_new_instance(self, tmp_path, file_store):
        await file_store.set(KEY, "tok-abc")

        reopened = FileCredentialStore(tmp_path, encryption_key="unit-test-key-material")

        assert await reopened.get(KEY) == "tok-abc"

    async def test_value_is_encrypted_on_disk(self, file_store):
        await file_store.set(KEY, "tok-plaintext-marker")

        raw = file_store.path.read_text()

        assert "tok-plaintext-marker" not in raw
        assert KEY in json.loads(raw)

    async def test_only_one_value_per_key(self, file_store):
        await file_store.set(KEY, "tok-1")
        await file_store.set(KEY, "tok-2")

        data = json.loads(file_store.path.read_text())

        assert list(data.keys()) == [KEY]
        assert await file_store.get(KEY) == "tok-2"

    async def test_remove_deletes_value_and_is_idempotent(self, file_store):
        await file_store.remove(KEY)
        await file_store.set(KEY, "tok-1")
        await file_store.remove(KEY)
        await file_store.remove(KEY)

        assert await file_store.get(KEY) is None
        assert KEY not in json.loads(file_store.path.read_text())

    async def test_store_file_is_private(self, file_store):
        await file_store.set(KEY, "tok-1")

        mode = stat.S_IMODE(os.stat(file_store.path).st_mode)

        assert mode == 0o600

    async def test_no_temp_files_left_behind(self, tmp_path, file_store):
        await file_store.set(KEY, "tok-1")
        await file_store.set(KEY, "tok-2")

        leftovers = [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")]

        assert leftovers == []

    async def test_generated_key_is_reused_across_instances(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CREDENTIAL_ENCRYPTION_KEY", raising=False)
        first = FileCredentialStore(tmp_path)
        await first.set(KEY, "tok-1")

        key_path = tmp_path / FileCredentialStore.KEY_FILENAME
        assert key_path.exists()
        assert stat.S_IMODE(os.stat(key_path).st_mode) == 0o600

        second = FileCredentialStore(tmp_path)
        assert await second.get(KEY) == "tok-1"

    async def test_wrong_key_raises_store_error(self, tmp_path, file_store):
        await file_store.set(KEY, "tok-1")

        other = FileCredentialStore(tmp_path, encryption_key="a-different-key")

        with pytest.raises(CredentialStoreError):
            await other.get(KEY)

    async def test_corrupt_file_raises_store_error(self, file_store):
        file_store.path.write_text("{not json")

        with pytest.raises(CredentialStoreError) as excinfo:
            await file_store.get(KEY)

        assert excinfo.value.error_code == "credential_store_error"

    async def test_key_comes_only_from_constructor(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CREDENTIAL_ENCRYPTION_KEY", "ambient-env-key")
        store = FileCredentialStore(tmp_path)
        await store.set(KEY, "tok-1")

        assert (tmp_path / FileCredentialStore.KEY_FILENAME).exists()
        with pytest.raises(CredentialStoreError):
            await FileCredentialStore(tmp_path, encryption_key="ambient-env-key").get(KEY)
