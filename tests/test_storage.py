"""Tests for the key-value storage backends."""
import stat
from datetime import datetime, timezone

import pytest

from lockvault.remote import RemoteFile, RemoteStore, vault_file_name
from lockvault.storage import FileStorage, KeyValueStore, MemoryStorage, vault_key


class TestMemoryStorage:
    @pytest.mark.asyncio
    async def test_get_set_remove(self):
        storage = MemoryStorage()
        assert await storage.get("a") is None
        await storage.set("a", b"1")
        assert await storage.get("a") == b"1"
        await storage.remove("a")
        await storage.remove("a")
        assert storage.keys() == []

    def test_satisfies_protocol(self):
        assert isinstance(MemoryStorage(), KeyValueStore)


class TestFileStorage:
    @pytest.mark.asyncio
    async def test_roundtrip(self, tmp_path):
        storage = FileStorage(tmp_path / "store")
        key = vault_key("2f0c-vault")
        await storage.set(key, b"sealed bytes")
        assert await storage.get(key) == b"sealed bytes"
        await storage.set(key, b"replaced")
        assert await storage.get(key) == b"replaced"

        await storage.remove(key)
        assert await storage.get(key) is None
        await storage.remove(key)

    @pytest.mark.asyncio
    async def test_private_permissions(self, tmp_path):
        directory = tmp_path / "store"
        storage = FileStorage(directory)
        await storage.set("lockvault:registry", b"{}")

        assert stat.S_IMODE(directory.stat().st_mode) == 0o700
        [record] = list(directory.iterdir())
        assert ":" not in record.name
        assert stat.S_IMODE(record.stat().st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_separate_instances_share_directory(self, tmp_path):
        await FileStorage(tmp_path).set("k", b"v")
        assert await FileStorage(tmp_path).get("k") == b"v"


def test_remote_file_name():
    assert vault_file_name("abc") == "abc.vault.enc"


def test_fake_remote_matches_protocol(remote):
    assert isinstance(remote, RemoteStore)


def test_remote_file_naive_time_is_utc():
    found = RemoteFile(handle="h", modified_time=datetime(2026, 3, 1, 12, 0))
    assert found.modified_time == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
