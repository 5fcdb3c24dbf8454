"""Shared fixtures: in-memory storage, fake remote store and token provider."""
import asyncio
from datetime import datetime
from typing import Optional

import pytest

from lockvault.conf import LockVaultConfig
from lockvault.models import utcnow
from lockvault.remote import RemoteFile
from lockvault.storage import MemoryStorage
from lockvault.vault.session import VaultSession


class FakeRemoteStore:
    """In-memory remote object store with failure and latency switches."""

    def __init__(self):
        self.files: dict[str, dict] = {}
        self.fail = False
        self.delay = 0.0
        self.calls: list[str] = []
        self._counter = 0
        self._gates: dict[str, tuple[asyncio.Event, asyncio.Event]] = {}

    def block(self, op: str) -> tuple[asyncio.Event, asyncio.Event]:
        """Hold the next ``op`` call; returns (reached, release) events."""
        gate = (asyncio.Event(), asyncio.Event())
        self._gates[op] = gate
        return gate

    async def _enter(self, op: str) -> None:
        self.calls.append(op)
        gate = self._gates.pop(op, None)
        if gate is not None:
            reached, release = gate
            reached.set()
            await release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{op}: network unreachable")

    async def find(self, filename: str, token: str) -> Optional[RemoteFile]:
        await self._enter("find")
        for handle, item in self.files.items():
            if item["name"] == filename:
                return RemoteFile(handle=handle, modified_time=item["modified"])
        return None

    async def download(self, handle: str, token: str) -> bytes:
        await self._enter("download")
        return self.files[handle]["data"]

    async def upload_new(self, filename: str, data: bytes, token: str) -> str:
        await self._enter("upload_new")
        self._counter += 1
        handle = f"file-{self._counter}"
        self.files[handle] = {"name": filename, "data": data, "modified": utcnow()}
        return handle

    async def upload_overwrite(self, handle: str, data: bytes, token: str) -> None:
        await self._enter("upload_overwrite")
        if handle not in self.files:
            raise KeyError(handle)
        self.files[handle].update(data=data, modified=utcnow())

    async def delete(self, handle: str, token: str) -> None:
        await self._enter("delete")
        self.files.pop(handle, None)

    def by_name(self, filename: str) -> Optional[dict]:
        for item in self.files.values():
            if item["name"] == filename:
                return item
        return None

    def set_modified(self, filename: str, when: datetime) -> None:
        self.by_name(filename)["modified"] = when


class GatedStorage(MemoryStorage):
    """MemoryStorage that can hold the next write until released."""

    def __init__(self):
        super().__init__()
        self._gate: Optional[tuple[asyncio.Event, asyncio.Event]] = None

    def block_next_set(self) -> tuple[asyncio.Event, asyncio.Event]:
        self._gate = (asyncio.Event(), asyncio.Event())
        return self._gate

    async def set(self, key: str, value: bytes) -> None:
        gate, self._gate = self._gate, None
        if gate is not None:
            gate[0].set()
            await gate[1].wait()
        await super().set(key, value)


class FakeTokens:
    """Token provider; ``token=None`` simulates an offline/unauthorized user."""

    def __init__(self, token: Optional[str] = "bearer-token", grant: bool = True):
        self.token = token
        self.grant = grant

    async def get_token(self, interactive: bool = False) -> Optional[str]:
        if interactive:
            if not self.grant:
                raise PermissionError("User declined access")
            return self.token or "interactive-token"
        return self.token


@pytest.fixture
def config():
    """Low-iteration configuration to keep key derivation fast."""
    return LockVaultConfig(kdf_iterations=1000, auto_lock_seconds=60, remote_timeout=1)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def gated_storage():
    return GatedStorage()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def tokens():
    return FakeTokens()


@pytest.fixture
def session(storage, config):
    """Local-only session."""
    return VaultSession(storage, config=config)


@pytest.fixture
def synced_session(storage, remote, tokens, config):
    """Session wired to the fake remote store."""
    return VaultSession(storage, remote=remote, tokens=tokens, config=config)
