"""Contracts for the remote object store and the bearer-token provider.

The transport client itself (search/upload/download over a cloud API)
lives outside this package; LockVault only depends on these shapes.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

REMOTE_SUFFIX = ".vault.enc"


def vault_file_name(vault_id: str) -> str:
    """Deterministic remote object name for a vault."""
    return f"{vault_id}{REMOTE_SUFFIX}"


@dataclass(frozen=True)
class RemoteFile:
    handle: str
    modified_time: datetime

    def __post_init__(self):
        # naive timestamps from a transport are taken as UTC
        if self.modified_time.tzinfo is None:
            object.__setattr__(
                self, "modified_time", self.modified_time.replace(tzinfo=timezone.utc),
            )


@runtime_checkable
class RemoteStore(Protocol):
    async def find(self, filename: str, token: str) -> Optional[RemoteFile]:
        ...

    async def download(self, handle: str, token: str) -> bytes:
        ...

    async def upload_new(self, filename: str, data: bytes, token: str) -> str:
        ...

    async def upload_overwrite(self, handle: str, data: bytes, token: str) -> None:
        ...

    async def delete(self, handle: str, token: str) -> None:
        ...


@runtime_checkable
class TokenProvider(Protocol):
    async def get_token(self, interactive: bool = False) -> Optional[str]:
        """Return a bearer token.

        Silent requests return None when no token is available;
        interactive requests raise when the user refuses access.
        """
        ...
