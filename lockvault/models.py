"""
LockVault data model.

VaultEntry and Vault only ever exist in memory while a session is unlocked;
EncryptedVault is the at-rest form, VaultMeta/VaultRegistry are the
cleartext index of all vault databases.
"""
import uuid
from enum import Enum
from typing import Optional
from datetime import datetime, timezone

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Category(str, Enum):
    WORK = "Work"
    PERSONAL = "Personal"
    FINANCE = "Finance"
    SOCIAL = "Social"
    OTHER = "Other"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    OFFLINE = "offline"
    CONFLICT = "conflict"
    ERROR = "error"


class VaultEntry(BaseModel):
    """One stored credential."""

    id: str = Field(default_factory=new_id, min_length=1)
    site_name: str
    url: str = ""
    username: str = ""
    password: str
    category: Category = Category.OTHER
    favorite: bool = False
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Vault(BaseModel):
    """One encryption domain: a versioned collection of entries."""

    vault_id: str = Field(default_factory=new_id)
    version: int = Field(default=1, ge=0)
    last_updated: datetime = Field(default_factory=utcnow)
    salt: str
    entries: list[VaultEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_entries(self) -> "Vault":
        """Entry identifiers must be unique inside a vault."""
        seen = set()
        for entry in self.entries:
            if entry.id in seen:
                raise ValueError(f"Duplicate entry id {entry.id}")
            seen.add(entry.id)
        return self

    def get_entry(self, entry_id: str) -> Optional[VaultEntry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None


class EncryptedVault(BaseModel):
    """At-rest representation of a Vault.

    ``salt`` and ``last_updated`` stay in cleartext so a vault can be
    re-keyed without an index and compared for staleness without
    decryption. All binary fields are base64 text.
    """

    ciphertext: str
    iv: str
    salt: str
    last_updated: datetime


class VaultMeta(BaseModel):
    """Registry-visible descriptor of a vault."""

    id: str
    name: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    last_opened: datetime = Field(default_factory=utcnow)


class VaultRegistry(BaseModel):
    """Durable index of vault databases and the active one."""

    active_vault_id: str
    salt: str
    vaults: list[VaultMeta] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_active_vault(self) -> "VaultRegistry":
        """Ensure ids are unique and active_vault_id names a member."""
        ids = [meta.id for meta in self.vaults]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate vault id in registry")
        if ids and self.active_vault_id not in ids:
            raise ValueError(
                f"active_vault_id {self.active_vault_id} not found in "
                f"registry (available: {ids})"
            )
        return self

    def get(self, vault_id: str) -> Optional[VaultMeta]:
        for meta in self.vaults:
            if meta.id == vault_id:
                return meta
        return None

    @property
    def active(self) -> Optional[VaultMeta]:
        return self.get(self.active_vault_id)


class SessionState(BaseModel):
    """Snapshot reported to UI collaborators by get-state."""

    is_unlocked: bool
    is_first_time: bool
    sync_status: SyncStatus
    last_synced: Optional[datetime] = None
    active_vault_id: Optional[str] = None
    active_vault_name: Optional[str] = None
    vault_list: list[VaultMeta] = Field(default_factory=list)
