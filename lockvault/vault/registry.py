"""
Vault Registry — index of vault databases and the active vault.

Registry operations are pure: each returns a new, fully validated
VaultRegistry and never mutates its input. RegistryStore persists whole
registries in a single write, so a partially updated registry is never
stored. Legacy single-vault layouts are migrated by an explicit call to
``RegistryStore.migrate_legacy()`` at startup, never from a read path.
"""
import logging
from datetime import datetime
from typing import Optional

import orjson
from pydantic import ValidationError

from ..conf import DEFAULT_VAULT_NAME, LEGACY_FILE_ID_KEY, LEGACY_VAULT_KEY
from ..exceptions import CannotDeleteLastVault, InvalidPayload, MalformedVault, UnknownVault
from ..models import VaultMeta, VaultRegistry, new_id, utcnow
from ..storage import KeyValueStore, file_handle_key, registry_key, vault_key
from .codec import decode_record

logger = logging.getLogger("lockvault.registry")


def clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidPayload("Vault name cannot be empty")
    return name


def _rebuild(registry: VaultRegistry, **changes) -> VaultRegistry:
    data = registry.model_dump()
    data.update(changes)
    return VaultRegistry.model_validate(data)


# ---------------------------------------------------------------------------
# Pure registry operations
# ---------------------------------------------------------------------------

def create_registry(first_vault_meta: VaultMeta, salt: str) -> VaultRegistry:
    """Build the registry on first setup, with one active vault."""
    return VaultRegistry(
        active_vault_id=first_vault_meta.id,
        salt=salt,
        vaults=[first_vault_meta],
    )


def add_vault(registry: VaultRegistry, meta: VaultMeta) -> VaultRegistry:
    """Append meta and make it the active vault."""
    if registry.get(meta.id) is not None:
        raise InvalidPayload(f"Vault {meta.id} already registered")
    return _rebuild(
        registry,
        active_vault_id=meta.id,
        vaults=[m.model_dump() for m in registry.vaults] + [meta.model_dump()],
    )


def rename_vault(registry: VaultRegistry, vault_id: str, new_name: str) -> VaultRegistry:
    """Rename a vault.

    Raises:
        UnknownVault: If vault_id is not registered.
        InvalidPayload: If the new name is blank.
    """
    new_name = clean_name(new_name)
    if registry.get(vault_id) is None:
        raise UnknownVault(f"Vault {vault_id} not found")
    vaults = []
    for meta in registry.vaults:
        item = meta.model_dump()
        if meta.id == vault_id:
            item["name"] = new_name
        vaults.append(item)
    return _rebuild(registry, vaults=vaults)


def delete_vault(registry: VaultRegistry, vault_id: str) -> VaultRegistry:
    """Remove a vault from the registry.

    When the active vault is removed, the first remaining vault in
    collection order becomes active.

    Raises:
        CannotDeleteLastVault: If only one vault is registered.
        UnknownVault: If vault_id is not registered.
    """
    if len(registry.vaults) <= 1:
        raise CannotDeleteLastVault("Cannot delete the only remaining vault")
    if registry.get(vault_id) is None:
        raise UnknownVault(f"Vault {vault_id} not found")
    remaining = [m.model_dump() for m in registry.vaults if m.id != vault_id]
    active = registry.active_vault_id
    if active == vault_id:
        active = remaining[0]["id"]
    return _rebuild(registry, active_vault_id=active, vaults=remaining)


def switch_active(
    registry: VaultRegistry,
    vault_id: str,
    touch_timestamp: Optional[datetime] = None,
) -> VaultRegistry:
    """Make vault_id active and stamp its last_opened time.

    Raises:
        UnknownVault: If vault_id is not registered.
    """
    if registry.get(vault_id) is None:
        raise UnknownVault(f"Vault {vault_id} not found")
    touched = touch_timestamp or utcnow()
    vaults = []
    for meta in registry.vaults:
        item = meta.model_dump()
        if meta.id == vault_id:
            item["last_opened"] = touched
        vaults.append(item)
    return _rebuild(registry, active_vault_id=vault_id, vaults=vaults)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class RegistryStore:
    """Loads, saves and migrates the registry record."""

    def __init__(self, storage: KeyValueStore):
        self._storage = storage

    async def load(self) -> Optional[VaultRegistry]:
        """Read the registry record.

        Returns:
            The VaultRegistry, or None before the first setup.

        Raises:
            MalformedVault: If the stored record does not parse.
        """
        raw = await self._storage.get(registry_key())
        if raw is None:
            return None
        try:
            return VaultRegistry.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as err:
            raise MalformedVault(f"Registry record does not parse: {err}") from err

    async def save(self, registry: VaultRegistry) -> VaultRegistry:
        """Persist registry, replacing the stored record.

        Args:
            registry: Complete registry to write.

        Returns:
            The same registry, for chaining.
        """
        await self._storage.set(
            registry_key(), orjson.dumps(registry.model_dump(mode="json")),
        )
        logger.debug(
            "Registry saved: active=%s vaults=%d",
            registry.active_vault_id, len(registry.vaults),
        )
        return registry

    async def has_legacy(self) -> bool:
        return await self._storage.get(LEGACY_VAULT_KEY) is not None

    async def migrate_legacy(
        self,
        default_name: str = DEFAULT_VAULT_NAME,
    ) -> Optional[VaultRegistry]:
        """Move a pre multi-vault blob into the registry layout.

        Returns the new registry, or None when there is nothing to migrate.
        Running it again is a no-op because the legacy keys are removed.
        """
        legacy = await self._storage.get(LEGACY_VAULT_KEY)
        if legacy is None:
            return None

        existing = await self.load()
        if existing is not None:
            # An earlier migration stopped before cleanup.
            stored = await self._storage.get(vault_key(existing.active_vault_id))
            if stored == legacy:
                await self._remove_legacy_keys()
                logger.info("Removed leftover legacy vault keys")
            else:
                logger.warning(
                    "Legacy vault data found next to an existing registry; "
                    "leaving it untouched"
                )
            return None

        encrypted = decode_record(legacy)
        meta = VaultMeta(id=new_id(), name=clean_name(default_name))
        await self._storage.set(vault_key(meta.id), legacy)
        handle = await self._storage.get(LEGACY_FILE_ID_KEY)
        if handle is not None:
            await self._storage.set(file_handle_key(meta.id), handle)
        registry = await self.save(create_registry(meta, encrypted.salt))
        await self._remove_legacy_keys()
        logger.info("Migrated legacy vault into registry as vault=%s", meta.id)
        return registry

    async def _remove_legacy_keys(self) -> None:
        await self._storage.remove(LEGACY_VAULT_KEY)
        await self._storage.remove(LEGACY_FILE_ID_KEY)
