"""
Command protocol consumed by UI collaborators.

Each message is ``{"type": <MessageType>, "payload": <any>}`` and every
response is either ``{"success": true, "data": ...}`` or
``{"success": false, "error": <error kind>}``. Errors never escape as
exceptions.
"""
import logging
from enum import Enum
from typing import Any, Mapping

import orjson
from pydantic import BaseModel, ValidationError

from .exceptions import InvalidPayload, LockVaultError
from .generator import DEFAULT_OPTIONS, PasswordOptions, calculate_entropy, strength_label
from .vault.session import VaultSession

logger = logging.getLogger("lockvault.commands")


class MessageType(str, Enum):
    SETUP = "SETUP"
    UNLOCK = "UNLOCK"
    LOCK = "LOCK"
    GET_STATE = "GET_STATE"
    GET_VAULT = "GET_VAULT"
    LIST_VAULTS = "LIST_VAULTS"
    CREATE_VAULT_DB = "CREATE_VAULT_DB"
    SWITCH_VAULT = "SWITCH_VAULT"
    RENAME_VAULT_DB = "RENAME_VAULT_DB"
    DELETE_VAULT_DB = "DELETE_VAULT_DB"
    SAVE_ENTRY = "SAVE_ENTRY"
    DELETE_ENTRY = "DELETE_ENTRY"
    BULK_IMPORT = "BULK_IMPORT"
    IMPORT_CSV = "IMPORT_CSV"
    GENERATE_PASSWORD = "GENERATE_PASSWORD"
    GET_ENTRIES_FOR_URL = "GET_ENTRIES_FOR_URL"
    SYNC_VAULT = "SYNC_VAULT"
    EXPORT_VAULT = "EXPORT_VAULT"


def _default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def to_jsonable(data: Any) -> Any:
    """Convert models, datetimes and enums into plain JSON values."""
    return orjson.loads(orjson.dumps(data, default=_default))


def _field(payload: Any, name: str, kind: type = str) -> Any:
    """Pull one required, typed field out of a command payload.

    Args:
        payload: Raw payload from the message.
        name: Field to read.
        kind: Expected Python type of the value.

    Returns:
        The field value.

    Raises:
        InvalidPayload: If payload is not a mapping or the field is
            missing or of the wrong type.
    """
    if not isinstance(payload, Mapping):
        raise InvalidPayload("Payload must be an object")
    value = payload.get(name)
    if not isinstance(value, kind):
        raise InvalidPayload(f"Missing or invalid field: {name}")
    return value


def success(data: Any = None) -> dict:
    """Build a success envelope.

    Args:
        data: Optional result; converted with ``to_jsonable``.

    Returns:
        ``{"success": True}`` plus ``"data"`` when data is not None.
    """
    response = {"success": True}
    if data is not None:
        response["data"] = to_jsonable(data)
    return response


def failure(kind: str) -> dict:
    """Error envelope carrying a stable error kind, never a message."""
    return {"success": False, "error": kind}


class CommandDispatcher:
    """Routes command messages to a VaultSession."""

    def __init__(self, session: VaultSession):
        self.session = session
        self._handlers = {
            MessageType.SETUP: self._setup,
            MessageType.UNLOCK: self._unlock,
            MessageType.LOCK: self._lock,
            MessageType.GET_STATE: self._get_state,
            MessageType.GET_VAULT: self._get_vault,
            MessageType.LIST_VAULTS: self._list_vaults,
            MessageType.CREATE_VAULT_DB: self._create_vault,
            MessageType.SWITCH_VAULT: self._switch_vault,
            MessageType.RENAME_VAULT_DB: self._rename_vault,
            MessageType.DELETE_VAULT_DB: self._delete_vault,
            MessageType.SAVE_ENTRY: self._save_entry,
            MessageType.DELETE_ENTRY: self._delete_entry,
            MessageType.BULK_IMPORT: self._bulk_import,
            MessageType.IMPORT_CSV: self._import_csv,
            MessageType.GENERATE_PASSWORD: self._generate_password,
            MessageType.GET_ENTRIES_FOR_URL: self._entries_for_url,
            MessageType.SYNC_VAULT: self._sync,
            MessageType.EXPORT_VAULT: self._export,
        }

    async def handle(self, message: Mapping[str, Any]) -> dict:
        """Dispatch one command message.

        Args:
            message: Mapping with ``type`` (a MessageType value) and an
                optional ``payload``.

        Returns:
            A success or failure envelope. Unknown types answer
            ``UnknownCommand`` and LockVault errors answer their kind.
            Other exceptions are logged and answered ``InternalError``.
        """
        try:
            msg_type = MessageType(message.get("type"))
        except ValueError:
            return failure("UnknownCommand")
        payload = message.get("payload")
        try:
            data = await self._handlers[msg_type](payload)
        except LockVaultError as err:
            logger.info("Command %s failed: %s", msg_type.value, err.kind)
            return failure(err.kind)
        except ValidationError as err:
            logger.info("Command %s rejected: %d validation error(s)", msg_type.value, err.error_count())
            return failure(InvalidPayload.kind)
        except Exception:
            logger.exception("Command %s raised an unexpected error", msg_type.value)
            return failure("InternalError")
        return success(data)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _setup(self, payload):
        vault, registry = await self.session.setup(_field(payload, "password"))
        return {"vault": vault, "registry": registry}

    async def _unlock(self, payload):
        """Payload: ``password`` and an optional ``vault_id``."""
        vault_id = payload.get("vault_id") if isinstance(payload, Mapping) else None
        vault, registry = await self.session.unlock(_field(payload, "password"), vault_id)
        return {"vault": vault, "registry": registry}

    async def _lock(self, payload):
        self.session.lock()

    async def _get_state(self, payload):
        return await self.session.get_state()

    async def _get_vault(self, payload):
        vault, registry = await self.session.get_vault()
        return {"vault": vault, "registry": registry}

    async def _list_vaults(self, payload):
        return {"vaults": await self.session.list_vaults()}

    async def _create_vault(self, payload):
        vault, registry = await self.session.create_vault(_field(payload, "name"))
        return {"vault": vault, "registry": registry}

    async def _switch_vault(self, payload):
        vault, registry = await self.session.switch_vault(_field(payload, "vault_id"))
        return {"vault": vault, "registry": registry}

    async def _rename_vault(self, payload):
        registry = await self.session.rename_vault(
            _field(payload, "vault_id"), _field(payload, "name"),
        )
        return {"registry": registry}

    async def _delete_vault(self, payload):
        vault, registry = await self.session.delete_vault(_field(payload, "vault_id"))
        return {"vault": vault, "registry": registry}

    async def _save_entry(self, payload):
        """Payload: entry fields; an existing ``id`` updates that entry."""
        if not isinstance(payload, Mapping):
            raise InvalidPayload("Entry payload must be an object")
        return {"vault": await self.session.save_entry(payload)}

    async def _delete_entry(self, payload):
        return {"vault": await self.session.delete_entry(_field(payload, "entry_id"))}

    async def _bulk_import(self, payload):
        """Payload: a list of entry objects, imported with one version bump.

        Raises:
            InvalidPayload: If payload is not a list.
        """
        if not isinstance(payload, list):
            raise InvalidPayload("Bulk import expects a list of entries")
        vault, imported = await self.session.bulk_import(payload)
        return {"vault": vault, "imported": imported}

    async def _import_csv(self, payload):
        return await self.session.import_csv(_field(payload, "csv"))

    async def _generate_password(self, payload):
        """Payload: optional PasswordOptions fields; works while locked."""
        options = PasswordOptions.model_validate(payload) if payload else DEFAULT_OPTIONS
        entropy = calculate_entropy(options)
        return {
            "password": self.session.generate_password(options),
            "entropy": entropy,
            "strength": strength_label(entropy),
        }

    async def _entries_for_url(self, payload):
        return {"entries": await self.session.get_entries_for_url(_field(payload, "hostname"))}

    async def _sync(self, payload):
        """Manual sync; answers the merged vault and the action taken."""
        result = await self.session.sync()
        return {"vault": result.vault, "merged": result.merged, "action": result.action}

    async def _export(self, payload):
        return {"exported": await self.session.export()}
