"""Tests for the command protocol and its aiohttp surface."""
import pytest
from aiohttp.test_utils import TestClient, TestServer

from lockvault.commands import CommandDispatcher, MessageType, to_jsonable
from lockvault.handlers import create_app
from lockvault.models import SyncStatus
from lockvault.vault.codec import parse_backup
from lockvault.version import __version__

PASSWORD = "correct horse battery staple"


@pytest.fixture
def dispatcher(session):
    return CommandDispatcher(session)


async def send(dispatcher, msg_type, payload=None):
    return await dispatcher.handle({"type": msg_type, "payload": payload})


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_unknown_command(self, dispatcher):
        assert await send(dispatcher, "FORMAT_DISK") == {
            "success": False, "error": "UnknownCommand",
        }
        assert (await dispatcher.handle({}))["error"] == "UnknownCommand"

    @pytest.mark.asyncio
    async def test_locked_commands(self, dispatcher):
        await send(dispatcher, "SETUP", {"password": PASSWORD})
        await send(dispatcher, "LOCK")
        for msg_type in ("GET_VAULT", "EXPORT_VAULT", "SAVE_ENTRY", "GET_ENTRIES_FOR_URL"):
            payload = {"site_name": "x", "password": "y", "hostname": "example.com"}
            response = await send(dispatcher, msg_type, payload)
            assert response == {"success": False, "error": "VaultLocked"}, msg_type

    @pytest.mark.asyncio
    async def test_setup_unlock_flow(self, dispatcher):
        response = await send(dispatcher, "SETUP", {"password": PASSWORD})
        assert response["success"] is True
        vault_id = response["data"]["vault"]["vault_id"]
        assert response["data"]["registry"]["active_vault_id"] == vault_id

        await send(dispatcher, MessageType.LOCK.value)
        state = await send(dispatcher, "GET_STATE")
        assert state["data"]["is_unlocked"] is False
        assert state["data"]["sync_status"] == SyncStatus.OFFLINE.value

        wrong = await send(dispatcher, "UNLOCK", {"password": "guess"})
        assert wrong == {"success": False, "error": "InvalidCredentials"}

        ok = await send(dispatcher, "UNLOCK", {"password": PASSWORD})
        assert ok["data"]["vault"]["vault_id"] == vault_id

    @pytest.mark.asyncio
    async def test_no_vault(self, dispatcher):
        response = await send(dispatcher, "UNLOCK", {"password": PASSWORD})
        assert response["error"] == "NoVault"

    @pytest.mark.asyncio
    async def test_invalid_payloads(self, dispatcher):
        assert (await send(dispatcher, "SETUP", {}))["error"] == "InvalidPayload"
        assert (await send(dispatcher, "SETUP", "password"))["error"] == "InvalidPayload"
        await send(dispatcher, "SETUP", {"password": PASSWORD})
        assert (await send(dispatcher, "SAVE_ENTRY", {"site_name": "x"}))["error"] == "InvalidPayload"
        assert (await send(dispatcher, "BULK_IMPORT", {"entries": []}))["error"] == "InvalidPayload"
        assert (await send(dispatcher, "GENERATE_PASSWORD", {"length": 2}))["error"] == "InvalidPayload"

    @pytest.mark.asyncio
    async def test_entry_commands(self, dispatcher):
        await send(dispatcher, "SETUP", {"password": PASSWORD})
        saved = await send(dispatcher, "SAVE_ENTRY", {
            "site_name": "GitHub", "url": "https://github.com",
            "username": "octocat", "password": "gh", "category": "Work",
        })
        vault = saved["data"]["vault"]
        assert vault["version"] == 2
        entry_id = vault["entries"][0]["id"]

        found = await send(dispatcher, "GET_ENTRIES_FOR_URL", {"hostname": "github.com"})
        assert [e["id"] for e in found["data"]["entries"]] == [entry_id]

        bulk = await send(dispatcher, "BULK_IMPORT", [
            {"site_name": "A", "password": "a"}, {"site_name": "B", "password": "b"},
        ])
        assert bulk["data"]["imported"] == 2
        assert bulk["data"]["vault"]["version"] == 3

        imported = await send(dispatcher, "IMPORT_CSV", {
            "csv": "name,url,username,password\nMail,https://mail.example.com,me,pw\n",
        })
        assert imported["data"]["imported"] == 1
        assert imported["data"]["source"] == "chrome"

        deleted = await send(dispatcher, "DELETE_ENTRY", {"entry_id": entry_id})
        assert entry_id not in [e["id"] for e in deleted["data"]["vault"]["entries"]]

    @pytest.mark.asyncio
    async def test_vault_commands(self, dispatcher):
        setup = await send(dispatcher, "SETUP", {"password": PASSWORD})
        first_id = setup["data"]["vault"]["vault_id"]

        last = await send(dispatcher, "DELETE_VAULT_DB", {"vault_id": first_id})
        assert last == {"success": False, "error": "CannotDeleteLastVault"}

        created = await send(dispatcher, "CREATE_VAULT_DB", {"name": "Work"})
        work_id = created["data"]["vault"]["vault_id"]
        assert created["data"]["registry"]["active_vault_id"] == work_id

        listed = await send(dispatcher, "LIST_VAULTS")
        assert [v["name"] for v in listed["data"]["vaults"]] == ["My Vault", "Work"]

        renamed = await send(dispatcher, "RENAME_VAULT_DB", {"vault_id": work_id, "name": "Office"})
        assert renamed["success"] is True

        unknown = await send(dispatcher, "SWITCH_VAULT", {"vault_id": "missing"})
        assert unknown == {"success": False, "error": "UnknownVault"}

        switched = await send(dispatcher, "SWITCH_VAULT", {"vault_id": first_id})
        assert switched["data"]["vault"]["vault_id"] == first_id

        deleted = await send(dispatcher, "DELETE_VAULT_DB", {"vault_id": work_id})
        assert [v["id"] for v in deleted["data"]["registry"]["vaults"]] == [first_id]

    @pytest.mark.asyncio
    async def test_generate_password(self, dispatcher):
        response = await send(dispatcher, "GENERATE_PASSWORD")
        data = response["data"]
        assert len(data["password"]) == 20
        assert data["entropy"] == 131
        assert data["strength"] == "Very Strong"

        short = await send(dispatcher, "GENERATE_PASSWORD", {"length": 8, "symbols": False})
        assert len(short["data"]["password"]) == 8

    @pytest.mark.asyncio
    async def test_export(self, dispatcher):
        await send(dispatcher, "SETUP", {"password": PASSWORD})
        response = await send(dispatcher, "EXPORT_VAULT")
        backup = parse_backup(response["data"]["exported"])
        assert backup.ciphertext

    @pytest.mark.asyncio
    async def test_sync_unconfigured(self, dispatcher):
        await send(dispatcher, "SETUP", {"password": PASSWORD})
        assert (await send(dispatcher, "SYNC_VAULT"))["error"] == "SyncFailure"

    @pytest.mark.asyncio
    async def test_sync_reports_action(self, synced_session):
        dispatcher = CommandDispatcher(synced_session)
        await send(dispatcher, "SETUP", {"password": PASSWORD})
        response = await send(dispatcher, "SYNC_VAULT")
        assert response["success"] is True
        assert response["data"]["action"] in ("push_local", "reconcile")

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, dispatcher, monkeypatch):
        async def boom():
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(dispatcher.session, "get_state", boom)
        assert await send(dispatcher, "GET_STATE") == {"success": False, "error": "InternalError"}

    def test_to_jsonable(self):
        assert to_jsonable({"status": SyncStatus.SYNCED}) == {"status": "synced"}


class TestHttp:
    @pytest.mark.asyncio
    async def test_health(self, session):
        async with TestClient(TestServer(create_app(session))) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            assert await resp.json() == {"status": "ok", "version": __version__}

    @pytest.mark.asyncio
    async def test_command_roundtrip(self, session):
        async with TestClient(TestServer(create_app(session))) as client:
            resp = await client.post("/command", json={"type": "SETUP", "payload": {"password": PASSWORD}})
            assert resp.status == 200
            body = await resp.json()
            assert body["success"] is True

            resp = await client.post("/command", json={"type": "GET_STATE"})
            body = await resp.json()
            assert body["data"]["is_unlocked"] is True
            assert body["data"]["active_vault_name"] == "My Vault"

    @pytest.mark.asyncio
    async def test_bad_body(self, session):
        async with TestClient(TestServer(create_app(session))) as client:
            resp = await client.post("/command", data=b"{not json")
            assert resp.status == 400
            assert await resp.json() == {"success": False, "error": "InvalidPayload"}

            resp = await client.post("/command", json=["SETUP"])
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_cleanup_locks_session(self, session):
        async with TestClient(TestServer(create_app(session))) as client:
            await client.post("/command", json={"type": "SETUP", "payload": {"password": PASSWORD}})
            assert session.is_unlocked
        assert not session.is_unlocked
