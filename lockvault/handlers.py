"""
aiohttp application serving the command protocol to local UI clients.

    POST /command   {"type": "...", "payload": ...}  → command response
    GET  /health    liveness and version
"""
import logging

import orjson
from aiohttp import ContentTypeError, web

from .commands import CommandDispatcher, failure
from .conf import LockVaultConfig
from .storage import FileStorage
from .vault.session import VaultSession
from .version import __version__

logger = logging.getLogger("lockvault.handlers")

DISPATCHER_KEY = web.AppKey("dispatcher", CommandDispatcher)


def _dumps(obj) -> str:
    return orjson.dumps(obj).decode("utf-8")


async def command_handler(request: web.Request) -> web.Response:
    dispatcher = request.app[DISPATCHER_KEY]
    try:
        message = await request.json(loads=orjson.loads)
    except (orjson.JSONDecodeError, UnicodeDecodeError, ContentTypeError):
        return web.json_response(failure("InvalidPayload"), status=400, dumps=_dumps)
    if not isinstance(message, dict):
        return web.json_response(failure("InvalidPayload"), status=400, dumps=_dumps)
    response = await dispatcher.handle(message)
    return web.json_response(response, dumps=_dumps)


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "version": __version__}, dumps=_dumps)


def create_app(session: VaultSession) -> web.Application:
    app = web.Application()
    app[DISPATCHER_KEY] = CommandDispatcher(session)

    async def on_startup(app: web.Application) -> None:
        migrated = await session.startup()
        if migrated is not None:
            logger.info("Legacy vault migrated on startup")

    async def on_cleanup(app: web.Application) -> None:
        session.lock()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    app.router.add_post("/command", command_handler)
    app.router.add_get("/health", health_handler)
    return app


def main() -> None:
    """Run the local command server (``lockvault-server``)."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    config = LockVaultConfig.from_env()
    session = VaultSession(FileStorage(config.storage_dir), config=config)
    web.run_app(create_app(session), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
