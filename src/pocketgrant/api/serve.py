"""Standalone authorization server for ``python -m pocketgrant``.

Mounts the OAuth2 endpoints plus one protected ``/api/whoami`` route that
echoes the identity behind a bearer token. Hosts embedding the engine in
their own FastAPI app call :func:`pocketgrant.api.mount_oauth` instead.
"""

from __future__ import annotations

import logging

from fastapi import Depends

from pocketgrant.api.deps import require_oauth
from pocketgrant.api.schemas import WhoAmIResponse
from pocketgrant.oauth2.models import TokenIdentity

logger = logging.getLogger(__name__)


def create_api_app(settings=None):
    """Build the FastAPI application from *settings* (or the global ones)."""
    from fastapi import FastAPI

    from pocketgrant import __version__
    from pocketgrant.api import mount_oauth
    from pocketgrant.config import get_settings
    from pocketgrant.oauth2.server import AuthorizationServer

    settings = settings or get_settings()
    server = AuthorizationServer.from_settings(settings)

    app = FastAPI(
        title="PocketGrant",
        description="Embeddable OAuth2 authorization server.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url=None,
        openapi_url="/api/openapi.json",
    )
    mount_oauth(app, server, settings)

    @app.get("/api/whoami", response_model=WhoAmIResponse, tags=["Resources"])
    async def whoami(identity: TokenIdentity = Depends(require_oauth())):
        """Identity behind the presented bearer token."""
        return WhoAmIResponse(
            client_id=identity.client_id,
            user_id=identity.user_id,
            scopes=list(identity.scopes),
        )

    logger.info(
        "OAuth2 server ready: %d client(s), %s tokens",
        len(settings.clients),
        "signed" if settings.jwt_secret else "opaque",
    )
    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8890,
    dev: bool = False,
) -> None:
    """Start the authorization server."""
    import uvicorn

    print("\n" + "=" * 50)
    print("POCKETGRANT OAUTH2 SERVER")
    print("=" * 50)
    print(f"\nAPI docs: http://{'localhost' if host == '127.0.0.1' else host}:{port}/api/docs\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "pocketgrant.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port)
