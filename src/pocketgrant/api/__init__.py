# HTTP binding for the authorization server.
# Created: 2026-10-17

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

    from pocketgrant.config import Settings
    from pocketgrant.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)


def mount_oauth(app: FastAPI, server: AuthorizationServer, settings: Settings) -> None:
    """Attach *server* to *app* and register its OAuth2 endpoints."""
    from pocketgrant.api.oauth2 import create_oauth_router

    app.state.oauth_server = server
    app.include_router(create_oauth_router(server, settings))
    logger.debug(
        "Mounted OAuth2 routes: %s, %s, %s",
        settings.authorize_route,
        settings.access_token_route,
        settings.revoke_route,
    )
