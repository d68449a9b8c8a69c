# PocketGrant: embeddable OAuth2 authorization server.
# Created: 2026-10-17

__version__ = "0.1.0"
