"""
Identity providers.

The passphrase for credential encryption is the authenticated user's stable
id, never a session token (tokens rotate and would strand ciphertext).
Providers are asked fresh on every operation; nothing here caches.
"""
from typing import Optional, Protocol

from fastapi import Request


class IdentityProvider(Protocol):
    async def current_user_id(self) -> Optional[str]:
        ...


class StaticIdentity:
    def __init__(self, user_id: Optional[str]):
        self.user_id = user_id

    async def current_user_id(self) -> Optional[str]:
        return self.user_id or None


class RequestIdentity:
    """Reads the user id from a header set by the upstream auth proxy."""

    def __init__(self, request: Request, header: str = "X-User-Id"):
        self.request = request
        self.header = header

    async def current_user_id(self) -> Optional[str]:
        value = (self.request.headers.get(self.header) or "").strip()
        return value or None
