# SubVault: API Security - Per-unlock session token
#
# A random token is issued when the vault is unlocked over HTTP and
# revoked when it is locked. All endpoints that read or change vault
# contents require it in the X-Session-Token header.

import secrets
import threading
from typing import Optional

from fastapi import Header, HTTPException, Request, status


class ApiSession:
    """
    Holds the session token for one app instance.

    The token exists only while the vault is unlocked: open() on a
    successful unlock, close() on lock.
    """

    def __init__(self):
        self._token: Optional[str] = None
        self._guard = threading.Lock()

    @property
    def active(self) -> bool:
        return self._token is not None

    def open(self) -> str:
        """Issue a fresh 256-bit token, replacing any previous one."""
        with self._guard:
            self._token = secrets.token_urlsafe(32)
            return self._token

    def close(self) -> None:
        with self._guard:
            self._token = None

    def verify(self, token: Optional[str]) -> bool:
        current = self._token
        if current is None or token is None:
            return False
        # Constant-time comparison to prevent timing attacks
        return secrets.compare_digest(token, current)


async def verify_session_token(
    request: Request,
    x_session_token: Optional[str] = Header(None),
) -> str:
    """
    FastAPI dependency to verify the session token.

    Raises:
        HTTPException: 403 if no session is open, 401 if the token is
            missing or invalid
    """
    session: ApiSession = request.app.state.session

    if not session.active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"kind": "vault_locked", "message": "Vault is locked. Unlock vault first."}
        )

    if x_session_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"kind": "unauthorized", "message": "Missing X-Session-Token header"}
        )

    if not session.verify(x_session_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"kind": "unauthorized", "message": "Invalid session token"}
        )

    return x_session_token
