import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

_bearer = HTTPBearer(auto_error=False)


def require_token(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> bool:
    """Producer/operator guard: `Authorization: Bearer <SOCKET_SERVER_SECRET>`."""
    expected = request.app.state.settings.socket_server_secret
    # compare_digest only accepts ASCII str; headers may carry any latin-1 byte
    if not creds or not secrets.compare_digest(creds.credentials.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return True
