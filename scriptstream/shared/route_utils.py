import uuid
from typing import Any

from fastapi import Header, HTTPException
from loguru import logger

from scriptstream.shared.models import AuthUser

def extract_client_id(client_id: str | None) -> str:
    """
    If the caller provided a clientId, use it.
    If not, generate a short readable one like 'client-a3f2'.
    This prevents anonymous connections from cluttering logs.
    """
    if client_id:
        return client_id
    return f"client-{str(uuid.uuid4())[:4]}"

def log_connection(protocol: str, client_id: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a socket lifecycle change.
    Every websocket route calls this once on connect and once on disconnect.
    """
    log_str = f"protocol={protocol} client_id={client_id}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.info(log_str)

def envelope(data: Any) -> dict:
    """The `{success, data}` wrapper every REST response of the backend uses."""
    return {"success": True, "data": data}

def bearer_token(authorization: str | None = Header(None)) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization[7:].strip() or None

def current_user(authorization: str | None = Header(None)) -> AuthUser:
    """FastAPI dependency: the user behind the Bearer token, or a 401."""
    # Imported here so shared/ does not depend on server/ at import time
    from scriptstream.server.store import backend

    user = backend.user_for_access_token(bearer_token(authorization))
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired access token")
    return user
