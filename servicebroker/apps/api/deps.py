from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from servicebroker.core.config import get_settings
from servicebroker.domain.contracts import BrokerContract


_basic = HTTPBasic(auto_error=False)


def _auth_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Basic"},
    )


async def require_broker_auth(
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> None:
    settings = get_settings()
    if not settings.auth_enabled:
        return
    if credentials is None:
        raise _auth_error()
    # Constant-time comparison for both halves.
    username_ok = secrets.compare_digest(
        credentials.username.encode("utf-8"), settings.broker_username.encode("utf-8")
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"), settings.broker_password.encode("utf-8")
    )
    if not (username_ok and password_ok):
        raise _auth_error()


def get_broker(request: Request) -> BrokerContract:
    broker = getattr(request.app.state, "broker", None)
    if broker is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="broker is not ready")
    return broker
