import hmac
import logging
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
import jwt

from . import config

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def verify_admin_credentials(username: str, password: str) -> bool:
    """Check dashboard credentials against the configured admin account.

    A bcrypt ``DASHBOARD_ADMIN_PASSWORD_HASH`` takes precedence over the
    plain ``DASHBOARD_ADMIN_PASSWORD``.
    """

    admin_username = config.DASHBOARD_ADMIN_USERNAME
    if not admin_username or not (config.DASHBOARD_ADMIN_PASSWORD_HASH or config.DASHBOARD_ADMIN_PASSWORD):
        logger.error("Dashboard credentials not configured")
        return False
    if not hmac.compare_digest(username.encode(), admin_username.encode()):
        return False
    if config.DASHBOARD_ADMIN_PASSWORD_HASH:
        return verify_password(password, config.DASHBOARD_ADMIN_PASSWORD_HASH)
    return hmac.compare_digest(password.encode(), config.DASHBOARD_ADMIN_PASSWORD.encode())


def create_session_token(username: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": username,
        "iat": now,
        "exp": now + timedelta(hours=config.DASHBOARD_SESSION_HOURS),
    }
    return jwt.encode(payload, config.DASHBOARD_JWT_SECRET, algorithm=config.DASHBOARD_JWT_ALGORITHM)


def verify_session(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    if credentials is None:
        raise HTTPException(401, "Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            config.DASHBOARD_JWT_SECRET,
            algorithms=[config.DASHBOARD_JWT_ALGORITHM],
        )
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(401, "Session expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(401, "Invalid session") from exc
    if not payload.get("sub"):
        raise HTTPException(401, "Invalid session")
    return payload
