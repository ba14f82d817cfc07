"""Identity boundary.

Sessions and credentials are handled by the external identity provider; it
hands the API a signed bearer token whose ``sub`` is the user id and whose
``role`` claim carries the caller's capability. Nothing here checks passwords.
"""

from datetime import timedelta
from typing import Optional
import logging
import os

from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from errors import Forbidden, NotAuthenticated
from models import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))

STAFF_ROLES = ("admin", "event_manager", "staff")
ADMIN_ROLES = ("admin", "event_manager")

bearer_scheme = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    user_id: str
    role: str = "user"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_principal(token: str) -> Principal:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise NotAuthenticated()
    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthenticated()
    return Principal(user_id=str(user_id), role=payload.get("role") or "user")


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Principal:
    """Resolve the acting principal; every core route depends on this first"""
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated()
    return decode_principal(credentials.credentials)


def require_roles(*roles: str):
    def dependency(current_user: Principal = Depends(get_current_user)) -> Principal:
        if current_user.role not in roles:
            raise Forbidden()
        return current_user
    return dependency


get_staff_user = require_roles(*STAFF_ROLES)
get_admin_user = require_roles(*ADMIN_ROLES)
