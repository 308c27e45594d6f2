from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
import jwt
from fastapi import Depends, Header
from pymongo.database import Database

from config import Settings, get_settings
from database import get_db, now_utc, oid
from errors import AuthError, ForbiddenError, ValidationError


def hash_password(pw: str) -> str:
    return bcrypt.hashpw(pw.encode("utf-8"), bcrypt.gensalt(10)).decode("utf-8")


def verify_password(pw: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(pw.encode("utf-8"), hashed.encode("utf-8"))


def generate_token(user_id: Any, settings: Settings) -> str:
    payload = {
        "id": str(user_id),
        "exp": now_utc() + timedelta(days=settings.JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, settings: Settings) -> str:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthError("Invalid or expired token, please login again")
    return payload["id"]


def token_from_header(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthError("No token found in the header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthError("No token found in the header")
    return token.strip()


# ---------------------- Dependencies ----------------------

def get_current_user(authorization: str = Header(None),
                     db: Database = Depends(get_db),
                     settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    user_id = verify_token(token_from_header(authorization), settings)
    try:
        user = db["user"].find_one({"_id": oid(user_id)})
    except ValidationError:
        raise AuthError("Invalid or expired token, please login again")
    if not user:
        raise AuthError("User no longer exists")
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user.get("is_admin"):
        raise ForbiddenError("Access denied, admin only")
    return user
