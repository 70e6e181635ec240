import logging
import secrets
import string
from datetime import timedelta
from typing import Optional

from fastapi import Header, HTTPException
from jose import JWTError, jwt

from constants import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY
from datetime_utils import now_utc
from models import UserRole

logger = logging.getLogger(__name__)

LOGIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
LOGIN_CODE_LENGTH = 8


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    expire = now_utc() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def generate_login_code(length: int = LOGIN_CODE_LENGTH) -> str:
    return "".join(secrets.choice(LOGIN_CODE_ALPHABET) for _ in range(length))


def _decode_bearer(authorization: Optional[str]) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


async def verify_student_token(authorization: Optional[str] = Header(None)) -> dict:
    """Verify a student token and extract the user info"""
    payload = _decode_bearer(authorization)
    if payload.get("role") != UserRole.STUDENT.value:
        raise HTTPException(status_code=403, detail="Student access required")
    return {"user_id": payload["sub"], "name": payload.get("name"), "role": payload["role"]}


async def verify_admin_token(authorization: Optional[str] = Header(None)) -> dict:
    payload = _decode_bearer(authorization)
    if payload.get("role") != UserRole.ADMIN.value:
        logger.warning(f"Non-admin token used on admin route (sub={payload.get('sub')})")
        raise HTTPException(status_code=403, detail="Admin access required")
    return {"admin_id": payload["sub"], "name": payload.get("name"), "role": payload["role"]}
