"""
JWT authentication utilities

Tokens are issued by the identity service; the engine only needs the
``sub`` (user), ``tenant_id`` and ``role`` claims. ``create_access_token``
mirrors the issuer for local tooling and tests.
"""

from datetime import datetime, timedelta
from jose import JWTError, jwt
from typing import Dict, Optional
import uuid
from classbook.core.config import get_settings

settings = get_settings()


def create_access_token(
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
    role: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token with user claims"""
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id),
        "role": role,
        "exp": expire,
        "iat": datetime.utcnow(),
    }

    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate JWT token; None when invalid or expired"""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None

    try:
        uuid.UUID(payload.get("sub") or "")
        uuid.UUID(payload.get("tenant_id") or "")
    except ValueError:
        return None
    return payload
