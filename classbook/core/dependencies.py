"""
Authentication dependencies for FastAPI
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Dict
import uuid
import structlog

from classbook.core.auth import decode_access_token

logger = structlog.get_logger(__name__)
security = HTTPBearer()


def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict:
    """Validated JWT claims of the caller"""
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


def get_current_user_id(payload: Dict = Depends(get_token_payload)) -> uuid.UUID:
    """Get current user ID from JWT token"""
    user_id = uuid.UUID(payload["sub"])
    logger.debug(f"User authenticated: {user_id}")
    return user_id


def get_tenant_id(payload: Dict = Depends(get_token_payload)) -> uuid.UUID:
    """Get tenant ID from JWT token"""
    return uuid.UUID(payload["tenant_id"])


def get_user_role(payload: Dict = Depends(get_token_payload)) -> str:
    """Get user role from JWT token"""
    return payload.get("role") or "athlete"
