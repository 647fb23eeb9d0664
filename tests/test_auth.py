"""
Unit tests for JWT authentication
"""

import pytest
from datetime import timedelta
import uuid
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from classbook.core.auth import create_access_token, decode_access_token
from classbook.core.config import get_settings
from classbook.core.dependencies import (
    get_current_user_id, get_tenant_id, get_token_payload, get_user_role
)

settings = get_settings()


def test_create_access_token():
    """Test JWT token creation"""
    user_id = uuid.uuid4()
    tenant_id = uuid.uuid4()

    token = create_access_token(
        user_id=user_id,
        tenant_id=tenant_id,
        role="director",
        expires_delta=timedelta(hours=24)
    )

    payload = decode_access_token(token)
    assert payload is not None
    assert payload["sub"] == str(user_id)
    assert payload["tenant_id"] == str(tenant_id)
    assert payload["role"] == "director"


def test_decode_invalid_token():
    assert decode_access_token("invalid.token.string.here") is None


def test_expired_token():
    """Expired tokens are rejected"""
    token = create_access_token(
        user_id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        role="athlete",
        expires_delta=timedelta(hours=-1)
    )
    assert decode_access_token(token) is None


def test_token_signed_with_another_key():
    token = create_access_token(uuid.uuid4(), uuid.uuid4(), "athlete")
    claims = jwt.get_unverified_claims(token)
    forged = jwt.encode(claims, "some-other-secret", algorithm=settings.JWT_ALGORITHM)

    assert decode_access_token(forged) is None


@pytest.mark.parametrize("claims", [
    {"sub": "not-a-uuid", "tenant_id": str(uuid.uuid4())},
    {"sub": str(uuid.uuid4()), "tenant_id": "not-a-uuid"},
    {"sub": str(uuid.uuid4())},
])
def test_token_with_malformed_claims(claims):
    token = jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    assert decode_access_token(token) is None


def test_dependencies_extract_claims():
    user_id = uuid.uuid4()
    tenant_id = uuid.uuid4()
    token = create_access_token(user_id, tenant_id, "trainer")
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)

    payload = get_token_payload(credentials)

    assert get_current_user_id(payload) == user_id
    assert get_tenant_id(payload) == tenant_id
    assert get_user_role(payload) == "trainer"


def test_missing_role_defaults_to_athlete():
    assert get_user_role({"sub": str(uuid.uuid4())}) == "athlete"


def test_invalid_credentials_raise_401():
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="garbage")

    with pytest.raises(HTTPException) as exc_info:
        get_token_payload(credentials)
    assert exc_info.value.status_code == 401
