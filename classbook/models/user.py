"""
User model with roles and tenant scoping

Users are managed by the identity service; the engine only needs the row to
exist so reservations and subscriptions can reference it.
"""

from sqlmodel import Field, SQLModel
from datetime import datetime
from typing import Optional
import uuid
from enum import Enum


class UserRole(str, Enum):
    """User roles for RBAC"""
    ADMIN = "admin"
    DIRECTOR = "director"
    TRAINER = "trainer"
    ATHLETE = "athlete"


class User(SQLModel, table=True):
    """User model with tenant isolation"""

    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", index=True, description="Tenant ID for multi-tenant isolation")

    email: str = Field(index=True, nullable=False, max_length=255)
    first_name: str = Field(nullable=False, max_length=100)
    last_name: str = Field(nullable=False, max_length=100)

    # RBAC
    role: UserRole = Field(default=UserRole.ATHLETE, nullable=False)

    # Status
    is_active: bool = Field(default=True, index=True)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
