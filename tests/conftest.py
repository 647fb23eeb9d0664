"""
Test configuration for pytest
"""

import pytest
import os
from datetime import time
from decimal import Decimal
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session
from typing import Generator

# Test environment variables
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["DEBUG"] = "false"

from classbook.core.database import build_engine  # noqa: E402
from classbook.core.events import event_bus  # noqa: E402
from classbook.models import PaymentPlan, ScheduleConfig, Subscription, Tenant, User, UserRole  # noqa: E402
from tests.factories import make_user, subscribe  # noqa: E402


# Create test engine using in-memory SQLite for unit tests
test_engine = build_engine("sqlite://", poolclass=StaticPool)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a clean database session for each test"""
    # Create all tables
    SQLModel.metadata.create_all(test_engine)

    # Create session
    with Session(test_engine) as session:
        yield session

    # Cleanup
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database for tests that race threads against each other"""
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 30})

    # Writers queue on the database lock instead of upgrading a shared lock
    @event.listens_for(engine, "connect")
    def driver_autocommit(dbapi_connection, _):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_event_bus():
    yield
    event_bus.clear_subscribers()


@pytest.fixture
def tenant(db: Session) -> Tenant:
    """Create a test tenant"""
    tenant = Tenant(name="Test Gym", slug="test-gym", phone="555-1234", is_active=True)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


@pytest.fixture
def athlete(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, "athlete@test.com")


@pytest.fixture
def director(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, "director@test.com", UserRole.DIRECTOR)


@pytest.fixture
def plan(db: Session, tenant: Tenant) -> PaymentPlan:
    """3 classes per week, 12 per period, up to 2 rolled over"""
    plan = PaymentPlan(
        tenant_id=tenant.id,
        name="3x per week",
        amount=Decimal("100.00"),
        classes_per_week=3,
        max_classes_per_period=12,
        grace_period_days=5,
        late_fee_percentage=Decimal("10.00"),
        allow_class_rollover=True,
        max_rollover_classes=2,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@pytest.fixture
def subscription(db: Session, athlete: User, plan: PaymentPlan) -> Subscription:
    return subscribe(db, athlete, plan)


@pytest.fixture
def weekday_schedule(db: Session, tenant: Tenant):
    """Monday to Friday, 08:00-12:00, two places per hour"""
    configs = [
        ScheduleConfig(
            tenant_id=tenant.id,
            day_of_week=day,
            start_time=time(8, 0),
            end_time=time(12, 0),
            capacity=2,
        )
        for day in range(5)
    ]
    db.add_all(configs)
    db.commit()
    return configs
