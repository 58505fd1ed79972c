"""
Test configuration for pytest
"""

from functools import lru_cache
import pytest
import os
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session
from typing import Callable, Dict, Generator
import uuid

# Test environment variables
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["JWT_REFRESH_SECRET_KEY"] = "test-jwt-refresh-secret"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_JSON"] = "false"

from fastapi.testclient import TestClient  # noqa: E402

import asset_tracker.models  # noqa: E402,F401
from asset_tracker.core.auth import create_access_token  # noqa: E402
from asset_tracker.core.database import get_session  # noqa: E402
from asset_tracker.core.security import hash_password  # noqa: E402
from asset_tracker.main import app  # noqa: E402
from asset_tracker.models.item import Item, ItemStatus  # noqa: E402
from asset_tracker.models.tenant import Tenant  # noqa: E402
from asset_tracker.models.user import User, UserRole  # noqa: E402
from asset_tracker.schemas.token import AuthContext  # noqa: E402
from asset_tracker.services.item_store import ItemStore  # noqa: E402
from asset_tracker.services.lifecycle import LifecycleEngine  # noqa: E402

DEFAULT_PASSWORD = "correct-horse-battery"


@lru_cache()
def _hashed(password: str) -> str:
    """bcrypt is slow on purpose; hash each test password once per run"""
    return hash_password(password)


# Create test engine using in-memory SQLite; StaticPool keeps one shared connection
test_engine = create_engine(
    "sqlite:///:memory:",
    echo=False,
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a clean database session for each test"""
    # Create all tables
    SQLModel.metadata.create_all(test_engine)

    # Create session
    with Session(test_engine, expire_on_commit=False) as session:
        yield session

    # Cleanup
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def make_tenant(db: Session) -> Callable[..., Tenant]:
    def _make_tenant(subdomain: str = None, is_active: bool = True, name: str = None) -> Tenant:
        subdomain = subdomain or f"tenant-{uuid.uuid4().hex[:8]}"
        tenant = Tenant(
            name=name or subdomain.title(),
            subdomain=subdomain,
            contact_email=f"ops@{subdomain}.example.com",
            is_active=is_active,
        )
        db.add(tenant)
        db.commit()
        db.refresh(tenant)
        return tenant

    return _make_tenant


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make_user(
        tenant: Tenant,
        role: UserRole = UserRole.OPERATOR,
        email: str = None,
        password: str = DEFAULT_PASSWORD,
        is_active: bool = True,
    ) -> User:
        user = User(
            tenant_id=tenant.id,
            email=email or f"{role.value}-{uuid.uuid4().hex[:6]}@example.com",
            password_hash=_hashed(password),
            first_name="Test",
            last_name=role.value.title(),
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_item(db: Session) -> Callable[..., Item]:
    def _make_item(tenant: Tenant, status: ItemStatus = ItemStatus.AVAILABLE, **fields) -> Item:
        suffix = uuid.uuid4().hex[:8]
        fields.setdefault("name", f"Drill {suffix}")
        fields.setdefault("category", "tools")
        fields.setdefault("nfc_tag", f"04:{suffix}")
        item = Item(tenant_id=tenant.id, status=status, **fields)
        db.add(item)
        db.commit()
        db.refresh(item)
        return item

    return _make_item


@pytest.fixture
def tenant(make_tenant) -> Tenant:
    return make_tenant(subdomain="acme")


@pytest.fixture
def users(make_user, tenant) -> Dict[UserRole, User]:
    """One active user per role in the default tenant"""
    return {role: make_user(tenant, role=role) for role in UserRole}


def context_for(user: User, tenant: Tenant = None) -> AuthContext:
    return AuthContext(
        user_id=user.id,
        email=user.email,
        role=user.role,
        tenant_id=user.tenant_id,
        tenant_name=tenant.name if tenant else None,
    )


def auth_headers(user: User) -> Dict[str, str]:
    token, _ = create_access_token(
        user_id=user.id,
        email=user.email,
        role=user.role,
        tenant_id=user.tenant_id,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def store(db: Session) -> ItemStore:
    return ItemStore(db)


@pytest.fixture
def engine(store: ItemStore) -> LifecycleEngine:
    return LifecycleEngine(store)


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """API client sharing the test session"""
    def _get_session():
        yield db

    app.dependency_overrides[get_session] = _get_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
