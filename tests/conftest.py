import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from typing import AsyncGenerator, Dict

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import merchpay.core.models  # noqa: F401
from merchpay.auth.models import User
from merchpay.auth.schemas import CurrentUser
from merchpay.core.enums import UserRole
from merchpay.db.session import Base, get_db
from merchpay.main import app
from merchpay.utils.mercadopago import get_gateway_client
from merchpay.utils.s3_utils import get_receipt_storage

from tests.helpers import FakeGateway, FakeReceiptStorage, auth_headers, make_user


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; the FastAPI dependency yields the same session."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def admin(db_session: AsyncSession) -> User:
    return await make_user(
        db_session, dni="20111222", role=UserRole.ADMIN, first_name="Ana", last_name="Admin"
    )


@pytest.fixture()
async def student(db_session: AsyncSession) -> User:
    """Owes 30000 over 3 installments of 10000."""
    return await make_user(db_session, dni="40111222", first_name="Sofia", last_name="Perez")


@pytest.fixture()
def admin_actor(admin: User) -> CurrentUser:
    return CurrentUser(id=admin.id, role=UserRole.ADMIN, first_name=admin.first_name, last_name=admin.last_name)


@pytest.fixture()
def student_actor(student: User) -> CurrentUser:
    return CurrentUser(
        id=student.id, role=UserRole.STUDENT, first_name=student.first_name, last_name=student.last_name
    )


@pytest.fixture()
def admin_headers(admin: User) -> Dict[str, str]:
    return auth_headers(admin)


@pytest.fixture()
def student_headers(student: User) -> Dict[str, str]:
    return auth_headers(student)


@pytest.fixture()
def receipt_storage(db_session: AsyncSession) -> FakeReceiptStorage:
    storage = FakeReceiptStorage()
    app.dependency_overrides[get_receipt_storage] = lambda: storage
    return storage


@pytest.fixture()
def gateway(db_session: AsyncSession) -> FakeGateway:
    fake = FakeGateway()
    app.dependency_overrides[get_gateway_client] = lambda: fake
    return fake
