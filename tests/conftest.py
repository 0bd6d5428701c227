"""
Shared pytest fixtures.

- ``engine`` / ``session_factory`` / ``db``: a fresh in-memory SQLite database per test
- ``users`` / ``services``: seeded admin, two customers, and a small service catalog
- ``storage``: an in-memory ``FileStorage`` that records uploads and deletions
- ``client``: an httpx client bound to the FastAPI app with the fixtures above wired in
"""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["DB_TYPE"] = "sqlite"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.db import Base, get_db
from app.core.exceptions import NotFoundError
from app.core.security import hash_password
from app.models.service_models import Service
from app.models.user_models import User
from app.services.auth_service import create_token_for
from app.services.storage_service import FileStorage, get_storage, safe_filename

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


class InMemoryStorage(FileStorage):
    """FileStorage double keeping objects in a dict."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_deletes = False

    async def upload_file(self, data, folder, filename, content_type=None):
        path = f"{folder.strip('/')}/{safe_filename(filename)}"
        self.files[path] = data
        return {
            "url": self.public_url(path),
            "path": path,
            "filename": path.rsplit("/", 1)[-1],
            "size": len(data),
            "etag": "etag",
            "content_type": content_type,
        }

    async def delete_file(self, path):
        if self.fail_deletes:
            raise RuntimeError("storage unavailable")
        self.deleted.append(path)
        return self.files.pop(path, None) is not None

    async def get_file_stream(self, path):
        if path not in self.files:
            raise NotFoundError(f"File {path} not found")
        data = self.files[path]

        async def _chunks():
            yield data

        return _chunks()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session_factory):
    async with session_factory() as session:
        admin = User(username="admin", email="admin@example.com", password_hash=PASSWORD_HASH,
                     role="admin", is_active=True, token_version=0, profile_picture=None)
        alice = User(username="alice", email="alice@example.com", password_hash=PASSWORD_HASH,
                     role="user", is_active=True, token_version=0, profile_picture=None)
        bob = User(username="bob", email="bob@example.com", password_hash=PASSWORD_HASH,
                   role="user", is_active=True, token_version=0, profile_picture=None)
        session.add_all([admin, alice, bob])
        await session.commit()
        for user in (admin, alice, bob):
            await session.refresh(user)
    return SimpleNamespace(admin=admin, alice=alice, bob=bob)


@pytest_asyncio.fixture
async def services(session_factory):
    async with session_factory() as session:
        criminal = Service(title="Criminal Record", price=Decimal("500.00"), required_documents=[], is_active=True)
        education = Service(title="Education Verification", price=Decimal("300.00"), required_documents=[], is_active=True)
        employment = Service(title="Employment History", price=Decimal("200.00"), required_documents=[], is_active=True)
        session.add_all([criminal, education, employment])
        await session.commit()
        for service in (criminal, education, employment):
            await session.refresh(service)
    return SimpleNamespace(criminal=criminal, education=education, employment=employment)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token_for(user)}"}
    return _headers


@pytest_asyncio.fixture
async def client(session_factory, storage):
    from main import app

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
