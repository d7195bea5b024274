"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any app import)
- A per-test SQLite database with foreign keys and SAVEPOINT support, so the
  partial unique index, recursive CTEs and cascades run for real
- Reference helpers (TENANT, PERSON, APPLICATION) and upload factories
- Rate limiter swap and dependency overrides for the HTTP surface
"""

from __future__ import annotations

import os
import tempfile

# Environment defaults must be set before importing the app, which triggers
# pydantic Settings validation on import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault(
    "LOCAL_UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "doclifecycle-test-uploads")
)

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from doclifecycle import models  # noqa: F401 - registers tables on Base.metadata
from doclifecycle.db.base import Base
from doclifecycle.db.session import get_db
from doclifecycle.main import app
from doclifecycle.models.document import Document, DocumentType
from doclifecycle.models.refs import EntityRef
from doclifecycle.services import documents
from doclifecycle.services.storage.service import FileDescriptor


TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
PERSON = EntityRef.of("PERSON", "person-1")
OTHER_PERSON = EntityRef.of("PERSON", "person-2")
APPLICATION = EntityRef.of("APPLICATION", "app-1")
OTHER_APPLICATION = EntityRef.of("APPLICATION", "app-2")


def ago(**delta: Any) -> datetime:
    return datetime.now(timezone.utc) - timedelta(**delta)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_file(name: str = "scan.jpg", content: bytes | None = None, **overrides: Any) -> FileDescriptor:
    body = content if content is not None else f"file:{name}:{uuid4()}".encode()
    defaults: dict[str, Any] = dict(
        file_name=name,
        file_path=f"tests/{uuid4()}/{name}",
        mime_type="image/jpeg",
        file_size=len(body),
        checksum=hashlib.sha256(body).hexdigest(),
    )
    defaults.update(overrides)
    return FileDescriptor(**defaults)


async def upload(
    db: AsyncSession,
    document_type: DocumentType | str = DocumentType.INE_FRONT,
    *,
    owner: EntityRef = PERSON,
    tenant_id: str = TENANT,
    file: FileDescriptor | None = None,
    **kwargs: Any,
) -> Document:
    return await documents.register_upload(
        db, tenant_id, owner, document_type, file or make_file(), **kwargs
    )


async def active_count(
    db: AsyncSession,
    document_type: DocumentType | str = DocumentType.INE_FRONT,
    *,
    owner: EntityRef = PERSON,
    tenant_id: str = TENANT,
) -> int:
    stmt = select(func.count(Document.id)).where(
        Document.tenant_id == tenant_id,
        Document.owner_type == owner.kind.value,
        Document.owner_id == owner.id,
        Document.document_type == DocumentType(document_type).value,
        Document.is_active.is_(True),
    )
    return (await db.execute(stmt)).scalar_one()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    # NullPool keeps connections unbound from any one event loop, which lets
    # TestClient requests share the file with async test code.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}", poolclass=NullPool
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself so SAVEPOINTs work
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    """Replace Redis-backed limiter with in-memory limiter for all tests."""
    original = app.state.limiter
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        storage_uri="memory://",
    )
    yield
    app.state.limiter = original


@pytest.fixture
def override_db(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(override_db) -> TestClient:
    return TestClient(app)
