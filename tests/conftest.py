import os

import pytest

# Set environment variables BEFORE importing anything that uses config
os.environ.update({
    "GOOGLE_CLOUD_PROJECT": "test-project",
    "DATABASE_URL": "sqlite://",
    "RUN_LOCALLY": "false",
    "SKIP_AUTH": "false",
    "STAFF_ROLE": "staff",
    "REQUEST_ID_PREFIX": "allowlist",
    "AUDIT_MAX_WORKERS": "4",
    "LOG_LEVEL": "INFO",
})
os.environ.pop("CLOUD_SQL_CONNECTION_NAME", None)

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from app.api.dependencies import StaffContext, require_staff
from app.db.database import get_raw_db
from app.main import app
from app.models import AllowlistAuditLog, AppUser, Base
from app.services.audit_service import AuditRecorder


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so audit worker threads see committed rows."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'allowlist.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def recorder(session_factory):
    return AuditRecorder(session_factory, max_workers=4)


@pytest.fixture
def staff_user(db):
    user = AppUser(
        auth_uid="staff-uid-1",
        email="staff@example.com",
        display_name="Staff Member",
        role="staff",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def audit_rows(session_factory):
    """Reads back the audit trail through a fresh session."""

    def _read():
        with session_factory() as session:
            return list(
                session.scalars(
                    select(AllowlistAuditLog).order_by(AllowlistAuditLog.email)
                ).all()
            )

    return _read


@pytest.fixture
def override_db(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_raw_db] = _get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture
def client(override_db, staff_user):
    """Client authenticated as ``staff_user``."""
    staff = StaffContext(
        auth_user_id=staff_user.auth_uid,
        app_user_id=staff_user.id,
        email=staff_user.email,
    )
    app.dependency_overrides[require_staff] = lambda: staff
    return TestClient(app)
