import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import get_password_hash
from app.database.connection import Base
from app.models import category, coupon, order  # noqa: F401
from app.models.user import User

TEST_DB_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_test_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    # service commits stay inside this outer transaction
    connection = engine.connect()
    trans = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        trans.rollback()
        connection.close()


class _State:
    pass


class _App:
    def __init__(self):
        self.state = _State()


class FakeRequest:
    """Just enough of starlette's Request for handlers that touch app.state."""

    def __init__(self):
        self.app = _App()


@pytest.fixture()
def fake_request():
    return FakeRequest()


@pytest.fixture()
def buyer(db):
    user = User(
        username="buyer_e2e",
        email="buyer@example.com",
        hashed_password=get_password_hash("password123"),
        role="user",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
