"""
Shared pytest fixtures — in-memory SQLite, scripted AI providers, FastAPI TestClient.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models import FamilyModel, UserModel  # noqa: F401  — register models
from app.main import app
from app.pipeline.providers import Provider
from app.routers.ai import get_generator
from tests.helpers.accounts import bearer, register
from tests.helpers.fake_providers import FakeProviderClient, make_generator

# StaticPool ensures all connections share the same in-memory database
_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_Session = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE)


@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.create_all(bind=_ENGINE)
    yield
    Base.metadata.drop_all(bind=_ENGINE)


@pytest.fixture()
def db():
    session = _Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def generator():
    return make_generator(FakeProviderClient(), FakeProviderClient())


@pytest.fixture()
def primary(generator):
    return generator._clients[Provider.PRIMARY]


@pytest.fixture()
def secondary(generator):
    return generator._clients[Provider.SECONDARY]


@pytest.fixture()
def client(db, generator):
    def _override():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override
    app.dependency_overrides[get_generator] = lambda: generator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def account(client):
    return register(client)


@pytest.fixture()
def auth_headers(account):
    return bearer(account)
