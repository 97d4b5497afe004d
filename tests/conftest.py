"""Shared fixtures: an in-memory SQLite store per test, and an app wired to it."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from campaign_registry.main import create_app
from campaign_registry.models.database import Base, build_session_factory
from campaign_registry.services.store import PatientStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = build_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return PatientStore(db)


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine=engine)) as test_client:
        yield test_client
