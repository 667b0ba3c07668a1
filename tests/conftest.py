import itertools
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rehearsal_scheduler import services
from rehearsal_scheduler.api import app
from rehearsal_scheduler.db import get_db, init_db


@pytest.fixture
def engine():
    # One in-memory database per test, shared by every connection.
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    def _make(name=None, email=None, password="correct-horse"):
        n = next(counter)
        user, _ = services.register_user(session, {
            "name": name or f"Player {n}",
            "email": email or f"player{n}@example.com",
            "password": password,
        })
        return user

    return _make


@pytest.fixture
def band(session, make_user):
    """A band with one admin and two plain members."""
    admin = make_user("Ada")
    alice = make_user("Alice")
    bob = make_user("Bob")
    created = services.create_band(session, "The Testers", admin.id)
    services.add_band_member(session, created.id, admin.id, alice.id)
    services.add_band_member(session, created.id, admin.id, bob.id)
    return SimpleNamespace(id=created.id, admin=admin, alice=alice, bob=bob)


def rehearsal_payload(**overrides):
    payload = {
        "bandId": 1,
        "title": "Weekly practice",
        "startTime": "2030-01-07T18:00:00Z",
        "endTime": "2030-01-07T20:00:00Z",
        "venue": {"name": "Studio A", "address": "1 Main St"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def payload():
    return rehearsal_payload
