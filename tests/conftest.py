# tests/conftest.py

import os

# must be set before database.py builds its engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

from database import Base, SessionLocal, engine
from integrity import ReferenceIntegrityEngine
from main import app
from models import Task, User
from schemas import TaskPayload, UserPayload

from .helpers import DEADLINE


@pytest.fixture(autouse=True)
def fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def integrity(db) -> ReferenceIntegrityEngine:
    return ReferenceIntegrityEngine(db)


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def make_user(integrity):
    def _make(name="Ada", email=None, pending=None) -> User:
        return integrity.create_user(
            UserPayload(name=name, email=email or f"{name.lower()}@example.com", pendingTasks=pending)
        )
    return _make


@pytest.fixture()
def make_task(integrity):
    def _make(name="Write report", assigned_user="", completed=False, deadline=DEADLINE) -> Task:
        return integrity.create_task(
            TaskPayload(name=name, deadline=deadline, assignedUser=assigned_user, completed=completed)
        )
    return _make

