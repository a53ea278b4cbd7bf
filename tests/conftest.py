import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from happy_loop import db
from happy_loop import models  # ensure models are registered with metadata
from happy_loop import storage
from happy_loop.main import app


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

def override_get_session():
    with Session(test_engine) as session:
        yield session


def reset_database():
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)


db.engine = test_engine
app.dependency_overrides[db.get_session] = override_get_session


@pytest.fixture(autouse=True)
def setup_db(tmp_path, monkeypatch):
    reset_database()
    monkeypatch.setattr(storage, "UPLOADS_DIR", str(tmp_path))
    yield


@pytest.fixture
def client():
    reset_database()
    return TestClient(app)


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def parent_client(client):
    client.post(
        "/api/auth/create-parent",
        json={"email": "parent@example.com", "name": "Parent", "password": "pw"},
    )
    client.post("/login", data={"email": "parent@example.com", "password": "pw"})
    return client
