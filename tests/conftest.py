import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from database import create_document, get_db
from main import app
from schemas import User
from team_routes import build_team


@pytest.fixture
def db():
    return mongomock.MongoClient()["promptpro_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email="user@example.com", plan="Free", prompt_count=0, role="user"):
        user = User(
            email=email,
            password_hash=hash_password("password123"),
            name=email.split("@")[0],
            role=role,
            plan=plan,
            promptCount=prompt_count,
        )
        user_id = create_document(db, "user", user)
        return db["user"].find_one({"email": email}), user_id

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user_id, role="user"):
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}

    return _headers


@pytest.fixture
def make_team(db):
    def _make(owner_id, members=(), name="Writers"):
        team = build_team(name, None, owner_id).model_dump()
        for user_id, role in members:
            team["members"].append({"user": user_id, "role": role})
        return create_document(db, "team", team)

    return _make

