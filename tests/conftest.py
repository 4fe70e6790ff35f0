import os
import tempfile
from datetime import datetime, timedelta, timezone

import mongomock
import pymongo
import pytest

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "tabletop_test"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="tabletop-uploads-")
os.environ["JWT_SECRET"] = "test-secret"

# the app connects at import time, so the in-memory client must be in place first
pymongo.MongoClient = mongomock.MongoClient

from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "secret123"


@pytest.fixture
def db():
    return database.db


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c
    for name in db.list_collection_names():
        db.drop_collection(name)


def register(client, username, **extra):
    payload = {
        "email": f"{username}@example.com",
        "password": PASSWORD,
        "username": username,
        "first_name": username.capitalize(),
        "last_name": "Tester",
    }
    payload.update(extra)
    res = client.post("/api/auth/register", json=payload)
    assert res.status_code == 201, res.text
    data = res.json()["data"]
    return {"id": data["user"]["id"], "token": data["token"], "user": data["user"]}


def auth(account):
    return {"Authorization": f"Bearer {account['token']}"}


def set_role(db, account, role):
    from bson import ObjectId

    db["user"].update_one({"_id": ObjectId(account["id"])}, {"$set": {"role": role}})


@pytest.fixture
def player(client):
    return register(client, "player")


@pytest.fixture
def gm(client, db):
    account = register(client, "gamemaster")
    set_role(db, account, "approved_gm")
    return account


@pytest.fixture
def admin(client, db):
    account = register(client, "admin")
    set_role(db, account, "admin")
    return account


def future(days=7, hours=0):
    return (datetime.now(timezone.utc) + timedelta(days=days, hours=hours)).isoformat()


def game_payload(**overrides):
    payload = {
        "title": "Curse of the Crimson Keep",
        "description": "A gothic one-shot for brave adventurers.",
        "system": "dnd_5e",
        "platform": "online",
        "session_type": "one_shot",
        "experience_level": "beginner",
        "price": 20,
        "capacity": 4,
        "schedule": {"start_time": future(7), "end_time": future(7, 4)},
        "online_details": {"platform": "Discord"},
        "tags": ["horror", "gothic"],
    }
    payload.update(overrides)
    return payload


def create_game(client, gm_account, **overrides):
    res = client.post("/api/games", json=game_payload(**overrides), headers=auth(gm_account))
    assert res.status_code == 201, res.text
    return res.json()["data"]


def make_friends(client, a, b):
    res = client.post("/api/messages/friends/request", json={"recipient_id": b["id"]}, headers=auth(a))
    assert res.status_code == 201, res.text
    request_id = res.json()["data"]["id"]
    res = client.patch(f"/api/messages/friends/requests/{request_id}", json={"action": "accept"}, headers=auth(b))
    assert res.status_code == 200, res.text
