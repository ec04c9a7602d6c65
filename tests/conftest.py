import os
import tempfile
from collections.abc import Generator

os.environ.setdefault("DB_DIR", tempfile.mkdtemp(prefix="pilot_schedule_"))

import pytest
from fastapi.testclient import TestClient

from pilot_schedule import db
from pilot_schedule.main import app


@pytest.fixture()
def client(tmp_path, monkeypatch) -> Generator[TestClient, None, None]:
    """Fresh database per test; startup creates the schema and the admin."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "test.sqlite")
    with TestClient(app) as c:
        yield c


def login_headers(client: TestClient, identifier: str, password: str) -> dict[str, str]:
    r = client.post("/auth/login", json={"username": identifier, "password": password})
    assert r.status_code == 200, r.text
    # tests pick the caller by header only
    client.cookies.clear()
    return {"Authorization": f"Bearer {r.json()['token']}"}


def make_user(
    client: TestClient,
    manager_headers: dict[str, str],
    username: str,
    role: str = "pilot",
    first_name: str = "Test",
    last_name: str = "Pilot",
) -> int:
    r = client.post(
        "/pilots",
        headers=manager_headers,
        json={
            "username": username,
            "password": "secret123",
            "first_name": first_name,
            "last_name": last_name,
            "role": role,
        },
    )
    assert r.status_code == 201, r.text
    return r.json()["id"]


@pytest.fixture()
def manager_headers(client: TestClient) -> dict[str, str]:
    return login_headers(client, "admin", "admin123")


@pytest.fixture()
def pilot_id(client: TestClient, manager_headers: dict[str, str]) -> int:
    return make_user(client, manager_headers, "pilot1", first_name="Ana", last_name="Diaz")


@pytest.fixture()
def pilot_headers(client: TestClient, pilot_id: int) -> dict[str, str]:
    return login_headers(client, "pilot1", "secret123")


@pytest.fixture()
def schedule(client: TestClient, manager_headers: dict[str, str]) -> dict:
    r = client.post(
        "/schedules",
        headers=manager_headers,
        json={"month": 3, "year": 2025, "shifts_per_day": 2},
    )
    assert r.status_code == 200, r.text
    return r.json()["schedule"]


@pytest.fixture()
def shift_a(client: TestClient, manager_headers: dict[str, str], schedule: dict) -> dict:
    r = client.get(f"/schedules/{schedule['id']}/shifts", headers=manager_headers)
    return next(s for s in r.json()["shiftDefinitions"] if s["shift_letter"] == "A")
