from fastapi.testclient import TestClient

from conftest import login_headers, make_user


def test_create_user_by_email(client: TestClient, manager_headers: dict[str, str]) -> None:
    body = {
        "first_name": "Marta",
        "last_name": "Ruiz",
        "email": "Marta@Example.com",
        "role": "pilot",
        "password": "secret123",
    }
    r = client.post("/users", headers=manager_headers, json=body)
    assert r.status_code == 201
    user = r.json()
    assert user["email"] == "marta@example.com"
    assert user["is_active"] is True
    assert "password_hash" not in user

    assert client.post("/users", headers=manager_headers, json=body).status_code == 400
    assert login_headers(client, "marta@example.com", "secret123")


def test_create_user_validation(client: TestClient, manager_headers: dict[str, str]) -> None:
    r = client.post("/users", headers=manager_headers, json={"first_name": "X"})
    assert r.status_code == 400
    r = client.post(
        "/pilots",
        headers=manager_headers,
        json={"username": "x", "password": "p", "first_name": "X", "last_name": "Y", "role": "captain"},
    )
    assert r.status_code == 400
    assert r.json() == {"message": "Invalid role"}


def test_duplicate_username(client: TestClient, manager_headers: dict[str, str], pilot_id: int) -> None:
    r = client.post(
        "/pilots",
        headers=manager_headers,
        json={"username": "PILOT1", "password": "p", "first_name": "X", "last_name": "Y", "role": "pilot"},
    )
    assert r.status_code == 400


def test_assignable_pilots(
    client: TestClient, manager_headers: dict[str, str], pilot_headers: dict[str, str], pilot_id: int
) -> None:
    make_user(client, manager_headers, "viewer1", role="viewer")
    inactive = make_user(client, manager_headers, "pilot2")
    client.put(f"/pilots/{inactive}", headers=manager_headers, json={"is_active": False})

    r = client.get("/users/pilots", headers=pilot_headers)
    assert r.status_code == 200
    usernames = {p["username"] for p in r.json()["pilots"]}
    assert usernames == {"admin", "pilot1"}


def test_pilot_crud(client: TestClient, manager_headers: dict[str, str], pilot_id: int) -> None:
    r = client.get(f"/pilots/{pilot_id}", headers=manager_headers)
    assert r.status_code == 200
    assert r.json()["first_name"] == "Ana"

    r = client.put(
        f"/pilots/{pilot_id}",
        headers=manager_headers,
        json={"first_name": "Ana Maria", "email": "ana@example.com"},
    )
    assert r.status_code == 200
    assert r.json()["first_name"] == "Ana Maria"
    assert r.json()["email"] == "ana@example.com"

    r = client.get("/pilots", headers=manager_headers)
    assert pilot_id in [p["id"] for p in r.json()["pilots"]]

    r = client.delete(f"/pilots/{pilot_id}", headers=manager_headers)
    assert r.status_code == 200
    assert r.json()["deletedPilot"]["id"] == pilot_id
    assert client.get(f"/pilots/{pilot_id}", headers=manager_headers).status_code == 404
    assert client.delete(f"/pilots/{pilot_id}", headers=manager_headers).status_code == 404


def test_manager_cannot_delete_self(client: TestClient, manager_headers: dict[str, str]) -> None:
    me = client.get("/auth/session", headers=manager_headers).json()["user"]["id"]
    r = client.delete(f"/pilots/{me}", headers=manager_headers)
    assert r.status_code == 400


def test_get_manager_as_pilot_is_not_found(client: TestClient, manager_headers: dict[str, str]) -> None:
    me = client.get("/auth/session", headers=manager_headers).json()["user"]["id"]
    assert client.get(f"/pilots/{me}", headers=manager_headers).status_code == 404


def test_user_routes_require_manager(client: TestClient, pilot_headers: dict[str, str]) -> None:
    assert client.get("/users", headers=pilot_headers).status_code == 403
    assert client.get("/pilots", headers=pilot_headers).status_code == 403
    assert client.get("/pilots/1", headers=pilot_headers).status_code == 403


def test_deleting_pilot_drops_their_assignments(
    client: TestClient,
    manager_headers: dict[str, str],
    schedule: dict,
    shift_a: dict,
    pilot_id: int,
) -> None:
    sid = schedule["id"]
    client.post(
        f"/schedules/{sid}/assignments",
        headers=manager_headers,
        json={"type": "shift", "date": "2025-03-01", "shiftId": shift_a["id"], "slotIndex": 0, "pilotId": pilot_id},
    )
    client.delete(f"/pilots/{pilot_id}", headers=manager_headers)
    r = client.get(f"/schedules/{sid}/assignments", headers=manager_headers)
    assert r.json()["shiftAssignments"] == []


def test_update_pilot_keeps_an_identifier(client: TestClient, manager_headers: dict[str, str]) -> None:
    r = client.post(
        "/users",
        headers=manager_headers,
        json={"first_name": "Eva", "last_name": "Sol", "email": "eva@example.com", "role": "pilot", "password": "p"},
    )
    eva = r.json()["id"]

    r = client.put(f"/pilots/{eva}", headers=manager_headers, json={"first_name": "Eva Maria"})
    assert r.status_code == 200
    assert r.json()["email"] == "eva@example.com"

    r = client.put(f"/pilots/{eva}", headers=manager_headers, json={"email": ""})
    assert r.status_code == 400
    assert client.get(f"/pilots/{eva}", headers=manager_headers).json()["email"] == "eva@example.com"
