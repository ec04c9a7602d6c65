from fastapi.testclient import TestClient


def test_create_schedule_with_default_shifts(
    client: TestClient, manager_headers: dict[str, str], schedule: dict
) -> None:
    assert schedule["is_published"] is False
    assert schedule["version"] == 0
    r = client.get(f"/schedules/{schedule['id']}/shifts", headers=manager_headers)
    assert r.status_code == 200
    shifts = r.json()["shiftDefinitions"]
    assert [s["shift_letter"] for s in shifts] == ["A", "B"]
    for s in shifts:
        assert s["start_time"] == "08:00"
        assert s["duration_hours"] == 8
        assert s["pilots_required"] == 2


def test_duplicate_month_rejected(
    client: TestClient, manager_headers: dict[str, str], schedule: dict
) -> None:
    r = client.post(
        "/schedules",
        headers=manager_headers,
        json={"month": 3, "year": 2025, "shifts_per_day": 1},
    )
    assert r.status_code == 400
    assert r.json() == {"message": "A schedule for this month already exists"}


def test_create_schedule_validation(client: TestClient, manager_headers: dict[str, str]) -> None:
    for body in [
        {"month": 13, "year": 2025, "shifts_per_day": 1},
        {"month": 0, "year": 2025, "shifts_per_day": 1},
        {"month": 1, "year": "abc", "shifts_per_day": 1},
        {"month": 1, "year": 2025, "shifts_per_day": 0},
        {"month": 1, "year": 2025, "shifts_per_day": 11},
        {"year": 2025, "shifts_per_day": 1},
    ]:
        r = client.post("/schedules", headers=manager_headers, json=body)
        assert r.status_code == 400, body


def test_pilot_cannot_create_schedule(client: TestClient, pilot_headers: dict[str, str]) -> None:
    r = client.post(
        "/schedules",
        headers=pilot_headers,
        json={"month": 4, "year": 2025, "shifts_per_day": 1},
    )
    assert r.status_code == 403


def test_listing_requires_session(client: TestClient) -> None:
    assert client.get("/schedules").status_code == 401


def test_non_manager_sees_only_published(
    client: TestClient,
    manager_headers: dict[str, str],
    pilot_headers: dict[str, str],
    schedule: dict,
) -> None:
    r = client.post(
        "/schedules",
        headers=manager_headers,
        json={"month": 4, "year": 2025, "shifts_per_day": 1},
    )
    april = r.json()["schedule"]
    client.post(f"/schedules/{april['id']}/publish", headers=manager_headers)

    r = client.get("/schedules", headers=manager_headers)
    assert {s["id"] for s in r.json()["schedules"]} == {schedule["id"], april["id"]}

    r = client.get("/schedules", headers=pilot_headers)
    listed = r.json()["schedules"]
    assert [s["id"] for s in listed] == [april["id"]]
    assert all(s["is_published"] for s in listed)


def test_unpublished_schedule_hidden_from_pilot(
    client: TestClient, pilot_headers: dict[str, str], schedule: dict
) -> None:
    sid = schedule["id"]
    assert client.get(f"/schedules/{sid}", headers=pilot_headers).status_code == 404
    assert client.get(f"/schedules/{sid}/shifts", headers=pilot_headers).status_code == 404
    assert client.get(f"/schedules/{sid}/training", headers=pilot_headers).status_code == 404
    assert client.get(f"/schedules/{sid}/daily-shifts", headers=pilot_headers).status_code == 404
    assert client.get(f"/schedules/{sid}/assignments", headers=pilot_headers).status_code == 403


def test_update_schedule(client: TestClient, manager_headers: dict[str, str], schedule: dict) -> None:
    r = client.put(
        f"/schedules/{schedule['id']}", headers=manager_headers, json={"shifts_per_day": 3}
    )
    assert r.status_code == 200
    assert r.json()["schedule"]["shifts_per_day"] == 3

    r = client.put("/schedules/999", headers=manager_headers, json={"shifts_per_day": 3})
    assert r.status_code == 404


def test_delete_schedule_cascades(
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
    client.post(f"/schedules/{sid}/publish", headers=manager_headers)
    client.post(f"/schedules/{sid}/training", headers=manager_headers, json={"training_date": "2025-03-10"})

    r = client.delete(f"/schedules/{sid}", headers=manager_headers)
    assert r.status_code == 200
    assert client.get(f"/schedules/{sid}", headers=manager_headers).status_code == 404
    assert client.get(f"/assignments/published?scheduleId={sid}", headers=manager_headers).json() == []
    assert client.delete(f"/schedules/{sid}", headers=manager_headers).status_code == 404


def test_non_numeric_id_is_bad_request(client: TestClient, manager_headers: dict[str, str]) -> None:
    r = client.get("/schedules/abc", headers=manager_headers)
    assert r.status_code == 400


def test_fractional_schedule_fields_rejected(client: TestClient, manager_headers: dict[str, str]) -> None:
    for body in [
        {"month": "6.7", "year": 2025, "shifts_per_day": 1},
        {"month": 6, "year": 2025.9, "shifts_per_day": 1},
        {"month": 6, "year": 2025, "shifts_per_day": 1.5},
    ]:
        r = client.post("/schedules", headers=manager_headers, json=body)
        assert r.status_code == 400, body
    assert client.get("/schedules", headers=manager_headers).json()["schedules"] == []
