from fastapi.testclient import TestClient


def test_create_shift_definition(client: TestClient, manager_headers: dict[str, str], schedule: dict) -> None:
    r = client.post(
        f"/schedules/{schedule['id']}/shifts",
        headers=manager_headers,
        json={"shift_letter": "c", "start_time": "1830", "duration_hours": 12, "pilots_required": 3},
    )
    assert r.status_code == 200, r.text
    shift = r.json()["shiftDefinition"]
    assert shift["shift_letter"] == "C"
    assert shift["start_time"] == "18:30"
    assert shift["duration_hours"] == 12
    assert shift["pilots_required"] == 3


def test_shift_defaults(client: TestClient, manager_headers: dict[str, str], schedule: dict) -> None:
    r = client.post(
        f"/schedules/{schedule['id']}/shifts",
        headers=manager_headers,
        json={"shift_letter": "D", "start_time": "06:00"},
    )
    shift = r.json()["shiftDefinition"]
    assert (shift["duration_hours"], shift["pilots_required"]) == (8, 2)


def test_shift_validation(client: TestClient, manager_headers: dict[str, str], schedule: dict) -> None:
    url = f"/schedules/{schedule['id']}/shifts"
    for body in [
        {"start_time": "08:00"},
        {"shift_letter": "C"},
        {"shift_letter": "C", "start_time": "25:00"},
        {"shift_letter": "C", "start_time": "8am"},
        {"shift_letter": "C", "start_time": "08:00", "duration_hours": 0},
    ]:
        r = client.post(url, headers=manager_headers, json=body)
        assert r.status_code == 400, body

    r = client.post(url, headers=manager_headers, json={"shift_letter": "A", "start_time": "08:00"})
    assert r.status_code == 400
    assert r.json() == {"message": "A shift with this letter already exists for this schedule"}


def test_update_shift_definition(
    client: TestClient, manager_headers: dict[str, str], schedule: dict, shift_a: dict
) -> None:
    url = f"/schedules/{schedule['id']}/shifts/{shift_a['id']}"
    r = client.put(url, headers=manager_headers, json={"shift_letter": "A", "start_time": "0715", "pilots_required": 1})
    assert r.status_code == 200
    assert r.json()["shiftDefinition"]["start_time"] == "07:15"
    assert r.json()["shiftDefinition"]["pilots_required"] == 1

    r = client.put(url, headers=manager_headers, json={"shift_letter": "B", "start_time": "07:15"})
    assert r.status_code == 400

    r = client.put(
        f"/schedules/{schedule['id']}/shifts/999",
        headers=manager_headers,
        json={"shift_letter": "Z", "start_time": "07:15"},
    )
    assert r.status_code == 404


def test_delete_shift_definition_removes_assignments(
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

    r = client.delete(f"/schedules/{sid}/shifts/{shift_a['id']}", headers=manager_headers)
    assert r.status_code == 200
    letters = [s["shift_letter"] for s in client.get(f"/schedules/{sid}/shifts", headers=manager_headers).json()["shiftDefinitions"]]
    assert letters == ["B"]
    assert client.get(f"/assignments/published?scheduleId={sid}", headers=manager_headers).json() == []
    assert client.get(f"/schedules/{sid}/daily-shifts", headers=manager_headers).json() == {"dailyShifts": []}

    r = client.delete(f"/schedules/{sid}/shifts/{shift_a['id']}", headers=manager_headers)
    assert r.status_code == 404


def test_shift_mutations_require_manager(
    client: TestClient, pilot_headers: dict[str, str], schedule: dict, shift_a: dict
) -> None:
    r = client.post(
        f"/schedules/{schedule['id']}/shifts",
        headers=pilot_headers,
        json={"shift_letter": "C", "start_time": "08:00"},
    )
    assert r.status_code == 403
    r = client.delete(f"/schedules/{schedule['id']}/shifts/{shift_a['id']}", headers=pilot_headers)
    assert r.status_code == 403


def test_training_days(client: TestClient, manager_headers: dict[str, str], schedule: dict) -> None:
    url = f"/schedules/{schedule['id']}/training"
    r = client.post(url, headers=manager_headers, json={"training_date": "2025-03-15"})
    assert r.status_code == 200
    training_id = r.json()["trainingDay"]["id"]

    assert client.post(url, headers=manager_headers, json={"training_date": "2025-03-15"}).status_code == 400
    assert client.post(url, headers=manager_headers, json={"training_date": "March 15"}).status_code == 400
    assert client.post(url, headers=manager_headers, json={}).status_code == 400

    days = client.get(url, headers=manager_headers).json()["trainingDays"]
    assert days == [{"id": training_id, "training_date": "2025-03-15", "training_name": "Training", "pilots": []}]

    assert client.delete(f"{url}/{training_id}", headers=manager_headers).status_code == 200
    assert client.get(url, headers=manager_headers).json()["trainingDays"] == []
    assert client.delete(f"{url}/{training_id}", headers=manager_headers).status_code == 404


def test_daily_shifts_show_published_pilots(
    client: TestClient,
    manager_headers: dict[str, str],
    pilot_headers: dict[str, str],
    schedule: dict,
    shift_a: dict,
    pilot_id: int,
) -> None:
    sid = schedule["id"]
    client.post(
        f"/schedules/{sid}/assignments",
        headers=manager_headers,
        json={"type": "shift", "date": "2025-03-04", "shiftId": shift_a["id"], "slotIndex": 0, "pilotId": pilot_id},
    )
    client.post(f"/schedules/{sid}/publish", headers=manager_headers)

    daily = client.get(f"/schedules/{sid}/daily-shifts", headers=pilot_headers).json()["dailyShifts"]
    assert len(daily) == 1
    assert daily[0]["shift_date"] == "2025-03-04"
    assert daily[0]["pilots"] == [
        {"id": pilot_id, "first_name": "Ana", "last_name": "Diaz", "assignment_order": 0}
    ]
