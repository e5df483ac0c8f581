import pytest

from campuswheels import sos as sos_module
from campuswheels.database import AUDIT_LOGS, SOS_ALERTS
from campuswheels.exceptions import (
    ComplaintNotFound, InvalidTransition, NotRideMember, SelfComplaint, UserNotFound
)
from campuswheels.complaints import file_complaint, update_complaint_status
from campuswheels.lifecycle import join_ride, leave_ride
from campuswheels.models import ComplaintCreate, SOSCreate
from campuswheels.sos import resolve_sos, trigger_sos

from conftest import auth_headers

DESCRIPTION = "Driver was speeding on the highway"


def complaint_data(accused, **overrides):
    data = {"accused_id": accused["id"], "category": "safety", "description": DESCRIPTION}
    data.update(overrides)
    return ComplaintCreate(**data)


def test_file_complaint_starts_pending(db, make_user):
    complainant, accused = make_user(), make_user()

    complaint = file_complaint(db, complainant, complaint_data(accused))

    assert complaint["status"] == "pending"
    assert complaint["resolved_at"] is None


def test_complaint_against_self_or_unknown_user(db, make_user):
    user = make_user()
    with pytest.raises(SelfComplaint):
        file_complaint(db, user, complaint_data(user))
    with pytest.raises(UserNotFound):
        file_complaint(db, user, complaint_data({"id": "5f8d0d55b54764421b7156c9"}))


def test_complaint_transitions(db, make_user):
    complaint = file_complaint(db, make_user(), complaint_data(make_user()))
    complaint_id = str(complaint["_id"])

    updated = update_complaint_status(db, complaint_id, "investigating")
    assert updated["status"] == "investigating"
    assert updated["resolved_at"] is None

    with pytest.raises(InvalidTransition):
        update_complaint_status(db, complaint_id, "pending")

    resolved = update_complaint_status(db, complaint_id, "resolved", "Warned the driver")
    assert resolved["resolved_at"]
    assert resolved["admin_notes"] == "Warned the driver"

    with pytest.raises(InvalidTransition):
        update_complaint_status(db, complaint_id, "dismissed")
    with pytest.raises(ComplaintNotFound):
        update_complaint_status(db, "5f8d0d55b54764421b7156c9", "resolved")


def test_complaint_endpoints(client, db, make_user):
    complainant, accused, admin = make_user(), make_user(), make_user(role="admin")

    response = client.post(
        "/api/complaints",
        json={"accused_id": accused["id"], "category": "harassment", "description": DESCRIPTION},
        headers=auth_headers(complainant)
    )
    assert response.status_code == 201
    complaint_id = response.json()["complaint"]["id"]

    assert client.get("/api/complaints", headers=auth_headers(complainant)).status_code == 403
    listed = client.get("/api/complaints", params={"status": "pending"}, headers=auth_headers(admin)).json()
    assert [c["id"] for c in listed["complaints"]] == [complaint_id]
    assert listed["complaints"][0]["accused"]["username"] == accused["username"]

    mine = client.get("/api/complaints/user", headers=auth_headers(accused)).json()
    assert mine["complaints_filed"] == []
    assert [c["id"] for c in mine["complaints_received"]] == [complaint_id]

    response = client.put(
        f"/api/complaints/{complaint_id}",
        json={"status": "dismissed", "admin_notes": "No evidence"},
        headers=auth_headers(admin)
    )
    assert response.status_code == 200
    log = db[AUDIT_LOGS].find_one({"target_id": complaint_id})
    assert log["action_type"] == "complaint_dismissed"
    assert log["admin_id"] == admin["id"]

    response = client.put(f"/api/complaints/{complaint_id}", json={"status": "resolved"}, headers=auth_headers(admin))
    assert response.status_code == 400


def test_complaint_rejects_unknown_category(client, make_user):
    response = client.post(
        "/api/complaints",
        json={"accused_id": make_user()["id"], "category": "rudeness", "description": DESCRIPTION},
        headers=auth_headers(make_user())
    )
    assert response.status_code == 400


def test_sos_by_participant_notifies(db, make_user, make_ride, outbox):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver)
    join_ride(db, str(ride["_id"]), rider)

    alert = trigger_sos(db, rider, SOSCreate(ride_id=str(ride["_id"]), location="NH 183", message="Help"))

    assert alert["status"] == "active"
    assert len(outbox) == 1
    details = outbox[0]["details"]
    assert details["alert_id"] == str(alert["_id"])
    assert details["driver_name"] == driver["username"]
    assert details["location"] == "NH 183"


def test_sos_by_outsider_or_former_rider_is_refused(db, make_user, make_ride, outbox):
    driver, stranger, former = make_user(), make_user(), make_user()
    ride = make_ride(driver)
    join_ride(db, str(ride["_id"]), former)
    leave_ride(db, str(ride["_id"]), former)

    for user in (stranger, former):
        with pytest.raises(NotRideMember):
            trigger_sos(db, user, SOSCreate(ride_id=str(ride["_id"])))

    assert db[SOS_ALERTS].count_documents({}) == 0
    assert outbox == []


def test_sos_alert_survives_notification_failure(db, make_user, make_ride, monkeypatch):
    driver = make_user()
    ride = make_ride(driver)

    def broken_send(details):
        raise ConnectionRefusedError("smtp down")

    monkeypatch.setattr(sos_module, "send_sos_email", broken_send)

    alert = trigger_sos(db, driver, SOSCreate(ride_id=str(ride["_id"])))

    assert db[SOS_ALERTS].find_one({"_id": alert["_id"]})["status"] == "active"


def test_sos_resolution_is_final(db, make_user, make_ride):
    driver, admin = make_user(), make_user(role="admin")
    alert = trigger_sos(db, driver, SOSCreate(ride_id=str(make_ride(driver)["_id"])))

    resolved = resolve_sos(db, str(alert["_id"]), "false_alarm", admin, "Pressed by mistake")

    assert resolved["resolved_by"] == admin["id"]
    assert resolved["resolved_at"]
    with pytest.raises(InvalidTransition):
        resolve_sos(db, str(alert["_id"]), "resolved", admin)


def test_sos_endpoints(client, db, make_user, make_ride):
    driver, admin = make_user(), make_user(role="admin")
    ride = make_ride(driver)

    response = client.post(
        "/api/sos", json={"ride_id": str(ride["_id"]), "latitude": 9.5, "longitude": 76.5},
        headers=auth_headers(driver)
    )
    assert response.status_code == 201
    alert_id = response.json()["alert"]["id"]

    assert client.get("/api/sos", headers=auth_headers(driver)).status_code == 403
    listed = client.get("/api/sos", headers=auth_headers(admin)).json()
    assert listed["counts"] == {"active": 1, "resolved": 0, "false_alarm": 0}
    assert listed["alerts"][0]["user"]["username"] == driver["username"]

    response = client.put(f"/api/sos/{alert_id}", json={"status": "resolved"}, headers=auth_headers(admin))
    assert response.json()["alert"]["status"] == "resolved"
    assert db[AUDIT_LOGS].find_one({"target_id": alert_id})["action_type"] == "sos_resolved"

    response = client.put(f"/api/sos/{alert_id}", json={"status": "active"}, headers=auth_headers(admin))
    assert response.status_code == 400
