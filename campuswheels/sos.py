import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends

from .config import SOS_TRANSITIONS, SOS_STATUSES
from .database import get_db, SOS_ALERTS, RIDES, USERS
from .exceptions import CarpoolError, SOSAlertNotFound, RideNotFound, NotRideMember, InvalidTransition
from .models import SOSCreate, SOSResolve
from .notifications import send_sos_email
from .participation import is_driver, is_active_participant
from .utils import (
    get_current_user, require_admin, parse_object_id, load_user_summaries, log_admin_action, now_iso
)

logger = logging.getLogger(__name__)

router = APIRouter()


def serialize_sos_alert(alert: dict, people: dict = None) -> dict:
    people = people or {}
    return {
        "id": str(alert["_id"]),
        "user_id": alert["user_id"],
        "user": people.get(alert["user_id"]),
        "ride_id": alert["ride_id"],
        "location": alert.get("location"),
        "latitude": alert.get("latitude"),
        "longitude": alert.get("longitude"),
        "message": alert.get("message"),
        "status": alert["status"],
        "notes": alert.get("notes"),
        "resolved_at": alert.get("resolved_at"),
        "resolved_by": alert.get("resolved_by"),
        "created_at": alert.get("created_at", "")
    }


def trigger_sos(db, user: dict, data: SOSCreate) -> dict:
    ride = db[RIDES].find_one({"_id": parse_object_id(data.ride_id, "ride")})
    if not ride:
        raise RideNotFound()
    if not (is_driver(ride, user["id"]) or is_active_participant(ride, user["id"])):
        raise NotRideMember()

    alert = {
        "user_id": user["id"],
        "ride_id": data.ride_id,
        "location": data.location,
        "latitude": data.latitude,
        "longitude": data.longitude,
        "message": data.message,
        "status": "active",
        "notes": None,
        "resolved_at": None,
        "resolved_by": None,
        "created_at": now_iso()
    }
    result = db[SOS_ALERTS].insert_one(alert)
    alert["_id"] = result.inserted_id
    logger.warning("SOS alert %s raised by %s on ride %s", result.inserted_id, user["id"], data.ride_id)

    driver = db[USERS].find_one({"_id": ObjectId(ride["driver_id"])}, {"password": 0}) or {}
    details = {
        "alert_id": str(result.inserted_id),
        "user_name": user.get("username"),
        "user_email": user.get("email"),
        "user_phone": user.get("phone_number"),
        "driver_name": driver.get("username"),
        "driver_phone": driver.get("phone_number"),
        "ride": {
            "start_location": ride["start_location"],
            "end_location": ride["end_location"],
            "ride_date_time": ride["ride_date_time"]
        },
        "location": data.location,
        "latitude": data.latitude,
        "longitude": data.longitude,
        "message": data.message,
        "timestamp": alert["created_at"]
    }
    # The alert stands even when the notification does not go out
    try:
        send_sos_email(details)
    except Exception:
        logger.exception("Failed to send SOS email for alert %s", result.inserted_id)

    return alert


def resolve_sos(db, alert_id: str, status: str, admin: dict, notes: Optional[str] = None) -> dict:
    alert_oid = parse_object_id(alert_id, "SOS")
    alert = db[SOS_ALERTS].find_one({"_id": alert_oid})
    if not alert:
        raise SOSAlertNotFound()

    current = alert["status"]
    if status not in SOS_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move SOS alert from {current} to {status}")

    update_data = {
        "status": status,
        "notes": notes or alert.get("notes"),
        "resolved_at": now_iso(),
        "resolved_by": admin["id"]
    }
    result = db[SOS_ALERTS].update_one({"_id": alert_oid, "status": current}, {"$set": update_data})
    if result.matched_count == 0:
        raise InvalidTransition("SOS alert was updated by another request")

    alert.update(update_data)
    return alert


@router.post("/api/sos", status_code=201)
def post_sos(sos_data: SOSCreate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    """Trigger SOS emergency for a ride"""
    alert = trigger_sos(db, current_user, sos_data)
    return {"message": "SOS alert triggered successfully", "alert": serialize_sos_alert(alert)}

@router.get("/api/sos")
def get_sos_alerts(status: Optional[str] = None, admin: dict = Depends(require_admin), db=Depends(get_db)):
    """Admin: Get SOS alerts"""
    query = {}
    if status:
        if status not in SOS_STATUSES:
            raise CarpoolError("Invalid status")
        query["status"] = status

    alerts = list(db[SOS_ALERTS].find(query).sort("created_at", -1))
    people = load_user_summaries(db, [a["user_id"] for a in alerts])
    return {
        "alerts": [serialize_sos_alert(a, people) for a in alerts],
        "counts": {s: db[SOS_ALERTS].count_documents({"status": s}) for s in SOS_STATUSES}
    }

@router.put("/api/sos/{sos_id}")
def put_sos(sos_id: str, action: SOSResolve, admin: dict = Depends(require_admin), db=Depends(get_db)):
    """Admin: Resolve or dismiss an SOS alert"""
    alert = resolve_sos(db, sos_id, action.status, admin, action.notes)
    log_admin_action(
        db, admin,
        action_type=f"sos_{action.status}",
        target_type="sos",
        target_id=sos_id,
        details={"notes": action.notes}
    )
    return {"message": "SOS alert updated successfully", "alert": serialize_sos_alert(alert)}
