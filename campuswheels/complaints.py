from typing import Optional

from fastapi import APIRouter, Depends

from .config import COMPLAINT_TRANSITIONS, COMPLAINT_CLOSED_STATUSES, COMPLAINT_STATUSES
from .database import get_db, COMPLAINTS, RIDES, USERS
from .exceptions import (
    CarpoolError, SelfComplaint, ComplaintNotFound, InvalidTransition, RideNotFound, UserNotFound
)
from .models import ComplaintCreate, ComplaintUpdate
from .utils import (
    get_current_user, require_admin, parse_object_id, load_user_summaries, log_admin_action, now_iso
)

router = APIRouter()


def serialize_complaint(complaint: dict, people: dict = None) -> dict:
    people = people or {}
    return {
        "id": str(complaint["_id"]),
        "complainant_id": complaint["complainant_id"],
        "complainant": people.get(complaint["complainant_id"]),
        "accused_id": complaint["accused_id"],
        "accused": people.get(complaint["accused_id"]),
        "ride_id": complaint.get("ride_id"),
        "category": complaint["category"],
        "description": complaint["description"],
        "status": complaint["status"],
        "admin_notes": complaint.get("admin_notes"),
        "resolved_at": complaint.get("resolved_at"),
        "created_at": complaint.get("created_at", ""),
        "updated_at": complaint.get("updated_at", "")
    }


def _serialize_all(db, complaints: list) -> list:
    people = load_user_summaries(
        db, [c["complainant_id"] for c in complaints] + [c["accused_id"] for c in complaints]
    )
    return [serialize_complaint(c, people) for c in complaints]


def file_complaint(db, complainant: dict, data: ComplaintCreate) -> dict:
    if data.accused_id == complainant["id"]:
        raise SelfComplaint()
    if not db[USERS].find_one({"_id": parse_object_id(data.accused_id, "user")}):
        raise UserNotFound("Accused user not found")
    if data.ride_id and not db[RIDES].find_one({"_id": parse_object_id(data.ride_id, "ride")}):
        raise RideNotFound()

    now = now_iso()
    complaint = {
        "complainant_id": complainant["id"],
        "accused_id": data.accused_id,
        "ride_id": data.ride_id,
        "category": data.category,
        "description": data.description,
        "status": "pending",
        "admin_notes": None,
        "resolved_at": None,
        "created_at": now,
        "updated_at": now
    }
    result = db[COMPLAINTS].insert_one(complaint)
    complaint["_id"] = result.inserted_id
    return complaint


def update_complaint_status(db, complaint_id: str, status: str, admin_notes: Optional[str] = None) -> dict:
    complaint_oid = parse_object_id(complaint_id, "complaint")
    complaint = db[COMPLAINTS].find_one({"_id": complaint_oid})
    if not complaint:
        raise ComplaintNotFound()

    current = complaint["status"]
    if status not in COMPLAINT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move complaint from {current} to {status}")

    update_data = {
        "status": status,
        "admin_notes": admin_notes or complaint.get("admin_notes"),
        "updated_at": now_iso()
    }
    if status in COMPLAINT_CLOSED_STATUSES:
        update_data["resolved_at"] = update_data["updated_at"]

    # Guard on the status we validated against
    result = db[COMPLAINTS].update_one({"_id": complaint_oid, "status": current}, {"$set": update_data})
    if result.matched_count == 0:
        raise InvalidTransition("Complaint was updated by another request")

    complaint.update(update_data)
    return complaint


@router.post("/api/complaints", status_code=201)
def post_complaint(data: ComplaintCreate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    complaint = file_complaint(db, current_user, data)
    return {"message": "Complaint filed successfully", "complaint": serialize_complaint(complaint)}

@router.get("/api/complaints")
def get_all_complaints(status: Optional[str] = None, admin: dict = Depends(require_admin), db=Depends(get_db)):
    query = {}
    if status:
        if status not in COMPLAINT_STATUSES:
            raise CarpoolError("Invalid status")
        query["status"] = status
    complaints = list(db[COMPLAINTS].find(query).sort("created_at", -1))
    return {"complaints": _serialize_all(db, complaints)}

@router.get("/api/complaints/user")
def get_user_complaints(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    filed = list(db[COMPLAINTS].find({"complainant_id": current_user["id"]}).sort("created_at", -1))
    received = list(db[COMPLAINTS].find({"accused_id": current_user["id"]}).sort("created_at", -1))
    return {
        "complaints_filed": _serialize_all(db, filed),
        "complaints_received": _serialize_all(db, received)
    }

@router.put("/api/complaints/{complaint_id}")
def put_complaint(complaint_id: str, data: ComplaintUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    complaint = update_complaint_status(db, complaint_id, data.status, data.admin_notes)
    log_admin_action(
        db, admin,
        action_type=f"complaint_{data.status}",
        target_type="complaint",
        target_id=complaint_id,
        details={"notes": data.admin_notes}
    )
    return {"message": "Complaint updated successfully", "complaint": serialize_complaint(complaint)}
