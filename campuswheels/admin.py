import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .config import (
    DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ROLE_ADMIN,
    RIDE_ACTIVE, RIDE_COMPLETED, RIDE_CANCELLED, PARTICIPANT_LEFT
)
from .database import get_db, USERS, RIDES, RATINGS, COMPLAINTS, SOS_ALERTS, AUDIT_LOGS
from .exceptions import CarpoolError, UserNotFound, AdminRequired, ConcurrentModification
from .models import BanRequest
from .utils import (
    require_admin, serialize_user, serialize_ride, parse_object_id, pagination,
    log_admin_action, now_iso
)

logger = logging.getLogger(__name__)

router = APIRouter()

# User Management
@router.get("/api/admin/users")
def admin_get_users(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: Optional[str] = None,
    status: Optional[str] = None,
    admin: dict = Depends(require_admin),
    db=Depends(get_db)
):
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"username": pattern}, {"email": pattern}]

    if status == "banned":
        query["is_banned"] = True
    elif status == "active":
        query["is_banned"] = False
        query["is_active"] = True
    elif status:
        raise CarpoolError("Status must be 'banned' or 'active'")

    total = db[USERS].count_documents(query)
    users = list(
        db[USERS].find(query, {"password": 0}).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    )

    result = []
    for user in users:
        user_id = str(user["_id"])
        serialized = serialize_user(user)
        serialized["stats"] = {
            "rides_as_driver": db[RIDES].count_documents({"driver_id": user_id}),
            "rides_as_rider": db[RIDES].count_documents({
                "participants": {"$elemMatch": {"rider_id": user_id, "status": {"$ne": PARTICIPANT_LEFT}}}
            }),
            "ratings_count": db[RATINGS].count_documents({"ratee_id": user_id}),
            "complaints_count": db[COMPLAINTS].count_documents({"accused_id": user_id})
        }
        result.append(serialized)

    return {"users": result, "pagination": pagination(total, page, limit)}

@router.put("/api/admin/users/{user_id}/ban")
def admin_toggle_ban(
    user_id: str,
    ban: Optional[BanRequest] = None,
    admin: dict = Depends(require_admin),
    db=Depends(get_db)
):
    """Admin: Ban or unban a user"""
    user_oid = parse_object_id(user_id, "user")
    user = db[USERS].find_one({"_id": user_oid})
    if not user:
        raise UserNotFound()

    if user.get("role") == ROLE_ADMIN:
        raise AdminRequired("Cannot ban admin users")

    was_banned = user.get("is_banned", False)
    is_banned = not was_banned
    # Guard on the value we read
    result = db[USERS].update_one(
        {"_id": user_oid, "is_banned": True if was_banned else {"$ne": True}},
        {"$set": {"is_banned": is_banned, "updated_at": now_iso()}}
    )
    if result.matched_count == 0:
        raise ConcurrentModification("User was modified by another request. Please try again.")

    reason = ban.reason if ban else None
    log_admin_action(
        db, admin,
        action_type="user_banned" if is_banned else "user_unbanned",
        target_type="user",
        target_id=user_id,
        details={"reason": reason, "username": user["username"]}
    )
    logger.info("Admin %s %s user %s", admin["id"], "banned" if is_banned else "unbanned", user_id)

    return {
        "message": "User banned successfully" if is_banned else "User unbanned successfully",
        "user": {"id": user_id, "username": user["username"], "is_banned": is_banned}
    }

# Ride Management
@router.get("/api/admin/rides")
def admin_get_rides(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[str] = None,
    admin: dict = Depends(require_admin),
    db=Depends(get_db)
):
    query = {}
    if status:
        if status not in (RIDE_ACTIVE, RIDE_COMPLETED, RIDE_CANCELLED):
            raise CarpoolError("Invalid status")
        query["status"] = status

    total = db[RIDES].count_documents(query)
    rides = list(db[RIDES].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return {
        "rides": [serialize_ride(db, ride) for ride in rides],
        "pagination": pagination(total, page, limit)
    }

# Dashboard
@router.get("/api/admin/stats")
def admin_get_stats(admin: dict = Depends(require_admin), db=Depends(get_db)):
    users = db[USERS]
    rides = db[RIDES]
    complaints = db[COMPLAINTS]
    sos_alerts = db[SOS_ALERTS]

    return {
        "users": {
            "total": users.count_documents({}),
            "active": users.count_documents({"is_active": True, "is_banned": False}),
            "banned": users.count_documents({"is_banned": True})
        },
        "rides": {
            "total": rides.count_documents({}),
            "active": rides.count_documents({"status": RIDE_ACTIVE}),
            "completed": rides.count_documents({"status": RIDE_COMPLETED}),
            "cancelled": rides.count_documents({"status": RIDE_CANCELLED})
        },
        "complaints": {
            "total": complaints.count_documents({}),
            "pending": complaints.count_documents({"status": "pending"}),
            "resolved": complaints.count_documents({"status": "resolved"})
        },
        "sos": {
            "total": sos_alerts.count_documents({}),
            "active": sos_alerts.count_documents({"status": "active"})
        },
        "ratings": {
            "total": db[RATINGS].count_documents({})
        }
    }

@router.get("/api/admin/audit-logs")
def admin_get_audit_logs(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    admin: dict = Depends(require_admin),
    db=Depends(get_db)
):
    logs = list(db[AUDIT_LOGS].find().sort([("timestamp", -1), ("_id", -1)]).limit(limit))
    for log in logs:
        log["id"] = str(log.pop("_id"))
    return {"logs": logs}
