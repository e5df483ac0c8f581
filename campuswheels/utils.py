import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .config import (
    JWT_SECRET, JWT_ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES,
    pwd_context, security, ALLOWED_EMAIL_DOMAIN, ROLE_ADMIN, PARTICIPANT_JOINED
)
from .database import get_db, USERS, AUDIT_LOGS
from .exceptions import (
    InvalidObjectId, NotAuthenticated, InvalidToken, UserBanned, AdminRequired
)

# Password functions
def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

# JWT functions
def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

def normalize_email(email: str) -> str:
    return email.strip().lower()

def validate_email_domain(email: str) -> bool:
    return normalize_email(email).endswith(ALLOWED_EMAIL_DOMAIN.lower())

# Time helpers
def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def now_iso() -> str:
    return utcnow().isoformat()

def to_utc_iso(value: datetime) -> str:
    """Naive-UTC ISO string with second precision, so stored values sort lexically."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat()

def parse_object_id(value: str, label: str = "") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidObjectId(f"Invalid {label} ID" if label else None)

def pagination(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if limit else 0
    }

# Auth dependencies
def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db)
) -> dict:
    if credentials is None:
        raise NotAuthenticated()
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise InvalidToken()

    user_id = payload.get("user_id")
    if user_id is None or not ObjectId.is_valid(user_id):
        raise InvalidToken()

    user = db[USERS].find_one({"_id": ObjectId(user_id)}, {"password": 0})
    if user is None:
        raise InvalidToken("User not found")
    if user.get("is_banned"):
        raise UserBanned("User is banned")

    user["id"] = str(user["_id"])
    return user

def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    if current_user.get("role") != ROLE_ADMIN:
        raise AdminRequired()
    return current_user

# Serialization functions
def serialize_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "username": user["username"],
        "email": user["email"],
        "phone_number": user.get("phone_number"),
        "gender": user.get("gender"),
        "bio": user.get("bio"),
        "profile_picture": user.get("profile_picture"),
        "wallet_address": user.get("wallet_address"),
        "role": user.get("role", "user"),
        "is_active": user.get("is_active", True),
        "is_banned": user.get("is_banned", False),
        "cancellation_count": user.get("cancellation_count", 0),
        "rides_left_count": user.get("rides_left_count", 0),
        "rides_cancelled_count": user.get("rides_cancelled_count", 0),
        "created_at": user.get("created_at", "")
    }

def serialize_user_summary(user: Optional[dict]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": str(user["_id"]),
        "username": user["username"],
        "profile_picture": user.get("profile_picture")
    }

def load_user_summaries(db, user_ids) -> dict:
    """Map of user id string -> public summary for the given ids."""
    oids = [ObjectId(uid) for uid in set(user_ids) if ObjectId.is_valid(uid)]
    if not oids:
        return {}
    users = db[USERS].find({"_id": {"$in": oids}}, {"password": 0})
    return {str(u["_id"]): serialize_user_summary(u) for u in users}

def serialize_ride(db, ride: dict) -> dict:
    participants = ride.get("participants", [])
    people = load_user_summaries(db, [ride["driver_id"]] + [p["rider_id"] for p in participants])

    return {
        "id": str(ride["_id"]),
        "driver_id": ride["driver_id"],
        "driver": people.get(ride["driver_id"]),
        "start_location": ride["start_location"],
        "end_location": ride["end_location"],
        "start_latitude": ride.get("start_latitude"),
        "start_longitude": ride.get("start_longitude"),
        "end_latitude": ride.get("end_latitude"),
        "end_longitude": ride.get("end_longitude"),
        "ride_date_time": ride["ride_date_time"],
        "total_seats": ride["total_seats"],
        "available_seats": ride["available_seats"],
        "price_per_seat": ride.get("price_per_seat", 0),
        "tags": ride.get("tags", []),
        "vehicle_info": ride.get("vehicle_info"),
        "notes": ride.get("notes"),
        "status": ride["status"],
        "participants": [
            {
                "rider_id": p["rider_id"],
                "rider": people.get(p["rider_id"]),
                "status": p["status"],
                "joined_at": p.get("joined_at"),
                "left_at": p.get("left_at"),
                "completed_at": p.get("completed_at")
            }
            for p in participants
        ],
        "joined_count": sum(1 for p in participants if p["status"] == PARTICIPANT_JOINED),
        "created_at": ride.get("created_at", ""),
        "updated_at": ride.get("updated_at", "")
    }

# Admin audit logging
def log_admin_action(db, admin: dict, action_type: str, target_type: str, target_id: str, details: dict = None):
    """Log an admin action for audit trail"""
    db[AUDIT_LOGS].insert_one({
        "admin_id": admin["id"],
        "admin_name": admin["username"],
        "action_type": action_type,  # e.g. 'user_banned', 'complaint_resolved', 'sos_false_alarm'
        "target_type": target_type,  # 'user', 'complaint', 'sos'
        "target_id": target_id,
        "details": details or {},
        "timestamp": now_iso()
    })
