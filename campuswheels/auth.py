import logging

from fastapi import APIRouter, Depends
from pymongo.errors import DuplicateKeyError

from .config import ROLE_USER
from .database import get_db, USERS
from .email_verification import is_verified, consume_verification
from .exceptions import (
    CarpoolError, EmailNotVerified, EmailTaken, UsernameTaken, InvalidCredentials, UserBanned
)
from .models import UserSignup, UserLogin, UserProfileUpdate
from .utils import (
    verify_password, get_password_hash, create_access_token, normalize_email,
    get_current_user, serialize_user, now_iso
)

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/api/auth/check-email")
def check_email(email: str, db=Depends(get_db)):
    email = normalize_email(email)
    if not email:
        raise CarpoolError("Email is required")
    return {"exists": db[USERS].find_one({"email": email}) is not None, "email": email}

@router.post("/api/auth/signup", status_code=201)
def signup(user: UserSignup, db=Depends(get_db)):
    email = normalize_email(user.email)

    if not is_verified(db, email):
        raise EmailNotVerified()

    if db[USERS].find_one({"email": email}):
        raise EmailTaken()
    if db[USERS].find_one({"username": user.username}):
        raise UsernameTaken()

    now = now_iso()
    new_user = {
        "username": user.username,
        "email": email,
        "password": get_password_hash(user.password),
        "phone_number": user.phone_number,
        "gender": user.gender,
        "bio": user.bio,
        "profile_picture": None,
        "wallet_address": None,
        "role": ROLE_USER,
        "is_active": True,
        "is_banned": False,
        "cancellation_count": 0,
        "rides_left_count": 0,
        "rides_cancelled_count": 0,
        "created_at": now,
        "updated_at": now
    }

    try:
        result = db[USERS].insert_one(new_user)
    except DuplicateKeyError:
        # Lost a race with a concurrent signup for the same identity
        raise EmailTaken("Email or username already registered")
    new_user["_id"] = result.inserted_id

    consume_verification(db, email)
    logger.info("User %s signed up", result.inserted_id)

    return {
        "message": "Account created successfully",
        "token": create_access_token({"user_id": str(result.inserted_id)}),
        "user": serialize_user(new_user)
    }

@router.post("/api/auth/login")
def login(user: UserLogin, db=Depends(get_db)):
    db_user = db[USERS].find_one({"email": normalize_email(user.email)})
    if not db_user or not verify_password(user.password, db_user["password"]):
        raise InvalidCredentials()

    if db_user.get("is_banned"):
        raise UserBanned()

    return {
        "message": "Login successful",
        "token": create_access_token({"user_id": str(db_user["_id"])}),
        "user": serialize_user(db_user)
    }

@router.get("/api/auth/me")
def get_me(current_user: dict = Depends(get_current_user)):
    return {"user": serialize_user(current_user)}

@router.put("/api/auth/profile")
def update_profile(profile: UserProfileUpdate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    update_data = profile.model_dump(exclude_unset=True)

    username = update_data.get("username")
    if username and username != current_user["username"]:
        if db[USERS].find_one({"username": username}):
            raise UsernameTaken()
    elif "username" in update_data and not username:
        del update_data["username"]

    if update_data:
        update_data["updated_at"] = now_iso()
        try:
            db[USERS].update_one({"_id": current_user["_id"]}, {"$set": update_data})
        except DuplicateKeyError:
            # Another account took the username after the check above
            raise UsernameTaken()

    updated_user = db[USERS].find_one({"_id": current_user["_id"]})
    return {"message": "Profile updated successfully", "user": serialize_user(updated_user)}
