import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument

from .config import ALLOWED_EMAIL_DOMAIN, OTP_EXPIRY_MINUTES, OTP_MAX_ATTEMPTS
from .database import get_db, EMAIL_VERIFICATIONS
from .exceptions import (
    DomainNotAllowed, NoPendingOTP, OTPExpired, TooManyAttempts, InvalidCode, OTPDeliveryFailed
)
from .models import EmailRequest, OTPVerify
from .notifications import send_otp_email
from .utils import normalize_email, validate_email_domain, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


def generate_otp() -> str:
    """Generate a 6-digit OTP, uniformly over 100000-999999"""
    return str(100000 + secrets.randbelow(900000))


def send_otp(db, email: str, now: Optional[datetime] = None) -> dict:
    email = normalize_email(email)
    if not validate_email_domain(email):
        raise DomainNotAllowed(f"Only {ALLOWED_EMAIL_DOMAIN} emails are allowed")

    now = now or utcnow()
    record = {
        "email": email,
        "otp": generate_otp(),
        "expires_at": (now + timedelta(minutes=OTP_EXPIRY_MINUTES)).isoformat(),
        "is_verified": False,
        "attempts": 0,
        "created_at": now.isoformat()
    }
    # One record per email; a new code replaces whatever was pending
    db[EMAIL_VERIFICATIONS].replace_one({"email": email}, record, upsert=True)
    logger.info("OTP issued for %s", email)

    try:
        send_otp_email(email, record["otp"])
    except OSError as exc:
        logger.error("Failed to deliver OTP to %s: %s", email, exc)
        raise OTPDeliveryFailed()

    return record


def resend_otp(db, email: str, now: Optional[datetime] = None) -> dict:
    return send_otp(db, email, now=now)


def _load_pending(verifications, email: str) -> Optional[dict]:
    return verifications.find_one({"email": email, "is_verified": False})


def _reserve_attempt(verifications, record_id) -> Optional[dict]:
    """Count one attempt before the code is compared.

    Returns the record with the attempt counted, or None once the cap is
    used up. Concurrent guesses each take a distinct slot, so no more than
    OTP_MAX_ATTEMPTS codes are ever compared against one record.
    """
    return verifications.find_one_and_update(
        {"_id": record_id, "is_verified": False, "attempts": {"$lt": OTP_MAX_ATTEMPTS}},
        {"$inc": {"attempts": 1}},
        return_document=ReturnDocument.AFTER
    )


def verify_otp(db, email: str, code: str, now: Optional[datetime] = None) -> dict:
    email = normalize_email(email)
    verifications = db[EMAIL_VERIFICATIONS]

    record = _load_pending(verifications, email)
    if not record:
        raise NoPendingOTP()

    now = now or utcnow()
    if now > datetime.fromisoformat(record["expires_at"]):
        verifications.delete_one({"_id": record["_id"], "is_verified": False})
        raise OTPExpired()

    reserved = _reserve_attempt(verifications, record["_id"])
    if reserved is None:
        verifications.delete_one({"_id": record["_id"], "is_verified": False})
        raise TooManyAttempts()

    if not hmac.compare_digest(reserved["otp"].encode(), code.strip().encode()):
        if reserved["attempts"] >= OTP_MAX_ATTEMPTS:
            verifications.delete_one({"_id": record["_id"], "is_verified": False})
            raise TooManyAttempts()
        raise InvalidCode(attempts_left=OTP_MAX_ATTEMPTS - reserved["attempts"])

    verifications.update_one({"_id": record["_id"]}, {"$set": {"is_verified": True}})
    reserved["is_verified"] = True
    logger.info("Email %s verified", email)
    return reserved


def is_verified(db, email: str) -> bool:
    return db[EMAIL_VERIFICATIONS].find_one({"email": normalize_email(email), "is_verified": True}) is not None


def consume_verification(db, email: str):
    db[EMAIL_VERIFICATIONS].delete_many({"email": normalize_email(email)})


@router.post("/api/email-verification/send-otp")
def post_send_otp(data: EmailRequest, db=Depends(get_db)):
    record = send_otp(db, data.email)
    return {"message": "OTP sent successfully to your email", "email": record["email"]}

@router.post("/api/email-verification/verify-otp")
def post_verify_otp(data: OTPVerify, db=Depends(get_db)):
    record = verify_otp(db, data.email, data.otp)
    return {"message": "Email verified successfully", "email": record["email"], "verified": True}

@router.post("/api/email-verification/resend-otp")
def post_resend_otp(data: EmailRequest, db=Depends(get_db)):
    record = resend_otp(db, data.email)
    return {"message": "New OTP sent successfully", "email": record["email"]}

@router.get("/api/email-verification/check")
def check_verification(email: str, db=Depends(get_db)):
    return {"verified": is_verified(db, email), "email": normalize_email(email)}
