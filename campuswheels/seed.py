"""Maintenance commands.

    python -m campuswheels.seed ensure-indexes
    python -m campuswheels.seed create-admin --username admin --email admin@iiitkottayam.ac.in --password ...
"""
import argparse
import logging

from .config import ROLE_ADMIN
from .database import db as default_db, ensure_indexes, USERS
from .utils import get_password_hash, normalize_email, now_iso

logger = logging.getLogger(__name__)


def create_admin(db, username: str, email: str, password: str) -> dict:
    """Create an admin account, or promote the existing account with this email."""
    email = normalize_email(email)
    existing = db[USERS].find_one({"email": email})
    if existing:
        db[USERS].update_one(
            {"_id": existing["_id"]},
            {"$set": {"role": ROLE_ADMIN, "is_banned": False, "updated_at": now_iso()}}
        )
        existing.update(role=ROLE_ADMIN, is_banned=False)
        logger.info("Promoted %s to admin", email)
        return existing

    now = now_iso()
    admin = {
        "username": username,
        "email": email,
        "password": get_password_hash(password),
        "phone_number": None,
        "gender": None,
        "bio": None,
        "profile_picture": None,
        "wallet_address": None,
        "role": ROLE_ADMIN,
        "is_active": True,
        "is_banned": False,
        "cancellation_count": 0,
        "rides_left_count": 0,
        "rides_cancelled_count": 0,
        "created_at": now,
        "updated_at": now
    }
    admin["_id"] = db[USERS].insert_one(admin).inserted_id
    logger.info("Created admin %s", email)
    return admin


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = argparse.ArgumentParser(prog="campuswheels.seed", description="Campus Wheels maintenance")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("ensure-indexes", help="create collection indexes")

    admin_parser = commands.add_parser("create-admin", help="create or promote an admin account")
    admin_parser.add_argument("--username", required=True)
    admin_parser.add_argument("--email", required=True)
    admin_parser.add_argument("--password", required=True)

    args = parser.parse_args(argv)
    ensure_indexes(default_db)
    if args.command == "create-admin":
        create_admin(default_db, args.username, args.email, args.password)


if __name__ == "__main__":
    main()
