import logging

from pymongo import ASCENDING, DESCENDING, MongoClient

from .config import MONGO_URL, DB_NAME

logger = logging.getLogger(__name__)

# MongoDB connection, opened lazily on first operation
client = MongoClient(MONGO_URL, connect=False)
db = client[DB_NAME]

# Collections
USERS = "users"
RIDES = "rides"
RATINGS = "ratings"
COMPLAINTS = "complaints"
SOS_ALERTS = "sos_alerts"
EMAIL_VERIFICATIONS = "email_verifications"
AUDIT_LOGS = "audit_logs"


def get_db():
    """Request-scoped database handle; overridden in tests."""
    return db


def ensure_indexes(database):
    database[USERS].create_index("email", unique=True)
    database[USERS].create_index("username", unique=True)
    database[RIDES].create_index("driver_id")
    database[RIDES].create_index([("status", ASCENDING), ("ride_date_time", ASCENDING)])
    database[RIDES].create_index("participants.rider_id")
    database[RATINGS].create_index(
        [("rater_id", ASCENDING), ("ratee_id", ASCENDING), ("ride_id", ASCENDING)],
        unique=True,
    )
    database[RATINGS].create_index("ratee_id")
    database[COMPLAINTS].create_index("status")
    database[SOS_ALERTS].create_index("status")
    database[EMAIL_VERIFICATIONS].create_index("email", unique=True)
    database[AUDIT_LOGS].create_index([("timestamp", DESCENDING)])
    logger.info("Database indexes ensured on %s", database.name)
