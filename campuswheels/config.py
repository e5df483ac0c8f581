import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Runtime
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

# Environments that may run on the built-in signing key
LOCAL_ENVIRONMENTS = ("development", "test")
DEV_JWT_SECRET = "dev-secret-change-me"


def resolve_jwt_secret(secret, environment: str) -> str:
    if secret:
        return secret
    if environment in LOCAL_ENVIRONMENTS:
        return DEV_JWT_SECRET
    raise RuntimeError(f"JWT_SECRET must be set when ENVIRONMENT={environment}")


# MongoDB connection
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "campus_wheels")

# JWT Config
JWT_SECRET = resolve_jwt_secret(os.environ.get("JWT_SECRET"), ENVIRONMENT)
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", 1440))

# Password hashing
BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", 12))

from passlib.context import CryptContext
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

# Security
from fastapi.security import HTTPBearer
security = HTTPBearer(auto_error=False)

# Allowed email domain
ALLOWED_EMAIL_DOMAIN = os.environ.get("ALLOWED_EMAIL_DOMAIN", "@iiitkottayam.ac.in")

# Email OTP
OTP_EXPIRY_MINUTES = int(os.environ.get("OTP_EXPIRY_MINUTES", 10))
OTP_MAX_ATTEMPTS = int(os.environ.get("OTP_MAX_ATTEMPTS", 3))

# Outgoing mail
EMAIL_HOST = os.environ.get("EMAIL_HOST", "smtp.gmail.com")
EMAIL_PORT = int(os.environ.get("EMAIL_PORT", 587))
EMAIL_USER = os.environ.get("EMAIL_USER")
EMAIL_PASSWORD = os.environ.get("EMAIL_PASSWORD")
SOS_EMAILS = [e.strip() for e in os.environ.get("SOS_EMAILS", "").split(",") if e.strip()]

# Ratings may be tied to rides that have not completed yet unless this is set
REQUIRE_COMPLETED_RIDE_FOR_RATING = _env_bool("REQUIRE_COMPLETED_RIDE_FOR_RATING", False)

# Listing limits
DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", 20))
MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", 100))

# Optimistic write attempts per ride transition
MAX_WRITE_ATTEMPTS = 5

# Statuses
RIDE_ACTIVE = "active"
RIDE_COMPLETED = "completed"
RIDE_CANCELLED = "cancelled"

PARTICIPANT_JOINED = "joined"
PARTICIPANT_LEFT = "left"
PARTICIPANT_COMPLETED = "completed"

ROLE_USER = "user"
ROLE_ADMIN = "admin"

GENDERS = ["male", "female", "other", "prefer_not_to_say"]

COMPLAINT_CATEGORIES = ["harassment", "safety", "fraud", "other"]
COMPLAINT_STATUSES = ["pending", "investigating", "resolved", "dismissed"]
COMPLAINT_TRANSITIONS = {
    "pending": {"investigating", "resolved", "dismissed"},
    "investigating": {"resolved", "dismissed"},
    "resolved": set(),
    "dismissed": set(),
}
COMPLAINT_CLOSED_STATUSES = {"resolved", "dismissed"}

SOS_STATUSES = ["active", "resolved", "false_alarm"]
SOS_TRANSITIONS = {
    "active": {"resolved", "false_alarm"},
    "resolved": set(),
    "false_alarm": set(),
}
