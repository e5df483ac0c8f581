from .config import DEFAULT_PAGE_SIZE, PARTICIPANT_LEFT
from .database import RIDES
from .exceptions import CarpoolError

ROLES = ("driver", "rider", "all")


def is_driver(ride: dict, user_id: str) -> bool:
    return ride["driver_id"] == user_id


def is_active_participant(ride: dict, user_id: str) -> bool:
    """True when the user holds a joined or completed record on the ride."""
    return any(
        p["rider_id"] == user_id and p["status"] != PARTICIPANT_LEFT
        for p in ride.get("participants", [])
    )


def list_for_user(db, user_id: str, role: str = "all", limit: int = DEFAULT_PAGE_SIZE) -> dict:
    if role not in ROLES:
        raise CarpoolError("Type must be one of: driver, rider, all")

    driver_rides = []
    rider_rides = []

    if role in ("driver", "all"):
        driver_rides = list(
            db[RIDES].find({"driver_id": user_id}).sort("ride_date_time", -1).limit(limit)
        )

    if role in ("rider", "all"):
        rider_rides = list(
            db[RIDES].find({
                "participants": {"$elemMatch": {"rider_id": user_id, "status": {"$ne": PARTICIPANT_LEFT}}}
            }).sort("ride_date_time", -1).limit(limit)
        )

    return {"driver_rides": driver_rides, "rider_rides": rider_rides}
