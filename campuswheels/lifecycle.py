"""Ride state machine and seat bookkeeping.

A ride moves ``active -> completed`` or ``active -> cancelled`` and never
leaves a terminal state. Participant records are embedded in the ride
document, so a join or leave changes the record and ``available_seats`` in a
single document write.

Every mutation goes through :func:`_transition`, which is the only code that
writes ``status``, ``participants`` or ``available_seats``. It does an
optimistic compare-and-swap on the ride's ``revision`` counter. Two riders
racing for the last seat therefore cannot both win. The loser re-reads the
ride, sees no seats left, and gets :class:`NoSeats`.

Invariant: ``available_seats + count(joined or completed participants) ==
total_seats``. Completing a ride turns its joined records into completed
ones, which keep their seats.
"""
import logging

from bson import ObjectId

from .config import (
    MAX_WRITE_ATTEMPTS,
    RIDE_ACTIVE, RIDE_COMPLETED, RIDE_CANCELLED,
    PARTICIPANT_JOINED, PARTICIPANT_LEFT, PARTICIPANT_COMPLETED,
)
from .database import RIDES, USERS
from .exceptions import (
    RideNotFound, InvalidSeatCount, RideNotActive, SelfJoin, NoSeats,
    AlreadyJoined, NotAParticipant, NotDriver, ConcurrentModification,
)
from .utils import now_iso, to_utc_iso, parse_object_id

logger = logging.getLogger(__name__)


def occupied_seats(ride: dict) -> int:
    # completed records only exist on completed rides and keep their seat
    return sum(
        1 for p in ride.get("participants", [])
        if p["status"] in (PARTICIPANT_JOINED, PARTICIPANT_COMPLETED)
    )


def seats_consistent(ride: dict) -> bool:
    return ride["available_seats"] + occupied_seats(ride) == ride["total_seats"]


def _normalize_tags(tags) -> list:
    seen = []
    for tag in tags or []:
        tag = tag.strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _load_ride(rides, ride_oid: ObjectId) -> dict:
    ride = rides.find_one({"_id": ride_oid})
    if ride is None:
        raise RideNotFound()
    return ride


def _transition(db, ride_id: str, mutate) -> dict:
    """Apply ``mutate`` to the ride as one compare-and-swap write.

    ``mutate(ride)`` raises a business error or returns the fields to set.
    A lost race re-reads the ride and runs ``mutate`` again, so the
    validation always sees the state that is actually written over.
    """
    rides = db[RIDES]
    ride_oid = parse_object_id(ride_id, "ride")

    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        ride = _load_ride(rides, ride_oid)
        revision = ride.get("revision", 0)
        changes = mutate(ride)
        changes["updated_at"] = now_iso()

        result = rides.update_one(
            {"_id": ride_oid, "revision": revision},
            {"$set": changes, "$inc": {"revision": 1}}
        )
        if result.matched_count == 1:
            ride.update(changes)
            ride["revision"] = revision + 1
            return ride

        logger.info("Ride %s changed during write (attempt %d), retrying", ride_id, attempt)

    raise ConcurrentModification()


def _bump_user_counters(db, user_id: str, counter: str):
    # cancellation_count keeps counting leaves and cancels together; the
    # per-kind counter tells them apart.
    db[USERS].update_one(
        {"_id": ObjectId(user_id)},
        {"$inc": {"cancellation_count": 1, counter: 1}, "$set": {"updated_at": now_iso()}}
    )


def create_ride(db, driver: dict, data) -> dict:
    if data.total_seats is None or data.total_seats < 1:
        raise InvalidSeatCount()

    now = now_iso()
    ride = {
        "driver_id": driver["id"],
        "start_location": data.start_location,
        "end_location": data.end_location,
        "start_latitude": data.start_latitude,
        "start_longitude": data.start_longitude,
        "end_latitude": data.end_latitude,
        "end_longitude": data.end_longitude,
        "ride_date_time": to_utc_iso(data.ride_date_time),
        "total_seats": data.total_seats,
        "available_seats": data.total_seats,
        "price_per_seat": data.price_per_seat or 0,
        "tags": _normalize_tags(data.tags),
        "vehicle_info": data.vehicle_info.model_dump() if data.vehicle_info else None,
        "notes": data.notes,
        "status": RIDE_ACTIVE,
        "participants": [],
        "revision": 0,
        "created_at": now,
        "updated_at": now
    }

    result = db[RIDES].insert_one(ride)
    ride["_id"] = result.inserted_id
    logger.info("Ride %s created by %s with %d seats", result.inserted_id, driver["id"], data.total_seats)
    return ride


def join_ride(db, ride_id: str, rider: dict) -> dict:
    rider_id = rider["id"]

    def apply(ride):
        if ride["status"] != RIDE_ACTIVE:
            raise RideNotActive()
        if ride["driver_id"] == rider_id:
            raise SelfJoin()
        if ride["available_seats"] <= 0:
            raise NoSeats()
        participants = list(ride.get("participants", []))
        if any(p["rider_id"] == rider_id and p["status"] == PARTICIPANT_JOINED for p in participants):
            raise AlreadyJoined()

        participants.append({
            "rider_id": rider_id,
            "status": PARTICIPANT_JOINED,
            "joined_at": now_iso(),
            "left_at": None,
            "completed_at": None
        })
        return {"participants": participants, "available_seats": ride["available_seats"] - 1}

    ride = _transition(db, ride_id, apply)
    logger.info("Rider %s joined ride %s (%d seats left)", rider_id, ride_id, ride["available_seats"])
    return ride


def leave_ride(db, ride_id: str, rider: dict) -> dict:
    rider_id = rider["id"]

    def apply(ride):
        if ride["status"] != RIDE_ACTIVE:
            raise RideNotActive()

        participants = [dict(p) for p in ride.get("participants", [])]
        record = next(
            (p for p in participants if p["rider_id"] == rider_id and p["status"] == PARTICIPANT_JOINED),
            None
        )
        if record is None:
            raise NotAParticipant()

        record["status"] = PARTICIPANT_LEFT
        record["left_at"] = now_iso()
        return {
            "participants": participants,
            "available_seats": min(ride["total_seats"], ride["available_seats"] + 1)
        }

    ride = _transition(db, ride_id, apply)
    _bump_user_counters(db, rider_id, "rides_left_count")
    logger.info("Rider %s left ride %s (%d seats left)", rider_id, ride_id, ride["available_seats"])
    return ride


def _require_driver(ride: dict, driver_id: str, action: str):
    if ride["driver_id"] != driver_id:
        raise NotDriver(f"Only the driver can {action} the ride")
    if ride["status"] != RIDE_ACTIVE:
        raise RideNotActive()


def cancel_ride(db, ride_id: str, driver: dict) -> dict:
    def apply(ride):
        _require_driver(ride, driver["id"], "cancel")
        return {"status": RIDE_CANCELLED, "cancelled_at": now_iso()}

    ride = _transition(db, ride_id, apply)
    _bump_user_counters(db, driver["id"], "rides_cancelled_count")
    logger.info("Ride %s cancelled by driver %s", ride_id, driver["id"])
    return ride


def complete_ride(db, ride_id: str, driver: dict) -> dict:
    def apply(ride):
        _require_driver(ride, driver["id"], "complete")
        completed_at = now_iso()
        participants = []
        for p in ride.get("participants", []):
            p = dict(p)
            if p["status"] == PARTICIPANT_JOINED:
                p["status"] = PARTICIPANT_COMPLETED
                p["completed_at"] = completed_at
            participants.append(p)
        return {"status": RIDE_COMPLETED, "participants": participants, "completed_at": completed_at}

    ride = _transition(db, ride_id, apply)
    logger.info("Ride %s completed by driver %s", ride_id, driver["id"])
    return ride
