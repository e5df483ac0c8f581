import re
from datetime import date as date_type, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, RIDE_ACTIVE
from .database import get_db, RIDES
from .exceptions import CarpoolError, RideNotFound
from .lifecycle import create_ride, join_ride, leave_ride, cancel_ride, complete_ride
from .models import RideCreate
from .participation import list_for_user
from .utils import get_current_user, serialize_ride, parse_object_id, pagination

router = APIRouter()

@router.post("/api/rides", status_code=201)
def post_ride(ride: RideCreate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    created = create_ride(db, current_user, ride)
    return {"message": "Ride created successfully", "ride": serialize_ride(db, created)}

@router.get("/api/rides/search")
def search_rides(
    start_location: Optional[str] = None,
    end_location: Optional[str] = None,
    date: Optional[str] = None,
    min_seats: Optional[int] = Query(None, ge=1),
    tags: Optional[str] = None,
    max_price: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db=Depends(get_db)
):
    query = {"status": RIDE_ACTIVE}

    if start_location:
        query["start_location"] = {"$regex": re.escape(start_location), "$options": "i"}
    if end_location:
        query["end_location"] = {"$regex": re.escape(end_location), "$options": "i"}

    if date:
        try:
            day = date_type.fromisoformat(date)
        except ValueError:
            raise CarpoolError("Date must be in YYYY-MM-DD format")
        query["ride_date_time"] = {
            "$gte": f"{day.isoformat()}T00:00:00",
            "$lt": f"{(day + timedelta(days=1)).isoformat()}T00:00:00"
        }

    if min_seats:
        query["available_seats"] = {"$gte": min_seats}
    if max_price is not None:
        query["price_per_seat"] = {"$lte": max_price}

    if tags:
        tag_list = [t.strip().lower() for t in tags.split(",") if t.strip()]
        if tag_list:
            query["tags"] = {"$in": tag_list}

    total = db[RIDES].count_documents(query)
    rides = list(
        db[RIDES].find(query).sort("ride_date_time", 1).skip((page - 1) * limit).limit(limit)
    )

    return {
        "rides": [serialize_ride(db, ride) for ride in rides],
        "pagination": pagination(total, page, limit)
    }

@router.get("/api/rides/user")
def get_user_rides(
    type: str = "all",
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db)
):
    rides = list_for_user(db, current_user["id"], role=type, limit=limit)
    return {
        "driver_rides": [serialize_ride(db, ride) for ride in rides["driver_rides"]],
        "rider_rides": [serialize_ride(db, ride) for ride in rides["rider_rides"]]
    }

@router.get("/api/rides/{ride_id}")
def get_ride(ride_id: str, db=Depends(get_db)):
    ride = db[RIDES].find_one({"_id": parse_object_id(ride_id, "ride")})
    if not ride:
        raise RideNotFound()
    return {"ride": serialize_ride(db, ride)}

@router.post("/api/rides/{ride_id}/join")
def post_join(ride_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    ride = join_ride(db, ride_id, current_user)
    return {"message": "Successfully joined the ride", "ride": serialize_ride(db, ride)}

@router.post("/api/rides/{ride_id}/leave")
def post_leave(ride_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    ride = leave_ride(db, ride_id, current_user)
    return {"message": "Successfully left the ride", "ride": serialize_ride(db, ride)}

@router.post("/api/rides/{ride_id}/cancel")
def post_cancel(ride_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    ride = cancel_ride(db, ride_id, current_user)
    return {"message": "Ride cancelled successfully", "ride": serialize_ride(db, ride)}

@router.post("/api/rides/{ride_id}/complete")
def post_complete(ride_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    ride = complete_ride(db, ride_id, current_user)
    return {"message": "Ride completed successfully", "ride": serialize_ride(db, ride)}
