from fastapi import APIRouter, Depends
from pymongo.errors import DuplicateKeyError

from .config import REQUIRE_COMPLETED_RIDE_FOR_RATING, RIDE_COMPLETED
from .database import get_db, RATINGS, RIDES, USERS
from .exceptions import (
    InvalidStars, SelfRating, DuplicateRating, RideNotCompleted, RideNotFound, UserNotFound
)
from .models import RatingCreate
from .utils import get_current_user, parse_object_id, load_user_summaries, now_iso

router = APIRouter()


def serialize_rating(rating: dict, people: dict = None, ride: dict = None) -> dict:
    people = people or {}
    return {
        "id": str(rating["_id"]),
        "rater_id": rating["rater_id"],
        "rater": people.get(rating["rater_id"]),
        "ratee_id": rating["ratee_id"],
        "ride_id": rating["ride_id"],
        "ride": {
            "id": str(ride["_id"]),
            "start_location": ride["start_location"],
            "end_location": ride["end_location"],
            "ride_date_time": ride["ride_date_time"]
        } if ride else None,
        "stars": rating["stars"],
        "comment": rating.get("comment"),
        "created_at": rating.get("created_at", "")
    }


def submit_rating(db, rater: dict, data: RatingCreate, require_completed_ride: bool = REQUIRE_COMPLETED_RIDE_FOR_RATING) -> dict:
    """Record one immutable rating per (rater, ratee, ride)."""
    if data.stars is None or not 0 <= data.stars <= 5:
        raise InvalidStars()
    if data.ratee_id == rater["id"]:
        raise SelfRating()

    if not db[USERS].find_one({"_id": parse_object_id(data.ratee_id, "user")}):
        raise UserNotFound()
    ride = db[RIDES].find_one({"_id": parse_object_id(data.ride_id, "ride")})
    if not ride:
        raise RideNotFound()
    if require_completed_ride and ride["status"] != RIDE_COMPLETED:
        raise RideNotCompleted()

    key = {"rater_id": rater["id"], "ratee_id": data.ratee_id, "ride_id": data.ride_id}
    if db[RATINGS].find_one(key):
        raise DuplicateRating()

    rating = dict(key, stars=data.stars, comment=data.comment, created_at=now_iso())
    try:
        result = db[RATINGS].insert_one(rating)
    except DuplicateKeyError:
        raise DuplicateRating()
    rating["_id"] = result.inserted_id
    return rating


def user_rating_statistics(db, user_id: str) -> dict:
    stars = [r["stars"] for r in db[RATINGS].find({"ratee_id": user_id}, {"stars": 1})]
    return {
        "total_ratings": len(stars),
        "average_rating": round(sum(stars) / len(stars), 2) if stars else 0
    }


def can_rate(db, rater_id: str, ratee_id: str, ride_id: str) -> dict:
    existing = db[RATINGS].find_one({"rater_id": rater_id, "ratee_id": ratee_id, "ride_id": ride_id})
    return {"can_rate": existing is None and rater_id != ratee_id, "already_rated": existing is not None}


@router.post("/api/ratings", status_code=201)
def post_rating(rating_data: RatingCreate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    rating = submit_rating(db, current_user, rating_data)
    return {
        "message": "Rating submitted successfully",
        "rating": serialize_rating(rating),
        "ratee_statistics": user_rating_statistics(db, rating["ratee_id"])
    }

@router.get("/api/ratings/user/{user_id}")
def get_user_ratings(user_id: str, db=Depends(get_db)):
    if not db[USERS].find_one({"_id": parse_object_id(user_id, "user")}):
        raise UserNotFound()

    ratings = list(db[RATINGS].find({"ratee_id": user_id}).sort("created_at", -1))
    people = load_user_summaries(db, [r["rater_id"] for r in ratings])
    ride_oids = [parse_object_id(r["ride_id"], "ride") for r in ratings]
    rides = {str(r["_id"]): r for r in db[RIDES].find({"_id": {"$in": ride_oids}})} if ride_oids else {}

    return {
        "ratings_received": [serialize_rating(r, people, rides.get(r["ride_id"])) for r in ratings],
        "statistics": user_rating_statistics(db, user_id)
    }

@router.get("/api/ratings/can-rate")
def get_can_rate(ratee_id: str, ride_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return can_rate(db, current_user["id"], ratee_id, ride_id)
