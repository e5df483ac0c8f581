import pytest

from campuswheels import lifecycle
from campuswheels.database import RIDES, USERS
from campuswheels.exceptions import (
    AlreadyJoined, ConcurrentModification, InvalidSeatCount, NoSeats, NotAParticipant,
    NotDriver, RideNotActive, RideNotFound, SelfJoin, InvalidObjectId
)
from campuswheels.lifecycle import (
    cancel_ride, complete_ride, join_ride, leave_ride, seats_consistent
)
from campuswheels.models import RideCreate

from conftest import ride_payload


def stored(db, ride):
    return db[RIDES].find_one({"_id": ride["_id"]})


def test_create_ride_starts_active_with_all_seats(db, make_user, make_ride):
    driver = make_user()
    ride = make_ride(driver, total_seats=3, tags=["Station", " station ", "Luggage"])

    saved = stored(db, ride)
    assert saved["status"] == "active"
    assert saved["total_seats"] == 3
    assert saved["available_seats"] == 3
    assert saved["participants"] == []
    assert saved["tags"] == ["station", "luggage"]
    assert seats_consistent(saved)


def test_create_ride_rejects_zero_seats(db, make_user):
    data = RideCreate.model_construct(**dict(ride_payload(), total_seats=0))
    with pytest.raises(InvalidSeatCount):
        lifecycle.create_ride(db, make_user(), data)


def test_join_decrements_seats_and_records_participant(db, make_user, make_ride):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver, total_seats=2)

    joined = join_ride(db, str(ride["_id"]), rider)

    assert joined["available_seats"] == 1
    saved = stored(db, ride)
    assert saved["available_seats"] == 1
    assert [(p["rider_id"], p["status"]) for p in saved["participants"]] == [(rider["id"], "joined")]
    assert seats_consistent(saved)


def test_join_own_ride_fails(db, make_user, make_ride):
    driver = make_user()
    ride = make_ride(driver)
    with pytest.raises(SelfJoin):
        join_ride(db, str(ride["_id"]), driver)


def test_join_twice_fails(db, make_user, make_ride):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver, total_seats=3)
    join_ride(db, str(ride["_id"]), rider)

    with pytest.raises(AlreadyJoined):
        join_ride(db, str(ride["_id"]), rider)
    assert stored(db, ride)["available_seats"] == 2


def test_join_full_ride_fails_without_mutation(db, make_user, make_ride):
    driver, a, b = make_user(), make_user(), make_user()
    ride = make_ride(driver, total_seats=1)
    join_ride(db, str(ride["_id"]), a)
    before = stored(db, ride)

    with pytest.raises(NoSeats):
        join_ride(db, str(ride["_id"]), b)

    assert stored(db, ride) == before


def test_join_unknown_or_malformed_ride(db, make_user):
    rider = make_user()
    with pytest.raises(RideNotFound):
        join_ride(db, "5f8d0d55b54764421b7156c9", rider)
    with pytest.raises(InvalidObjectId):
        join_ride(db, "not-an-id", rider)


def test_leave_restores_seat_and_counts_cancellation(db, make_user, make_ride):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver, total_seats=2)
    join_ride(db, str(ride["_id"]), rider)

    left = leave_ride(db, str(ride["_id"]), rider)

    assert left["available_seats"] == 2
    assert left["participants"][0]["status"] == "left"
    assert left["participants"][0]["left_at"]
    user = db[USERS].find_one({"_id": rider["_id"]})
    assert user["cancellation_count"] == 1
    assert user["rides_left_count"] == 1
    assert seats_consistent(stored(db, ride))


def test_leave_without_joining_fails(db, make_user, make_ride):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver)
    with pytest.raises(NotAParticipant):
        leave_ride(db, str(ride["_id"]), rider)


def test_leave_twice_fails_second_time(db, make_user, make_ride):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver)
    join_ride(db, str(ride["_id"]), rider)
    leave_ride(db, str(ride["_id"]), rider)

    with pytest.raises(NotAParticipant):
        leave_ride(db, str(ride["_id"]), rider)
    assert db[USERS].find_one({"_id": rider["_id"]})["cancellation_count"] == 1


def test_rejoin_after_leaving_creates_new_record(db, make_user, make_ride):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver, total_seats=2)
    join_ride(db, str(ride["_id"]), rider)
    leave_ride(db, str(ride["_id"]), rider)
    rejoined = join_ride(db, str(ride["_id"]), rider)

    assert [p["status"] for p in rejoined["participants"]] == ["left", "joined"]
    assert rejoined["available_seats"] == 1


def test_only_driver_can_cancel_or_complete(db, make_user, make_ride):
    driver, other = make_user(), make_user()
    ride = make_ride(driver)

    with pytest.raises(NotDriver):
        cancel_ride(db, str(ride["_id"]), other)
    with pytest.raises(NotDriver):
        complete_ride(db, str(ride["_id"]), other)
    assert stored(db, ride)["status"] == "active"


def test_cancel_is_terminal(db, make_user, make_ride):
    driver, rider, late = make_user(), make_user(), make_user()
    ride = make_ride(driver, total_seats=3)
    ride_id = str(ride["_id"])
    join_ride(db, ride_id, rider)

    cancelled = cancel_ride(db, ride_id, driver)
    assert cancelled["status"] == "cancelled"
    driver_doc = db[USERS].find_one({"_id": driver["_id"]})
    assert driver_doc["cancellation_count"] == 1
    assert driver_doc["rides_cancelled_count"] == 1

    with pytest.raises(RideNotActive):
        join_ride(db, ride_id, late)
    with pytest.raises(RideNotActive):
        leave_ride(db, ride_id, rider)
    with pytest.raises(RideNotActive):
        cancel_ride(db, ride_id, driver)
    with pytest.raises(RideNotActive):
        complete_ride(db, ride_id, driver)
    assert seats_consistent(stored(db, ride))


def test_complete_marks_joined_participants_completed(db, make_user, make_ride):
    driver, stays, leaves = make_user(), make_user(), make_user()
    ride = make_ride(driver, total_seats=3)
    ride_id = str(ride["_id"])
    join_ride(db, ride_id, stays)
    join_ride(db, ride_id, leaves)
    leave_ride(db, ride_id, leaves)

    completed = complete_ride(db, ride_id, driver)

    statuses = {(p["rider_id"], p["status"]) for p in completed["participants"]}
    assert statuses == {(stays["id"], "completed"), (leaves["id"], "left")}
    saved = stored(db, ride)
    assert saved["status"] == "completed"
    assert seats_consistent(saved)
    with pytest.raises(RideNotActive):
        cancel_ride(db, ride_id, driver)


def test_end_to_end_seat_bookkeeping(db, make_user, make_ride):
    driver, a, b, c = make_user(), make_user(), make_user(), make_user()
    ride = make_ride(driver, total_seats=2)
    ride_id = str(ride["_id"])

    assert join_ride(db, ride_id, a)["available_seats"] == 1
    assert join_ride(db, ride_id, b)["available_seats"] == 0
    with pytest.raises(NoSeats):
        join_ride(db, ride_id, c)

    assert leave_ride(db, ride_id, a)["available_seats"] == 1
    assert db[USERS].find_one({"_id": a["_id"]})["cancellation_count"] == 1

    completed = complete_ride(db, ride_id, driver)
    by_rider = {p["rider_id"]: p["status"] for p in completed["participants"]}
    assert by_rider == {a["id"]: "left", b["id"]: "completed"}

    with pytest.raises(RideNotActive):
        join_ride(db, ride_id, c)
    assert seats_consistent(stored(db, ride))


def test_racing_for_last_seat_admits_one_rider(db, make_user, make_ride, monkeypatch):
    driver, first, second = make_user(), make_user(), make_user()
    ride = make_ride(driver, total_seats=1)
    ride_id = str(ride["_id"])

    # The second rider read the ride while the seat was still free
    stale = stored(db, ride)
    join_ride(db, ride_id, first)

    real_load = lifecycle._load_ride
    reads = []

    def load_with_stale_first_read(rides, oid):
        reads.append(oid)
        return stale if len(reads) == 1 else real_load(rides, oid)

    monkeypatch.setattr(lifecycle, "_load_ride", load_with_stale_first_read)

    with pytest.raises(NoSeats):
        join_ride(db, ride_id, second)

    assert len(reads) == 2
    saved = stored(db, ride)
    assert saved["available_seats"] == 0
    assert [p["rider_id"] for p in saved["participants"]] == [first["id"]]
    assert seats_consistent(saved)


def test_persistent_write_conflicts_give_up(db, make_user, make_ride, monkeypatch):
    driver, rider = make_user(), make_user()
    ride = make_ride(driver, total_seats=2)
    stale = dict(stored(db, ride), revision=-1)

    monkeypatch.setattr(lifecycle, "_load_ride", lambda rides, oid: dict(stale))

    with pytest.raises(ConcurrentModification):
        join_ride(db, str(ride["_id"]), rider)
    assert stored(db, ride)["available_seats"] == 2


def test_seats_consistent_counts_joined_and_completed_records():
    ride = {
        "total_seats": 3,
        "available_seats": 1,
        "participants": [
            {"rider_id": "a", "status": "completed"},
            {"rider_id": "b", "status": "joined"},
            {"rider_id": "c", "status": "left"},
        ],
    }
    assert seats_consistent(ride)
    assert not seats_consistent(dict(ride, available_seats=2))
