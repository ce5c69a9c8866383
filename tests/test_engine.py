import logging

import pytest
from sqlalchemy.exc import OperationalError

from conftest import TODAY, days
from hotel_pms.errors import NotFound
from hotel_pms.models import db, RoomStatus, StayStatus


def reload(*objects):
    for obj in objects:
        db.session.refresh(obj)


# ============================================
# PROMOTION (phase A)
# ============================================

def test_booked_stay_promoted_after_check_in_hour(engine, clock, make_room, make_stay):
    room = make_room()
    stay = make_stay(room, TODAY, days(2))

    clock.at(14, 0, 1)
    result = engine.tick()

    reload(room, stay)
    assert stay.status == StayStatus.OCCUPIED
    assert stay.updated_by == 'system'
    assert room.status == RoomStatus.OCCUPIED
    assert result.stay_writes == 1
    assert result.room_writes == 1


def test_same_day_arrival_waits_for_check_in_hour(engine, clock, make_room, make_stay):
    room = make_room()
    stay = make_stay(room, TODAY, days(2))

    clock.at(13, 59, 59)
    engine.tick()

    reload(room, stay)
    assert stay.status == StayStatus.BOOKED
    assert room.status == RoomStatus.FREE


def test_missed_arrival_from_yesterday_is_promoted(engine, clock, make_room, make_stay):
    room = make_room()
    stay = make_stay(room, days(-1), days(2))

    clock.at(8)
    engine.tick()

    reload(room, stay)
    assert stay.status == StayStatus.OCCUPIED
    assert room.status == RoomStatus.OCCUPIED


def test_future_booking_marks_room_booked(engine, clock, make_room, make_stay):
    room = make_room()
    stay = make_stay(room, days(3), days(5))

    engine.tick()

    reload(room, stay)
    assert stay.status == StayStatus.BOOKED
    assert room.status == RoomStatus.BOOKED


# ============================================
# COMPLETION (phase B)
# ============================================

def test_occupied_until_check_out_instant(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    stay = make_stay(room, days(-2), TODAY, status=StayStatus.OCCUPIED)

    clock.at(9, 59, 59)
    engine.tick()
    reload(room, stay)
    assert stay.status == StayStatus.OCCUPIED
    assert room.status == RoomStatus.OCCUPIED

    clock.at(10)
    engine.tick()
    reload(room, stay)
    assert stay.status == StayStatus.COMPLETED
    assert room.status == RoomStatus.FREE


def test_completion_with_future_booking_leaves_room_booked(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    stay = make_stay(room, days(-2), TODAY, status=StayStatus.OCCUPIED)
    future = make_stay(room, days(4), days(6), guest='Anna Bianchi')

    clock.at(11)
    engine.tick()

    reload(room, stay, future)
    assert stay.status == StayStatus.COMPLETED
    assert future.status == StayStatus.BOOKED
    assert room.status == RoomStatus.BOOKED


def test_overdue_occupied_stay_is_completed(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    stay = make_stay(room, days(-5), days(-2), status=StayStatus.OCCUPIED)

    engine.tick()

    reload(room, stay)
    assert stay.status == StayStatus.COMPLETED
    assert room.status == RoomStatus.FREE


def test_late_tick_completes_and_starts_next_stay(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    leaving = make_stay(room, days(-2), TODAY, status=StayStatus.OCCUPIED)
    arriving = make_stay(room, TODAY, days(3), guest='Anna Bianchi')

    clock.at(15)
    engine.tick()

    reload(room, leaving, arriving)
    assert leaving.status == StayStatus.COMPLETED
    assert arriving.status == StayStatus.OCCUPIED
    assert room.status == RoomStatus.OCCUPIED


def test_hand_over_when_check_in_hour_precedes_check_out_hour(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED, check_in_hour=10, check_out_hour=12)
    leaving = make_stay(room, days(-2), TODAY, status=StayStatus.OCCUPIED)
    arriving = make_stay(room, TODAY, days(3), guest='Anna Bianchi')

    clock.at(12)
    engine.tick()

    reload(room, leaving, arriving)
    assert leaving.status == StayStatus.COMPLETED
    assert arriving.status == StayStatus.OCCUPIED
    assert room.status == RoomStatus.OCCUPIED


def test_departure_before_next_arrival_frees_room(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    leaving = make_stay(room, days(-2), TODAY, status=StayStatus.OCCUPIED)
    arriving = make_stay(room, TODAY, days(3), guest='Anna Bianchi')

    clock.at(11)
    engine.tick()

    reload(room, leaving, arriving)
    assert leaving.status == StayStatus.COMPLETED
    assert arriving.status == StayStatus.BOOKED
    assert room.status == RoomStatus.FREE


# ============================================
# SWEEP (phase C)
# ============================================

def test_terminal_stays_are_left_alone(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    completed = make_stay(room, days(-1), days(1), status=StayStatus.COMPLETED)
    cancelled = make_stay(room, days(2), days(4), status=StayStatus.CANCELLED)

    clock.at(16)
    engine.tick()

    reload(room, completed, cancelled)
    assert completed.status == StayStatus.COMPLETED
    assert cancelled.status == StayStatus.CANCELLED
    assert room.status == RoomStatus.FREE


def test_stale_room_status_is_corrected(engine, make_room, make_stay):
    room = make_room(status=RoomStatus.BOOKED)

    result = engine.tick()

    reload(room)
    assert room.status == RoomStatus.FREE
    assert result.room_writes == 1
    assert result.stay_writes == 0


def test_early_check_in_keeps_room_occupied(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    stay = make_stay(room, TODAY, days(2), status=StayStatus.OCCUPIED)

    clock.at(11)
    engine.tick()

    reload(room, stay)
    assert stay.status == StayStatus.OCCUPIED
    assert room.status == RoomStatus.OCCUPIED


def test_second_tick_writes_nothing(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.OCCUPIED)
    make_stay(room, days(-2), TODAY, status=StayStatus.OCCUPIED)
    make_stay(room, TODAY, days(3), guest='Anna Bianchi')
    other = make_room('102')
    make_stay(other, days(2), days(3))

    clock.at(15)
    first = engine.tick()
    second = engine.tick()

    assert first.writes > 0
    assert second.writes == 0
    assert second.rooms_seen == 2


def test_cleaning_hold_survives_tick(engine, clock, make_room, make_stay):
    room = make_room(status=RoomStatus.CLEANING)
    stay = make_stay(room, TODAY, days(2))

    clock.at(15)
    engine.tick()

    reload(room, stay)
    assert stay.status == StayStatus.OCCUPIED
    assert room.status == RoomStatus.CLEANING


def test_room_override_hours(engine, clock, make_room, make_stay):
    room = make_room(check_in_hour=16, check_out_hour=12)
    stay = make_stay(room, TODAY, days(2))

    clock.at(15)
    engine.tick()
    reload(stay)
    assert stay.status == StayStatus.BOOKED

    clock.at(16)
    engine.tick()
    reload(stay)
    assert stay.status == StayStatus.OCCUPIED

    clock.at(11, 59, 59, day=days(2))
    engine.tick()
    reload(stay)
    assert stay.status == StayStatus.OCCUPIED

    clock.at(12, day=days(2))
    engine.tick()
    reload(room, stay)
    assert stay.status == StayStatus.COMPLETED
    assert room.status == RoomStatus.FREE


def test_admin_hours_apply_to_their_rooms(engine, clock, make_room, make_stay, other_owner):
    room = make_room(admin=other_owner)
    stay = make_stay(room, TODAY, days(2))

    clock.at(14, 30)
    engine.tick()
    reload(stay)
    assert stay.status == StayStatus.BOOKED

    clock.at(15)
    engine.tick()
    reload(stay)
    assert stay.status == StayStatus.OCCUPIED


# ============================================
# SCOPE AND FAILURES
# ============================================

def test_tick_scoped_to_owner(engine, clock, owner, other_owner, make_room, make_stay):
    mine = make_room()
    theirs = make_room('201', admin=other_owner)
    make_stay(mine, days(3), days(4))
    make_stay(theirs, days(3), days(4))

    result = engine.tick(owner_id=owner.id)

    reload(mine, theirs)
    assert result.rooms_seen == 1
    assert mine.status == RoomStatus.BOOKED
    assert theirs.status == RoomStatus.FREE


def test_one_failing_room_does_not_stop_the_sweep(engine, repository, clock, make_room, make_stay,
                                                  monkeypatch, caplog):
    broken = make_room('101')
    healthy = make_room('102')
    make_stay(broken, days(3), days(4))
    make_stay(healthy, days(3), days(4))

    lock_room = repository.lock_room

    def failing_lock(room_id):
        if room_id == broken.id:
            raise OperationalError('SELECT', {}, Exception('database is locked'))
        return lock_room(room_id)

    monkeypatch.setattr(repository, 'lock_room', failing_lock)

    with caplog.at_level(logging.ERROR, logger='hotel_pms'):
        result = engine.tick()

    reload(broken, healthy)
    assert result.failed_rooms == [broken.id]
    assert result.rooms_seen == 2
    assert healthy.status == RoomStatus.BOOKED
    assert broken.status == RoomStatus.FREE
    assert 'failed' in caplog.text


def test_room_removed_during_tick_is_skipped(engine, repository, make_room, make_stay, monkeypatch):
    gone = make_room('101')
    kept = make_room('102')
    make_stay(kept, days(3), days(4))
    gone_id = gone.id

    lock_room = repository.lock_room

    def vanishing_lock(room_id):
        if room_id == gone_id:
            raise NotFound(f"Room {room_id} not found")
        return lock_room(room_id)

    monkeypatch.setattr(repository, 'lock_room', vanishing_lock)

    result = engine.tick()

    reload(kept)
    assert result.failed_rooms == []
    assert result.rooms_seen == 2
    assert kept.status == RoomStatus.BOOKED


def test_unexpected_error_abandons_tick(engine, repository, make_room, monkeypatch):
    make_room()

    def boom(room_id):
        raise RuntimeError('bug')

    monkeypatch.setattr(repository, 'lock_room', boom)

    with pytest.raises(RuntimeError):
        engine.tick()


def test_tick_result_to_dict(engine, make_room):
    make_room()
    data = engine.tick().to_dict()
    assert data == {'rooms_seen': 1, 'stay_writes': 0, 'room_writes': 0, 'failed_rooms': []}
