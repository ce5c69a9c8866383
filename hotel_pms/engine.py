"""Status reconciliation engine.

Keeps ``Room.status`` and ``Stay.status`` in line with the clock and the
policy hours of each room. One tick walks every room and, for each one, in its
own locked unit of work:

A. promotes ``booked`` stays whose check-in instant has arrived to
   ``occupied``;
B. completes ``occupied`` stays whose check-out instant has passed, chaining
   into the next stay of the room when that one has already started;
C. recomputes the room status from scratch as a safety sweep.

The phases only compute a target (`RoomPlan`). Writing it is left to the
repository, which touches a row only when the stored value differs, so a tick
over a consistent database writes nothing.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .clock import Clock, local_today, utc_now
from .errors import NotFound, PersistenceFailure
from .models import RoomStatus, StayStatus
from .policy import resolve_hours
from .window import covers_today, ends_by, is_future, stay_window

logger = logging.getLogger(__name__)


@dataclass
class RoomPlan:
    room_id: int
    room_status: str
    stay_statuses: Dict[int, str] = field(default_factory=dict)


@dataclass
class TickResult:
    rooms_seen: int = 0
    stay_writes: int = 0
    room_writes: int = 0
    failed_rooms: List[int] = field(default_factory=list)

    @property
    def writes(self):
        return self.stay_writes + self.room_writes

    def to_dict(self):
        return {
            'rooms_seen': self.rooms_seen,
            'stay_writes': self.stay_writes,
            'room_writes': self.room_writes,
            'failed_rooms': list(self.failed_rooms),
        }


class _RoomSnapshot:
    """Working copy of one room's stays while the phases run"""

    def __init__(self, room, stays, policy, now):
        self.room = room
        self.stays = stays
        self.now = now
        self.today = local_today(now, policy.timezone)
        hours = resolve_hours(room, policy)
        self.windows = {s.id: stay_window(s, hours, policy.timezone) for s in stays}
        self.statuses = {s.id: s.status for s in stays}

    def status(self, stay):
        return self.statuses[stay.id]

    def set_status(self, stay, status):
        self.statuses[stay.id] = status

    def covers_now(self, stay):
        return self.windows[stay.id].covers(self.now)

    def in_house(self, stay):
        """Covering stays hold the room; so does an early check-in until it departs"""
        if self.covers_now(stay):
            return True
        return self.status(stay) == StayStatus.OCCUPIED and not self.windows[stay.id].departed(self.now)

    def changed(self):
        return {s.id: self.statuses[s.id] for s in self.stays if self.statuses[s.id] != s.status}


class ReconciliationEngine:

    def __init__(self, repository, policy, clock: Optional[Clock] = None):
        self.repository = repository
        self.policy = policy
        self.clock = clock or utc_now

    # ============================================
    # TICK
    # ============================================

    def tick(self, owner_id=None) -> TickResult:
        """Reconcile every room (or one owner's rooms), one transaction per room"""
        now = self.clock()
        result = TickResult()
        room_ids = [room.id for room in self.repository.load_rooms_for_reconciliation(owner_id=owner_id)]
        self.repository.end_read()

        for room_id in room_ids:
            result.rooms_seen += 1
            try:
                with self.repository.unit_of_work():
                    stay_writes, room_writes = self._reconcile_room(room_id, now)
            except PersistenceFailure:
                logger.exception("Reconciliation of room #%s failed, continuing with the next room", room_id)
                result.failed_rooms.append(room_id)
                continue
            except NotFound:
                logger.info("Room #%s was removed during the tick, skipping", room_id)
                continue
            result.stay_writes += stay_writes
            result.room_writes += room_writes

        if result.writes or result.failed_rooms:
            logger.info("Status tick at %s: %s rooms, %s stay writes, %s room writes, %s failed",
                        now.isoformat(), result.rooms_seen, result.stay_writes,
                        result.room_writes, len(result.failed_rooms))
        else:
            logger.debug("Status tick at %s: %s rooms, nothing to change", now.isoformat(), result.rooms_seen)
        return result

    def _reconcile_room(self, room_id, now):
        room = self.repository.lock_room(room_id)
        today = local_today(now, self.policy.timezone)
        stays = self._load_stays(room.id, today)
        plan = self.plan_room(room, stays, now)
        return self._apply(room, stays, plan)

    def _load_stays(self, room_id, today):
        stays = {s.id: s for s in self.repository.load_candidate_stays(room_id, today)}
        for stay in self.repository.load_ending_stays(room_id, today):
            stays.setdefault(stay.id, stay)
        return sorted(stays.values(), key=lambda s: (s.check_in, s.id))

    def _apply(self, room, stays, plan):
        by_id = {s.id: s for s in stays}
        stay_writes = 0
        for stay_id, status in plan.stay_statuses.items():
            if self.repository.save_stay_status(by_id[stay_id], status):
                stay_writes += 1
        room_writes = 1 if self.repository.save_room_status(room, plan.room_status) else 0
        return stay_writes, room_writes

    # ============================================
    # PLANNING
    # ============================================

    def plan_room(self, room, stays, now) -> RoomPlan:
        """Target statuses for one room and its candidate stays at `now`"""
        snap = _RoomSnapshot(room, stays, self.policy, now)
        self._promote_started(snap)
        self._complete_ended(snap)
        # The sweep has the final word on the room, whatever A and B moved
        room_status = self._sweep(snap)

        if room.status == RoomStatus.CLEANING:
            room_status = RoomStatus.CLEANING
        return RoomPlan(room.id, room_status, snap.changed())

    def _promote_started(self, snap):
        for stay in snap.stays:
            if snap.status(stay) != StayStatus.BOOKED or not covers_today(stay, snap.today):
                continue
            if snap.covers_now(stay):
                snap.set_status(stay, StayStatus.OCCUPIED)

    def _complete_ended(self, snap):
        for stay in snap.stays:
            if snap.status(stay) != StayStatus.OCCUPIED or not ends_by(stay, snap.today):
                continue
            if not snap.windows[stay.id].departed(snap.now):
                continue
            snap.set_status(stay, StayStatus.COMPLETED)
            self._hand_over(snap, stay)

    def _hand_over(self, snap, departed):
        """Start the next stay of the room if its check-in has already come"""
        for other in snap.stays:
            if other.id == departed.id or snap.status(other) != StayStatus.BOOKED:
                continue
            if covers_today(other, snap.today) and snap.covers_now(other):
                snap.set_status(other, StayStatus.OCCUPIED)
                return other
        return None

    def _sweep(self, snap):
        occupied = False
        booked = False
        for stay in snap.stays:
            status = snap.status(stay)
            if status in StayStatus.ACTIVE and covers_today(stay, snap.today):
                if snap.in_house(stay):
                    occupied = True
            elif status == StayStatus.BOOKED and is_future(stay, snap.today):
                booked = True
        if occupied:
            return RoomStatus.OCCUPIED
        if booked:
            return RoomStatus.BOOKED
        return RoomStatus.FREE

    # ============================================
    # SINGLE ROOM
    # ============================================

    def derive_room_status(self, room, now=None):
        """Phase C for one room, ignoring a cleaning hold. Reads, never writes."""
        now = now or self.clock()
        today = local_today(now, self.policy.timezone)
        stays = self.repository.load_candidate_stays(room.id, today)
        return self._sweep(_RoomSnapshot(room, stays, self.policy, now))

    def refresh_room(self, room, now=None):
        """Recompute and persist one room's status inside the caller's unit of work"""
        if room.status == RoomStatus.CLEANING:
            return room.status
        status = self.derive_room_status(room, now)
        self.repository.save_room_status(room, status)
        return status
