"""Operator-triggered stay transitions.

    booked --check-in--> occupied --check-out--> completed
      |
      +------cancel------------------------------> cancelled

Each operation is one unit of work: the stay row is rewritten, then its room is
recomputed with the same sweep the scheduled tick uses, limited to that room.
The room row is locked before the stay is touched so a concurrent tick on the
same room waits for us instead of overwriting our result.
"""
import logging
from dataclasses import dataclass

from .errors import InvalidTransition
from .models import RoomStatus, StayStatus

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    stay: object
    room: object

    def to_dict(self):
        return {'stay': self.stay.to_dict(), 'room': self.room.to_dict()}


class ManualTransitionService:

    def __init__(self, repository, engine):
        self.repository = repository
        self.engine = engine

    def check_in(self, stay_id, owner_id, force=False, actor=None):
        """booked -> occupied. `force` skips the status and cleaning checks."""
        def check(stay, room):
            if stay.status != StayStatus.BOOKED:
                raise InvalidTransition('check in', stay.status)
            if room.status == RoomStatus.CLEANING:
                raise InvalidTransition('check in', stay.status, 'Room not available for check-in while cleaning')

        return self._transition(stay_id, owner_id, StayStatus.OCCUPIED,
                                check=None if force else check, actor=actor)

    def check_out(self, stay_id, owner_id, force=False, actor=None):
        """occupied -> completed"""
        def check(stay, room):
            if stay.status != StayStatus.OCCUPIED:
                raise InvalidTransition('check out', stay.status, 'Stay must be occupied before check-out')

        return self._transition(stay_id, owner_id, StayStatus.COMPLETED,
                                check=None if force else check, actor=actor)

    def cancel(self, stay_id, owner_id, actor=None):
        """booked -> cancelled. There is no force: an occupancy in progress is never cancelled."""
        def check(stay, room):
            if stay.status != StayStatus.BOOKED:
                raise InvalidTransition('cancel', stay.status, 'Only booked stay can be cancelled')

        return self._transition(stay_id, owner_id, StayStatus.CANCELLED, check=check, actor=actor)

    def _transition(self, stay_id, owner_id, target, check=None, actor=None):
        with self.repository.unit_of_work():
            stay = self.repository.find_stay(stay_id, owner_id)
            room = self.repository.lock_room(stay.room_id)
            stay = self.repository.find_stay(stay_id, owner_id, for_update=True)
            if check is not None:
                check(stay, room)
            elif stay.status != target:
                logger.warning("Forced %s on stay #%s from %s", target, stay.id, stay.status)
            self.repository.save_stay_status(stay, target, actor=actor)
            self.engine.refresh_room(room)
        return TransitionResult(stay, room)

    # ============================================
    # CLEANING HOLD
    # ============================================

    def mark_cleaning(self, room_id, owner_id):
        with self.repository.unit_of_work():
            room = self.repository.find_room(room_id, owner_id)
            room = self.repository.lock_room(room.id)
            if room.status == RoomStatus.OCCUPIED:
                raise InvalidTransition('start cleaning', room.status, 'Room is occupied')
            self.repository.save_room_status(room, RoomStatus.CLEANING)
        return room

    def finish_cleaning(self, room_id, owner_id):
        with self.repository.unit_of_work():
            room = self.repository.find_room(room_id, owner_id)
            room = self.repository.lock_room(room.id)
            if room.status != RoomStatus.CLEANING:
                raise InvalidTransition('finish cleaning', room.status, 'Room is not being cleaned')
            self.repository.save_room_status(room, self.engine.derive_room_status(room))
        return room
