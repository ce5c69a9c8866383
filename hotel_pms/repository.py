"""SQLAlchemy implementation of the persistence port used by the status engine.

Writes are conditional: ``save_room_status`` and ``save_stay_status`` compare
the stored value with the target and only touch the row when they differ.
They return whether a write happened, so callers can count real changes.
"""
import logging
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from .errors import NotFound, PersistenceFailure
from .models import Room, Stay, StayStatus

logger = logging.getLogger(__name__)


class StatusRepository:

    def __init__(self, session):
        self.session = session

    # ============================================
    # TRANSACTIONS
    # ============================================

    @contextmanager
    def unit_of_work(self):
        """Commit on success, roll back on any error.

        SQLAlchemy errors surface as PersistenceFailure so callers never see
        a half-applied room: the stay and room rows commit together or not
        at all.
        """
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(f"Storage operation failed: {exc}") from exc
        except Exception:
            self.session.rollback()
            raise

    def end_read(self):
        """Finish the current read transaction so per-room locks start fresh"""
        self.session.commit()

    # ============================================
    # ROOMS
    # ============================================

    def load_rooms_for_reconciliation(self, owner_id=None, room_id=None):
        query = self.session.query(Room)
        if owner_id is not None:
            query = query.filter(Room.admin_id == owner_id)
        if room_id is not None:
            query = query.filter(Room.id == room_id)
        return query.order_by(Room.id).all()

    def lock_room(self, room_id):
        """Load a room with its owner, holding a row lock until commit"""
        room = (
            self.session.query(Room)
            .options(joinedload(Room.admin, innerjoin=True))
            .filter(Room.id == room_id)
            .with_for_update(of=Room)
            .populate_existing()
            .first()
        )
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        return room

    def find_room(self, room_id, owner_id):
        room = self.session.query(Room).filter_by(id=room_id, admin_id=owner_id).first()
        if room is None:
            raise NotFound('Room not found')
        return room

    def save_room_status(self, room, status):
        if room.status == status:
            return False
        logger.info("Room %s (#%s): %s -> %s", room.room_number, room.id, room.status, status)
        room.status = status
        self.session.flush()
        return True

    # ============================================
    # STAYS
    # ============================================

    def load_candidate_stays(self, room_id, today):
        """Active stays covering `today`, plus future bookings, for one room"""
        return (
            self.session.query(Stay)
            .filter(Stay.room_id == room_id)
            .filter(or_(
                (Stay.check_in <= today) & (Stay.check_out >= today)
                & Stay.status.in_(StayStatus.ACTIVE),
                (Stay.check_in > today) & (Stay.status == StayStatus.BOOKED),
            ))
            .order_by(Stay.check_in, Stay.id)
            .with_for_update()
            .all()
        )

    def load_ending_stays(self, room_id, today):
        """Occupied stays whose check-out date is today or already behind us"""
        return (
            self.session.query(Stay)
            .filter(Stay.room_id == room_id,
                    Stay.status == StayStatus.OCCUPIED,
                    Stay.check_out <= today)
            .order_by(Stay.check_out, Stay.id)
            .with_for_update()
            .all()
        )

    def find_stay(self, stay_id, owner_id, for_update=False):
        query = (
            self.session.query(Stay)
            .join(Room, Stay.room_id == Room.id)
            .filter(Stay.id == stay_id, Room.admin_id == owner_id)
        )
        if for_update:
            # Re-read under lock; the caller must already hold the room lock
            query = query.with_for_update(of=Stay).populate_existing()
        stay = query.first()
        if stay is None:
            raise NotFound('Stay not found')
        return stay

    def save_stay_status(self, stay, status, actor=None):
        if stay.status == status:
            return False
        logger.info("Stay #%s (room #%s): %s -> %s%s", stay.id, stay.room_id, stay.status, status,
                    f" by {actor}" if actor else '')
        stay.status = status
        stay.updated_by = actor or 'system'
        self.session.flush()
        return True

    # ============================================
    # OVERDUE FLAGS
    # ============================================

    def _not_flagged_with(self, reason):
        return or_(Stay.needs_action.is_(False),
                   Stay.needs_action_reason.is_(None),
                   Stay.needs_action_reason != reason)

    def find_missed_check_ins(self, today, reason):
        return (
            self.session.query(Stay)
            .filter(Stay.status == StayStatus.BOOKED, Stay.check_in < today)
            .filter(self._not_flagged_with(reason))
            .all()
        )

    def find_missed_check_outs(self, today, reason):
        return (
            self.session.query(Stay)
            .filter(Stay.status == StayStatus.OCCUPIED, Stay.check_out < today)
            .filter(self._not_flagged_with(reason))
            .all()
        )

    def flag_needs_action(self, stay, reason):
        stay.needs_action = True
        stay.needs_action_reason = reason
        stay.updated_at = datetime.utcnow()
        self.session.flush()
