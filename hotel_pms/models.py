# Database Models for the Hotel PMS backend
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()


class Role:
    SUPER = 'superadmin'
    ADMIN = 'admin'
    EDITOR = 'editor'

    ALL = (SUPER, ADMIN, EDITOR)


class RoomStatus:
    FREE = 'free'
    BOOKED = 'booked'
    OCCUPIED = 'occupied'
    CLEANING = 'cleaning'

    ALL = (FREE, BOOKED, OCCUPIED, CLEANING)


class StayStatus:
    BOOKED = 'booked'
    OCCUPIED = 'occupied'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    ALL = (BOOKED, OCCUPIED, COMPLETED, CANCELLED)
    ACTIVE = (BOOKED, OCCUPIED)


class Admin(db.Model):
    """Admin account - an admin owns one hotel, editors work for an admin"""
    __tablename__ = 'admins'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.ADMIN)
    created_by_id = db.Column(db.Integer, db.ForeignKey('admins.id', ondelete='CASCADE'), nullable=True)
    hotel_name = db.Column(db.String(100), default='')
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)

    # Hotel policy hours, used when a room has no override of its own
    check_in_hour = db.Column(db.Integer, nullable=True, default=14)
    check_out_hour = db.Column(db.Integer, nullable=True, default=10)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    rooms = db.relationship('Room', back_populates='admin', lazy=True, cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password, method='pbkdf2:sha256')

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def owner_id(self):
        """Id of the admin whose hotel this account works on"""
        if self.role == Role.EDITOR and self.created_by_id:
            return self.created_by_id
        return self.id

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role,
            'hotel_name': self.hotel_name,
            'check_in_hour': self.check_in_hour,
            'check_out_hour': self.check_out_hour,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class Room(db.Model):
    """Room model - belongs to an admin's hotel"""
    __tablename__ = 'rooms'

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey('admins.id', ondelete='CASCADE'), nullable=False)
    room_number = db.Column(db.String(20), nullable=False)
    floor = db.Column(db.Integer, nullable=False, default=1)
    capacity = db.Column(db.Integer, nullable=False, default=2)
    status = db.Column(db.String(20), nullable=False, default=RoomStatus.FREE)  # free, booked, occupied, cleaning

    # Per-room policy hours; NULL means follow the hotel
    check_in_hour = db.Column(db.Integer, nullable=True)
    check_out_hour = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Unique constraint: room_number per hotel
    __table_args__ = (
        db.UniqueConstraint('admin_id', 'room_number', name='unique_room_per_admin'),
        db.CheckConstraint('check_in_hour IS NULL OR (check_in_hour BETWEEN 0 AND 23)',
                           name='room_check_in_hour_range'),
        db.CheckConstraint('check_out_hour IS NULL OR (check_out_hour BETWEEN 0 AND 23)',
                           name='room_check_out_hour_range'),
    )

    # Relationships
    admin = db.relationship('Admin', back_populates='rooms')
    stays = db.relationship('Stay', back_populates='room', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'room_number': self.room_number,
            'floor': self.floor,
            'capacity': self.capacity,
            'status': self.status,
            'check_in_hour': self.check_in_hour,
            'check_out_hour': self.check_out_hour
        }


class Stay(db.Model):
    """Stay model - a booking or occupancy of one room"""
    __tablename__ = 'stays'

    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False)

    main_guest_name = db.Column(db.String(100), nullable=False)

    # Date only; the time of day comes from the policy hours
    check_in = db.Column(db.Date, nullable=False)
    check_out = db.Column(db.Date, nullable=False)

    balance = db.Column(db.Numeric(10, 2), default=0)

    # Status
    status = db.Column(db.String(20), nullable=False, default=StayStatus.BOOKED)  # booked, occupied, completed, cancelled

    # Set by the overdue check only
    needs_action = db.Column(db.Boolean, nullable=False, default=False)
    needs_action_reason = db.Column(db.String(50), nullable=True)

    # Audit
    created_by = db.Column(db.String(50), nullable=True)
    updated_by = db.Column(db.String(50), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    room = db.relationship('Room', back_populates='stays')

    __table_args__ = (
        db.CheckConstraint('check_in < check_out', name='stay_dates_order'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'room_number': self.room.room_number if self.room else None,
            'main_guest_name': self.main_guest_name,
            'check_in': self.check_in.isoformat() if self.check_in else None,
            'check_out': self.check_out.isoformat() if self.check_out else None,
            'balance': float(self.balance) if self.balance else 0,
            'status': self.status,
            'needs_action': self.needs_action,
            'needs_action_reason': self.needs_action_reason,
            'created_by': self.created_by,
            'updated_by': self.updated_by,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
