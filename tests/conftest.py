from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from hotel_pms import create_app
from hotel_pms.config import StatusPolicy, TestConfig
from hotel_pms.engine import ReconciliationEngine
from hotel_pms.models import db, Admin, Role, Room, RoomStatus, Stay, StayStatus
from hotel_pms.repository import StatusRepository
from hotel_pms.transitions import ManualTransitionService

ROME = ZoneInfo('Europe/Rome')
TODAY = date(2026, 10, 19)


def days(n):
    return TODAY + timedelta(days=n)


class FakeClock:
    """Settable clock; `at(h, m, s)` moves to that local time on TODAY"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def at(self, hour, minute=0, second=0, day=TODAY):
        self.now = datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=ROME)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=ROME))


@pytest.fixture
def app(clock):
    app = create_app(TestConfig, clock=clock)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def policy(app):
    return StatusPolicy.from_mapping(app.config)


@pytest.fixture
def repository(app):
    return StatusRepository(db.session)


@pytest.fixture
def engine(repository, policy, clock):
    return ReconciliationEngine(repository, policy, clock)


@pytest.fixture
def transitions(repository, engine):
    return ManualTransitionService(repository, engine)


def _make_admin(username, role=Role.ADMIN, password='secret1', **kwargs):
    admin = Admin(username=username, role=role, **kwargs)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    return admin


@pytest.fixture
def owner(app):
    return _make_admin('hotel1', hotel_name='Hotel One', check_in_hour=14, check_out_hour=10)


@pytest.fixture
def other_owner(app):
    return _make_admin('hotel2', hotel_name='Hotel Two', check_in_hour=15, check_out_hour=11)


@pytest.fixture
def editor(app, owner):
    return _make_admin('editor1', role=Role.EDITOR, created_by_id=owner.id)


@pytest.fixture
def make_room(owner):
    def make(number='101', admin=None, status=RoomStatus.FREE, **kwargs):
        room = Room(admin_id=(admin or owner).id, room_number=number, status=status, **kwargs)
        db.session.add(room)
        db.session.commit()
        return room
    return make


@pytest.fixture
def make_stay():
    def make(room, check_in, check_out, status=StayStatus.BOOKED, guest='Mario Rossi'):
        stay = Stay(room_id=room.id, main_guest_name=guest, check_in=check_in,
                    check_out=check_out, status=status)
        db.session.add(stay)
        db.session.commit()
        return stay
    return make


@pytest.fixture
def auth_headers(client):
    def login(username='hotel1', password='secret1'):
        response = client.post('/api/login', json={'username': username, 'password': password})
        assert response.status_code == 200, response.get_json()
        return {'Authorization': f"Bearer {response.get_json()['token']}"}
    return login
