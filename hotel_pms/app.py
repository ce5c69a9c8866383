"""
Hotel PMS - Multi-tenant Backend
================================
Rooms and stays per hotel, with room/stay statuses kept in line with the
hotel's check-in/check-out hours by a background reconciliation job.
"""

import logging
import os
import sys
from datetime import datetime, timedelta
from functools import wraps

import click
import jwt
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from sqlalchemy.exc import IntegrityError

from .clock import utc_now
from .config import Config, StatusPolicy
from .engine import ReconciliationEngine
from .errors import StatusError
from .models import db, Admin, Role, Room, RoomStatus, Stay, StayStatus
from .overdue import OverdueDetector
from .policy import is_hour_or_none
from .repository import StatusRepository
from .scheduler import OVERDUE_CHECK, STATUS_TICK, JobRunner
from .transitions import ManualTransitionService

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


# ============================================
# APPLICATION FACTORY
# ============================================

def create_app(config_object=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app)

    # Initialize database
    db.init_app(app)

    # Create tables on startup
    with app.app_context():
        db.create_all()

    # CORS configuration
    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"]
         )

    app.extensions['status_clock'] = clock or utc_now
    app.extensions['status_policy'] = StatusPolicy.from_mapping(app.config)

    app.register_blueprint(api)
    register_error_handlers(app)
    register_commands(app)

    jobs = register_jobs(app)
    if app.config.get('START_SCHEDULER') and not app.testing:
        jobs.start()

    return app


def configure_logging(app):
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    root = logging.getLogger('hotel_pms')
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root.addHandler(handler)


# ============================================
# STATUS SERVICES
# ============================================

def status_engine():
    return ReconciliationEngine(
        StatusRepository(db.session),
        current_app.extensions['status_policy'],
        current_app.extensions['status_clock'],
    )


def transition_service():
    engine = status_engine()
    return ManualTransitionService(engine.repository, engine)


def overdue_detector():
    return OverdueDetector(
        StatusRepository(db.session),
        current_app.extensions['status_policy'],
        current_app.extensions['status_clock'],
    )


def register_jobs(app):
    """Schedule the status tick and the overdue check; started only outside tests"""
    def in_context(func):
        def run():
            with app.app_context():
                return func()
        return run

    jobs = JobRunner(timezone=app.config['APP_TIMEZONE'],
                     tolerance=app.config['CRON_TOLERANCE_SECONDS'])
    jobs.add_interval_job(STATUS_TICK, in_context(lambda: status_engine().tick()),
                          seconds=app.config['STATUS_TICK_INTERVAL'])
    jobs.add_interval_job(OVERDUE_CHECK, in_context(lambda: overdue_detector().check_overdue_stays()),
                          seconds=app.config['OVERDUE_CHECK_INTERVAL'])
    app.extensions['status_jobs'] = jobs
    return jobs


def run_tick(scope=None):
    """Run a status tick now, sharing the scheduled tick's guard. None when skipped."""
    jobs = current_app.extensions['status_jobs']
    return jobs.run_exclusive(STATUS_TICK, lambda: status_engine().tick(owner_id=scope))


# ============================================
# JWT HELPERS
# ============================================

def create_jwt_token(admin):
    """Create a JWT token for the admin"""
    payload = {
        'admin_id': admin.id,
        'username': admin.username,
        'role': admin.role,
        'owner_id': admin.owner_id,
        'exp': datetime.utcnow() + timedelta(hours=current_app.config['JWT_EXPIRATION_HOURS']),
        'iat': datetime.utcnow()
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'],
                      algorithm=current_app.config['JWT_ALGORITHM'])


def verify_jwt_token(token):
    """Verify JWT token and return payload if valid"""
    try:
        return jwt.decode(token, current_app.config['SECRET_KEY'],
                          algorithms=[current_app.config['JWT_ALGORITHM']])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_current_admin():
    """Get current admin from JWT token; blocked accounts count as logged out"""
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        payload = verify_jwt_token(auth_header[7:])
        if payload and payload.get('admin_id'):
            admin = db.session.get(Admin, payload.get('admin_id'))
            if admin is not None and not admin.is_blocked:
                return admin
    return None


def login_required(*roles):
    """Authentication decorator, optionally limited to some roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            admin = get_current_admin()
            if not admin:
                return jsonify({'error': 'Unauthorized'}), 401
            if roles and admin.role not in roles:
                return jsonify({'error': 'Access denied'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def owner_id():
    return get_current_admin().owner_id


def actor_name():
    return get_current_admin().username


# ============================================
# ERROR HANDLERS
# ============================================

def register_error_handlers(app):

    @app.errorhandler(StatusError)
    def handle_status_error(error):
        if error.status_code >= 500:
            logger.error("Request failed: %s", error.message)
        return jsonify(error.to_dict()), error.status_code


# ============================================
# AUTHENTICATION API ROUTES
# ============================================

@api.route('/api/login', methods=['POST'])
def login():
    """Admin login - returns JWT token"""
    data = request.get_json() or {}
    username = data.get('username', '').strip()
    password = data.get('password', '').strip()

    if not username or not password:
        return jsonify({'success': False, 'message': 'Username and password required'}), 400

    admin = Admin.query.filter_by(username=username).first()

    if admin and not admin.is_blocked and admin.check_password(password):
        return jsonify({
            'success': True,
            'username': username,
            'role': admin.role,
            'token': create_jwt_token(admin)
        })
    return jsonify({'success': False, 'message': 'Invalid credentials'}), 401


@api.route('/api/current-user')
@login_required()
def current_user():
    """Get current logged in admin"""
    return jsonify(get_current_admin().to_dict())


# ============================================
# ROOM API ROUTES (Multi-tenant)
# ============================================

@api.route('/api/rooms')
@login_required(Role.ADMIN, Role.EDITOR)
def get_rooms():
    """Get all rooms for current admin's hotel"""
    rooms = Room.query.filter_by(admin_id=owner_id()).order_by(Room.room_number).all()
    return jsonify([room.to_dict() for room in rooms])


@api.route('/api/rooms', methods=['POST'])
@login_required(Role.ADMIN)
def create_room():
    """Create a new room for current admin's hotel; rooms start free"""
    data = request.get_json() or {}

    if not data.get('room_number'):
        return jsonify({'success': False, 'message': 'Missing field: room_number'}), 400

    # Check if room number already exists in this hotel
    existing = Room.query.filter_by(admin_id=owner_id(), room_number=data['room_number']).first()
    if existing:
        return jsonify({'success': False, 'message': 'Room number already exists'}), 400

    room = Room(
        admin_id=owner_id(),
        room_number=data['room_number'],
        floor=data.get('floor', 1),
        capacity=data.get('capacity', 2),
        status=RoomStatus.FREE
    )
    db.session.add(room)
    db.session.commit()

    return jsonify({'success': True, 'room': room.to_dict()})


def _policy_hours_payload(data):
    """Pick check_in_hour/check_out_hour from a payload; None clears an override"""
    hours = {}
    for key in ('check_in_hour', 'check_out_hour'):
        if key in data:
            if not is_hour_or_none(data[key]):
                return None, f'{key} must be an integer 0..23 or null'
            hours[key] = data[key]
    if not hours:
        return None, 'Provide at least one of: check_in_hour, check_out_hour'
    return hours, None


@api.route('/api/rooms/<int:room_id>/policy-hours', methods=['PUT'])
@login_required(Role.ADMIN, Role.EDITOR)
def update_room_policy_hours(room_id):
    """Set or clear one room's check-in/check-out hours"""
    room = Room.query.filter_by(id=room_id, admin_id=owner_id()).first()
    if not room:
        return jsonify({'success': False, 'message': 'Room not found'}), 404

    hours, error = _policy_hours_payload(request.get_json() or {})
    if error:
        return jsonify({'success': False, 'message': error}), 400

    for key, value in hours.items():
        setattr(room, key, value)
    db.session.commit()
    return jsonify({'success': True, 'room': room.to_dict()})


@api.route('/api/rooms/policy-hours/bulk', methods=['PUT'])
@login_required(Role.ADMIN, Role.EDITOR)
def bulk_update_policy_hours():
    """Apply the same hours to every room of the hotel"""
    hours, error = _policy_hours_payload(request.get_json() or {})
    if error:
        return jsonify({'success': False, 'message': error}), 400

    updated = Room.query.filter_by(admin_id=owner_id()).update(hours, synchronize_session=False)
    db.session.commit()
    return jsonify({'success': True, 'updated': updated, 'applied': hours})


@api.route('/api/rooms/<int:room_id>/cleaning', methods=['POST'])
@login_required(Role.ADMIN, Role.EDITOR)
def start_cleaning(room_id):
    """Hold a room in cleaning"""
    room = transition_service().mark_cleaning(room_id, owner_id())
    return jsonify({'success': True, 'room': room.to_dict()})


@api.route('/api/rooms/<int:room_id>/cleaning/finish', methods=['POST'])
@login_required(Role.ADMIN, Role.EDITOR)
def finish_cleaning(room_id):
    """Release the cleaning hold and recompute the room status"""
    room = transition_service().finish_cleaning(room_id, owner_id())
    return jsonify({'success': True, 'room': room.to_dict()})


# ============================================
# STAY API ROUTES (Multi-tenant)
# ============================================

@api.route('/api/stays')
@login_required(Role.ADMIN, Role.EDITOR)
def get_stays():
    """Get stays for current admin's hotel, optionally only active ones"""
    query = Stay.query.join(Room).filter(Room.admin_id == owner_id())
    if request.args.get('active') == '1':
        query = query.filter(Stay.status.in_(StayStatus.ACTIVE))
    stays = query.order_by(Stay.check_in.desc()).all()
    return jsonify([s.to_dict() for s in stays])


@api.route('/api/stays', methods=['POST'])
@login_required(Role.ADMIN, Role.EDITOR)
def create_stay():
    """Create a booking for one of the hotel's rooms"""
    data = request.get_json() or {}

    # Validate required fields
    required_fields = ['main_guest_name', 'room_id', 'check_in', 'check_out']
    for field in required_fields:
        if field not in data:
            return jsonify({'success': False, 'message': f'Missing field: {field}'}), 400

    # Get room (must belong to this hotel)
    room = Room.query.filter_by(id=data['room_id'], admin_id=owner_id()).first()
    if not room:
        return jsonify({'success': False, 'message': 'Room not found'}), 404

    # Parse dates
    try:
        check_in = datetime.strptime(data['check_in'], '%Y-%m-%d').date()
        check_out = datetime.strptime(data['check_out'], '%Y-%m-%d').date()
    except (TypeError, ValueError):
        return jsonify({'success': False, 'message': 'Dates must be YYYY-MM-DD'}), 400

    if check_out <= check_in:
        return jsonify({'success': False, 'message': 'Check-out must be after check-in'}), 400

    # Lock the room so the conflict check and the status refresh see a stable room
    engine = status_engine()
    room = engine.repository.lock_room(room.id)

    # Check for booking conflicts
    conflict = Stay.query.filter(
        Stay.room_id == room.id,
        Stay.status.in_(StayStatus.ACTIVE),
        Stay.check_in < check_out,
        Stay.check_out > check_in
    ).first()

    if conflict:
        return jsonify({'success': False, 'message': 'Room is already booked for these dates'}), 409

    stay = Stay(
        room_id=room.id,
        main_guest_name=data['main_guest_name'],
        check_in=check_in,
        check_out=check_out,
        balance=data.get('balance', 0),
        status=StayStatus.BOOKED,
        created_by=actor_name()
    )
    db.session.add(stay)
    db.session.flush()

    # Bring the room in line with the new booking straight away
    engine.refresh_room(room)
    db.session.commit()

    return jsonify({'success': True, 'stay': stay.to_dict(), 'room': room.to_dict()})


def _force_flag():
    data = request.get_json(silent=True) or {}
    return bool(data.get('force', False))


@api.route('/api/stays/<int:stay_id>/check-in', methods=['POST'])
@login_required(Role.ADMIN, Role.EDITOR)
def check_in_stay(stay_id):
    """Check in guest"""
    result = transition_service().check_in(stay_id, owner_id(), force=_force_flag(), actor=actor_name())
    return jsonify({'success': True, 'message': 'Stay checked in successfully', **result.to_dict()})


@api.route('/api/stays/<int:stay_id>/check-out', methods=['POST'])
@login_required(Role.ADMIN, Role.EDITOR)
def check_out_stay(stay_id):
    """Check out guest"""
    result = transition_service().check_out(stay_id, owner_id(), force=_force_flag(), actor=actor_name())
    return jsonify({'success': True, 'message': 'Stay checked out successfully', **result.to_dict()})


@api.route('/api/stays/<int:stay_id>/cancel', methods=['POST'])
@login_required(Role.ADMIN, Role.EDITOR)
def cancel_stay(stay_id):
    """Cancel a booking"""
    result = transition_service().cancel(stay_id, owner_id(), actor=actor_name())
    return jsonify({'success': True, 'message': 'Stay cancelled successfully', **result.to_dict()})


# ============================================
# STATUS API ROUTES
# ============================================

@api.route('/api/status/tick', methods=['POST'])
@login_required(Role.SUPER, Role.ADMIN, Role.EDITOR)
def run_status_tick():
    """Reconcile room and stay statuses now; the superadmin sweeps every hotel"""
    scope = None if get_current_admin().role == Role.SUPER else owner_id()
    result = run_tick(scope)
    if result is None:
        return jsonify({'success': False, 'skipped': True,
                        'message': 'A status tick is already running'}), 409
    return jsonify({'success': True, 'skipped': False, **result.to_dict()})


# ============================================
# HEALTH CHECK
# ============================================

@api.route('/health')
def health_check():
    """Health check endpoint"""
    return jsonify({'status': 'healthy', 'timestamp': datetime.now().isoformat()})


@api.route('/')
def index():
    """Root endpoint"""
    return jsonify({'message': 'Hotel PMS API', 'status': 'running'})


# ============================================
# CLI COMMANDS
# ============================================

def register_commands(app):

    @app.cli.command('init-db')
    def init_db():
        """Initialize database tables"""
        db.create_all()
        click.echo("Database tables created!")

    @app.cli.command('seed-superadmin')
    @click.option('--username', default='superadmin')
    @click.password_option()
    def seed_superadmin(username, password):
        """Create the superadmin account"""
        admin = Admin(username=username, role=Role.SUPER)
        admin.set_password(password)
        db.session.add(admin)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise click.ClickException(f"Admin '{username}' already exists")
        click.echo(f"Superadmin '{username}' created")

    @app.cli.command('status-tick')
    @click.option('--owner-id', type=int, default=None, help='Only this hotel')
    def status_tick(owner_id):
        """Run one status reconciliation now"""
        result = run_tick(owner_id)
        if result is None:
            raise click.ClickException("A status tick is already running, skipped")
        click.echo(f"Rooms: {result.rooms_seen}, stay writes: {result.stay_writes}, "
                   f"room writes: {result.room_writes}, failed: {len(result.failed_rooms)}")

    @app.cli.command('check-overdue')
    def check_overdue():
        """Flag stays with a missed check-in or check-out"""
        result = overdue_detector().check_overdue_stays()
        click.echo(f"Flagged {result.total} stays ({result.missed_check_ins} missed check-ins, "
                   f"{result.missed_check_outs} missed check-outs)")


# ============================================
# MAIN ENTRY POINT
# ============================================

def main():
    app = create_app()

    debug_mode = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', 5000))

    print(f"""
    ========================================
    Hotel PMS - Multi-tenant
    ========================================
    Running on: http://{host}:{port}
    Debug mode: {debug_mode}
    Timezone: {app.config['APP_TIMEZONE']}
    Status tick: every {app.config['STATUS_TICK_INTERVAL']}s
    ========================================
    """)

    # The reloader would start the background jobs twice
    app.run(debug=debug_mode, host=host, port=port, use_reloader=False)


if __name__ == '__main__':
    main()
