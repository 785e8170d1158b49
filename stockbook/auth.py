# Identity: session-cookie login. The logged-in user's id is the owner id
# that scopes every product, batch and sale.

from functools import wraps

from flask import g, jsonify, request, session

from .errors import Conflict, Unauthorized, ValidationError
from .logging_config import get_logger
from .models import User, db
from .validation import clean_str

log = get_logger('auth')


def load_current_user():
    """
    Load the current user from the session before each request.
    Makes the user available as g.current_user (None when anonymous).
    """
    user_id = session.get('user_id')
    g.current_user = db.session.get(User, user_id) if user_id is not None else None


def current_owner_id():
    user = g.get('current_user')
    if user is None:
        raise Unauthorized('Unauthorized')
    return user.id


def login_required(fn):
    """Reject the request with 401 unless a user is logged in."""
    @wraps(fn)
    def wrapped(*args, **kwargs):
        current_owner_id()
        return fn(*args, **kwargs)

    return wrapped


def _credentials():
    data = request.get_json(silent=True) or request.form
    username = clean_str(data.get('username'))
    password = data.get('password') or ''
    if not username or not password:
        raise ValidationError('Username and password are required.')
    return username, password


def register_auth_routes(app):
    @app.route('/auth/signup', methods=['POST'])
    def signup():
        username, password = _credentials()
        if User.query.filter_by(username=username).first():
            raise Conflict('Username already exists.')

        user = User(username=username)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        log.info('user %s signed up', user.id)
        return jsonify(user.to_dict()), 201

    @app.route('/auth/login', methods=['POST'])
    def login():
        username, password = _credentials()
        user = User.query.filter_by(username=username).first()
        if user is None or not user.check_password(password):
            log.warning('failed login for %r', username)
            raise Unauthorized('Invalid username or password.')

        session.clear()
        session['user_id'] = user.id
        return jsonify(user.to_dict())

    @app.route('/auth/logout', methods=['POST'])
    def logout():
        session.clear()
        return jsonify({'success': True})

    @app.route('/auth/me')
    @login_required
    def me():
        return jsonify(g.current_user.to_dict())
