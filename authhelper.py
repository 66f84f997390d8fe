import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
import requests
from firebase_admin import auth as firebase_auth
from flask import g, request

import config
import dbhelper
from errors import AppError

logger = logging.getLogger(__name__)

FIREBASE_SIGN_IN_URL = 'https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword'


# ==================================================
# BACKEND JWT (HS256)
# ==================================================
def issue_token(uid: str, email: str, role: str, display_name: str = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        'uid': uid,
        'email': email,
        'role': role,
        'displayName': display_name,
        'iat': now,
        'exp': now + timedelta(hours=config.JWT_EXPIRY_HOURS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm='HS256')


def decode_token(token: str, verify_exp: bool = True) -> dict:
    return jwt.decode(token, config.JWT_SECRET, algorithms=['HS256'], options={'verify_exp': verify_exp})


def refresh_token(token: str) -> str:
    """Re-sign a backend token, ignoring its expiry."""
    claims = decode_token(token, verify_exp=False)
    return issue_token(claims['uid'], claims.get('email'), claims.get('role', 'customer'), claims.get('displayName'))


def resolve_user(token: str) -> dict:
    """Turn a bearer token into {uid, email, role, displayName}.

    Backend tokens are HS256 and carry the role themselves. Anything else is
    treated as a Firebase ID token and the role is read from the user profile.
    """
    header = jwt.get_unverified_header(token)
    if header.get('alg') == 'HS256':
        claims = decode_token(token)
        return {
            'uid': claims['uid'],
            'email': claims.get('email'),
            'role': claims.get('role', 'customer'),
            'displayName': claims.get('displayName'),
        }

    decoded = firebase_auth.verify_id_token(token)
    profile = dbhelper.get_user_profile(decoded['uid']) or {}
    if profile.get('isActive') is False:
        raise AppError('Account is inactive', 403, 'ACCOUNT_INACTIVE')
    return {
        'uid': decoded['uid'],
        'email': decoded.get('email') or profile.get('email'),
        'role': profile.get('role', 'customer'),
        'displayName': profile.get('displayName') or decoded.get('name'),
    }


def get_bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None
    return None


# ==================================================
# ROUTE DECORATORS
# - require_auth: 401 without a valid token
# - optional_auth: g.user is None for guests
# - require_admin: admin or super_admin
# - require_super_admin
# ==================================================
def require_auth(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = get_bearer_token()
        if not token:
            raise AppError('No token provided', 401, 'UNAUTHORIZED')
        g.user = resolve_user(token)
        return f(*args, **kwargs)
    return decorated


def optional_auth(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        g.user = None
        token = get_bearer_token()
        if token:
            try:
                g.user = resolve_user(token)
            except (jwt.InvalidTokenError, firebase_auth.InvalidIdTokenError, AppError) as e:
                logger.info('Ignoring invalid optional token: %s', e)
        return f(*args, **kwargs)
    return decorated


def require_admin(f):
    @wraps(f)
    @require_auth
    def decorated(*args, **kwargs):
        if g.user.get('role') not in dbhelper.ADMIN_ROLES:
            raise AppError('Admin access required', 403, 'FORBIDDEN')
        return f(*args, **kwargs)
    return decorated


def require_super_admin(f):
    @wraps(f)
    @require_auth
    def decorated(*args, **kwargs):
        if g.user.get('role') != 'super_admin':
            raise AppError('Super admin access required', 403, 'FORBIDDEN')
        return f(*args, **kwargs)
    return decorated


# ==================================================
# FIREBASE AUTH WRAPPERS
# ==================================================
def create_firebase_user(email: str, password: str, display_name: str = None, phone_number: str = None):
    """Create the auth account; returns the new uid."""
    kwargs = {'email': email, 'password': password, 'display_name': display_name}
    if phone_number:
        kwargs['phone_number'] = phone_number
    record = firebase_auth.create_user(**kwargs)
    return record.uid


def disable_firebase_user(uid: str):
    firebase_auth.update_user(uid, disabled=True)


def password_reset_link(email: str) -> str:
    return firebase_auth.generate_password_reset_link(email)


def sign_in_with_password(email: str, password: str) -> str:
    """Check credentials against the Firebase Auth REST API, return the uid."""
    if not config.FIREBASE_API_KEY:
        raise AppError('Email/password login is not configured', 500, 'AUTH_NOT_CONFIGURED')
    try:
        resp = requests.post(
            FIREBASE_SIGN_IN_URL,
            params={'key': config.FIREBASE_API_KEY},
            json={'email': email, 'password': password, 'returnSecureToken': True},
            timeout=10,
        )
    except requests.RequestException as e:
        logger.error('Firebase sign-in request failed: %s', e)
        raise AppError('Authentication service unavailable', 503, 'AUTH_UNAVAILABLE')
    if resp.status_code != 200:
        raise AppError('Invalid email or password', 401, 'INVALID_CREDENTIALS')
    return resp.json()['localId']


# ==================================================
# ACCOUNT FLOWS
# ==================================================
def register_user(email: str, password: str, display_name: str, phone_number: str = None) -> dict:
    uid = create_firebase_user(email, password, display_name, phone_number)
    profile = dbhelper.create_user_profile(uid, email, display_name, phone_number, 'customer')
    logger.info('User registered: %s', email)
    return {
        'token': issue_token(uid, email, 'customer', display_name),
        'user': {'uid': uid, 'email': email, 'displayName': display_name, 'role': profile['role']},
    }


def login_user(email: str, password: str) -> dict:
    uid = sign_in_with_password(email, password)
    profile = dbhelper.get_user_profile(uid)
    if not profile:
        raise AppError('User profile not found', 404, 'USER_NOT_FOUND')
    if profile.get('isActive') is False:
        raise AppError('Account is inactive', 403, 'ACCOUNT_INACTIVE')
    dbhelper.touch_last_login(uid)
    role = profile.get('role', 'customer')
    logger.info('User logged in: %s', email)
    return {
        'token': issue_token(uid, profile.get('email', email), role, profile.get('displayName')),
        'user': {
            'uid': uid,
            'email': profile.get('email', email),
            'displayName': profile.get('displayName'),
            'role': role,
        },
    }


def create_admin_account(email: str, password: str, display_name: str = None, role: str = 'admin') -> dict:
    display_name = display_name or email.split('@')[0]
    uid = create_firebase_user(email, password, display_name)
    dbhelper.create_user_profile(uid, email, display_name, None, role)
    logger.info('%s account created: %s', role, email)
    return {'uid': uid, 'email': email, 'displayName': display_name, 'role': role}
