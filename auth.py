import logging
from datetime import datetime, timedelta
from functools import wraps
from typing import Optional

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.security import generate_password_hash, check_password_hash

from errors import Conflict, Unauthorized
from schemas import LoginRequest, UserCreate, parse
from storage import get_storage

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api")


# =====================================================
# IDENTITY
# =====================================================
def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_identity(token: Optional[str]) -> Optional[int]:
    """Map a bearer token to a user id; unknown or expired tokens give None."""
    if not token:
        return None
    storage = get_storage()
    session = storage.get_session(token)
    if session is None:
        return None
    if session.expires < datetime.utcnow():
        storage.delete_session(token)
        return None
    return session.user_id


def current_user_id() -> Optional[int]:
    return resolve_identity(bearer_token())


def login_required(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        user_id = current_user_id()
        if user_id is None:
            raise Unauthorized()
        g.user_id = user_id
        return func(*args, **kwargs)
    return wrapper


def issue_token(user):
    ttl = timedelta(hours=current_app.config["SESSION_TTL_HOURS"])
    return get_storage().create_session(user.id, ttl).token


def create_account(data: UserCreate):
    """Hash the password and store the user."""
    hashed = data.model_copy(update={"password": generate_password_hash(data.password)})
    return get_storage().create_user(hashed)


# =====================================================
# ROUTES
# =====================================================
@auth_bp.route("/register", methods=["POST"])
def register():
    data = parse(UserCreate, request.get_json(silent=True), "Invalid registration data")
    if get_storage().get_user_by_username(data.username):
        raise Conflict("Username already exists")

    user = create_account(data)
    return jsonify({"user": user.to_dict(), "token": issue_token(user)}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = parse(LoginRequest, request.get_json(silent=True), "Invalid credentials")
    user = get_storage().get_user_by_username(data.username)

    if not user or not check_password_hash(user.password, data.password):
        logger.info("Failed login for %s", data.username)
        raise Unauthorized("Invalid credentials")

    return jsonify({"user": user.to_dict(), "token": issue_token(user)})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    get_storage().delete_session(bearer_token())
    return jsonify({"success": True})


@auth_bp.route("/user")
@login_required
def me():
    user = get_storage().get_user(g.user_id)
    if user is None:
        raise Unauthorized()
    return jsonify(user.to_dict())
