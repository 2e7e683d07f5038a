# Overview: Request decorators for API routes.

from functools import wraps

from flask import request, jsonify, g

from .permissions.definitions import VALID_ROLES
from .permissions.policy import Actor


ACTOR_ID_HEADER = "X-User-Id"
ACTOR_ROLE_HEADER = "X-User-Role"


def actor_from_headers(headers) -> Actor | None:
    """
    Build the Actor from headers set by the authenticating gateway.

    Returns None when either header is missing or unusable.
    """
    raw_id = (headers.get(ACTOR_ID_HEADER) or "").strip()
    role = (headers.get(ACTOR_ROLE_HEADER) or "").strip().upper()
    if not raw_id or not role:
        return None
    try:
        user_id = int(raw_id)
    except ValueError:
        return None
    if user_id <= 0 or role not in VALID_ROLES:
        return None
    return Actor(user_id=user_id, role=role)


def require_actor(f):
    """
    Require an authenticated actor context.

    Identity is verified upstream; this only reads it. Sets g.actor.
    Returns 401 if the headers are absent or malformed.

    Per-operation authorization is NOT done here: services evaluate the
    policy once, with the loaded resource in hand.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = actor_from_headers(request.headers)
        if actor is None:
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function
