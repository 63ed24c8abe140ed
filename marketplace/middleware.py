from flask import request, jsonify, abort
from flask_login import current_user
from functools import wraps
from marketplace.models import UserRole
import logging

logger = logging.getLogger(__name__)


class Principal:
    """Authenticated caller handed to every mutating service operation."""

    __slots__ = ('id', 'role')

    def __init__(self, id, role):
        self.id = id
        self.role = role if isinstance(role, UserRole) else UserRole(role)

    @classmethod
    def from_user(cls, user):
        return cls(user.id, user.role)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    @property
    def is_seller(self):
        return self.role == UserRole.SELLER

    @property
    def is_buyer(self):
        return self.role == UserRole.BUYER

    def __repr__(self):
        return f'<Principal {self.id} role={self.role.value}>'


def current_principal():
    return Principal.from_user(current_user)


def role_required(*allowed_roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Not logged in'}), 401

            # allowed_roles is a list of role values.
            if current_user.role.value not in allowed_roles:
                logger.warning(
                    "User %s attempted to access roles %s, current role: %s",
                    current_user.id,
                    allowed_roles,
                    current_user.role.value,
                )
                if request.path.startswith('/api/'):
                    return jsonify({'error': 'Insufficient permissions'}), 403
                abort(403)

            return f(*args, **kwargs)
        return decorated_function
    return decorator
