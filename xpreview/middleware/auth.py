from functools import wraps
from flask import request, jsonify
from xpreview.utils.security import verify_token
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


def require_auth(f):
    """Decorator to require a Bearer access token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get('Authorization')

        if not auth_header:
            return jsonify({'error': 'Authorization header missing'}), 401

        parts = auth_header.split()
        if len(parts) != 2 or parts[0] != 'Bearer':
            return jsonify({'error': 'Invalid authorization header format'}), 401

        payload = verify_token(parts[1])
        if not payload:
            return jsonify({'error': 'Invalid or expired token'}), 401

        return f(current_user=payload, *args, **kwargs)

    return decorated_function


def require_role(allowed_roles):
    """Decorator to require one of allowed_roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(current_user, *args, **kwargs):
            if current_user.get('role') not in allowed_roles:
                logger.warning(f"User {current_user.get('user_id')} denied access to {request.path}")
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(current_user, *args, **kwargs)
        return decorated_function
    return decorator


def require_admin(f):
    return require_role(['admin'])(f)


def require_reviewer(f):
    return require_role(['reviewer', 'admin'])(f)
