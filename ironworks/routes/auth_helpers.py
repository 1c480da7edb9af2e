from functools import wraps
from flask import request, jsonify, current_app
from ..models import Customer


def _read_token():
    auth_header = request.headers.get('Authorization')
    if auth_header:
        parts = auth_header.split(" ")
        if len(parts) != 2 or parts[0].lower() != 'bearer':
            return None, 'Invalid token format'
        return parts[1], None
    # older clients send the raw token in a `token` header
    return request.headers.get('token'), None


def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        # Handle OPTIONS requests
        if request.method == 'OPTIONS':
            return f(*args, **kwargs)

        token, error = _read_token()
        if error:
            return jsonify({'success': False, 'message': error}), 401

        if not token:
            return jsonify({'success': False, 'message': 'Not authorized, login again'}), 401

        try:
            current_user = Customer.verify_jwt_token(token, current_app.config['SECRET_KEY'])
        except Exception as e:
            current_app.logger.error(f"Token verification failed: {e}")
            return jsonify({'success': False, 'message': 'Token verification failed', 'error': str(e)}), 401

        if not current_user:
            return jsonify({'success': False, 'message': 'Token is invalid or expired'}), 401

        # Attach the customer to the request object
        request.current_user = current_user
        return f(*args, **kwargs)

    return decorated
