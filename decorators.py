from functools import wraps
from flask import jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity, get_jwt
from datetime import datetime
import redis
from models import User, UserStatus

# Redis client for token blacklist
redis_client = None

def init_redis(app):
    global redis_client
    redis_client = redis.from_url(app.config['REDIS_URL'])

def token_required(f):
    """Decorator to require valid JWT token"""
    @wraps(f)
    @jwt_required()
    def decorated(*args, **kwargs):
        # Check if token is blacklisted
        jti = get_jwt()['jti']
        if is_token_blacklisted(jti):
            return jsonify({
                'error': 'TOKEN_REVOKED',
                'message': 'Token đã bị thu hồi. Vui lòng đăng nhập lại.',
                'details': {
                    'reason': 'Token has been blacklisted (logged out)',
                    'action_required': 'Please login again to get a new token'
                },
                'timestamp': datetime.utcnow().isoformat(),
                'status_code': 401
            }), 401

        # Get current user
        current_user_id = get_jwt_identity()
        current_user = User.query.get(current_user_id)

        if not current_user:
            return jsonify({
                'error': 'USER_NOT_FOUND',
                'message': 'Người dùng không tồn tại trong hệ thống.',
                'details': {
                    'user_id': current_user_id,
                    'reason': 'User account may have been deleted',
                    'action_required': 'Please contact administrator'
                },
                'timestamp': datetime.utcnow().isoformat(),
                'status_code': 404
            }), 404

        if current_user.user_status != UserStatus.ACTIVE.value:
            return jsonify({
                'error': 'USER_INACTIVE',
                'message': 'Tài khoản đã bị khóa.',
                'details': {
                    'user_id': current_user_id,
                    'action_required': 'Please contact administrator'
                },
                'timestamp': datetime.utcnow().isoformat(),
                'status_code': 403
            }), 403

        return f(current_user, *args, **kwargs)

    return decorated

def permission_required(*allowed_permissions):
    """Decorator to require one of the given ACTION.ENTITY permission codes"""
    def decorator(f):
        @wraps(f)
        @token_required
        def decorated(current_user, *args, **kwargs):
            granted = set(get_jwt().get('permissions', []))
            if granted.isdisjoint(allowed_permissions):
                return jsonify({
                    'error': 'INSUFFICIENT_PERMISSIONS',
                    'message': f'Bạn không có quyền truy cập endpoint này. Cần quyền: {", ".join(allowed_permissions)}',
                    'details': {
                        'current_user': {
                            'username': current_user.username,
                            'user_id': current_user.user_id,
                            'department': current_user.department,
                        },
                        'required_permissions': list(allowed_permissions),
                        'endpoint': f.__name__
                    },
                    'timestamp': datetime.utcnow().isoformat(),
                    'status_code': 403
                }), 403

            return f(current_user, *args, **kwargs)
        return decorated
    return decorator

def blacklist_token(jti, expires_delta):
    """Add token to blacklist"""
    try:
        redis_client.setex(f"blacklist:{jti}", expires_delta, "true")
        return True
    except redis.RedisError as e:
        current_app.logger.error(f"Failed to blacklist token: {str(e)}")
        return False

def is_token_blacklisted(jti):
    """Check if token is blacklisted"""
    try:
        return redis_client.get(f"blacklist:{jti}") is not None
    except redis.RedisError as e:
        current_app.logger.warning(f"Token blacklist lookup failed: {str(e)}")
        return False
