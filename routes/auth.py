from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import create_access_token, create_refresh_token, jwt_required, get_jwt_identity, get_jwt
from models import db, User, LoginHistory, UserStatus, get_effective_permissions
from decorators import token_required, permission_required, blacklist_token

# Import helpers từ file helpers.py
from .helpers import error_response, server_error, get_client_ip

auth_bp = Blueprint('auth', __name__)

def build_claims(user):
    """Additional JWT claims, including effective permission codes"""
    return {
        'username': user.username,
        'full_name': user.full_name,
        'department': user.department,
        'permissions': get_effective_permissions(user),
    }

def record_login(user, ip_address, is_success):
    db.session.add(LoginHistory(
        user_id=user.user_id if user else None,
        ip_address=ip_address,
        is_success=is_success
    ))
    db.session.commit()

# ====================== AUTH ROUTES ======================

@auth_bp.route('/login', methods=['POST'])
def login():
    """User login"""
    try:
        data = request.get_json(silent=True) or {}

        if not data.get('username') or not data.get('password'):
            return error_response(
                'MISSING_CREDENTIALS',
                'Tên đăng nhập và mật khẩu là bắt buộc.',
                {'required_fields': ['username', 'password']}
            )

        ip_address = get_client_ip()
        user = User.query.filter(
            User.username == data['username'],
            User.user_status != UserStatus.DELETED.value
        ).first()

        if not user or not user.check_password(data['password']):
            current_app.logger.warning(f"Failed login for {data['username']} from {ip_address}")
            record_login(user, ip_address, False)
            return error_response(
                'INVALID_CREDENTIALS',
                'Tên đăng nhập hoặc mật khẩu không đúng.',
                {'username': data['username']},
                401
            )

        # Inactive accounts get their profile back but no token
        if user.user_status == UserStatus.INACTIVE.value:
            return jsonify({
                'message': 'Tài khoản chưa được kích hoạt.',
                'full_name': user.full_name,
                'username': user.username,
                'user_status': user.user_status
            }), 200

        record_login(user, ip_address, True)

        claims = build_claims(user)
        access_token = create_access_token(identity=user.user_id, additional_claims=claims)
        refresh_token = create_refresh_token(identity=user.user_id)

        return jsonify({
            'message': 'Login successful',
            'access_token': access_token,
            'refresh_token': refresh_token,
            'full_name': user.full_name,
            'username': user.username,
            'user_status': user.user_status,
            'permissions': claims['permissions']
        }), 200

    except Exception as e:
        db.session.rollback()
        return server_error('LOGIN_FAILED', 'Đăng nhập thất bại.', e)

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """Refresh access token"""
    try:
        current_user_id = get_jwt_identity()
        user = User.query.get(current_user_id)

        if not user:
            return error_response('USER_NOT_FOUND', 'Người dùng không tồn tại.', status_code=404)

        new_access_token = create_access_token(
            identity=current_user_id,
            additional_claims=build_claims(user)
        )

        return jsonify({
            'access_token': new_access_token
        }), 200

    except Exception as e:
        return server_error('TOKEN_REFRESH_FAILED', 'Làm mới token thất bại.', e)

@auth_bp.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    """User logout"""
    jti = get_jwt()['jti']
    expires_delta = current_app.config['JWT_ACCESS_TOKEN_EXPIRES']

    if blacklist_token(jti, int(expires_delta.total_seconds())):
        return jsonify({'message': 'Successfully logged out'}), 200
    return error_response('LOGOUT_FAILED', 'Đăng xuất thất bại.', status_code=500)

@auth_bp.route('/profile', methods=['GET'])
@token_required
def get_profile(current_user):
    """Get current user profile"""
    return jsonify({
        'user': current_user.to_dict()
    }), 200

@auth_bp.route('/permissions/current', methods=['GET'])
@token_required
def get_current_user_permissions(current_user):
    """Effective permissions of the logged-in user"""
    permissions = get_effective_permissions(current_user)
    return jsonify({
        'username': current_user.username,
        'permissions': permissions,
        'total_permissions': len(permissions)
    }), 200

@auth_bp.route('/permissions/<username>', methods=['GET'])
@permission_required('READ.USERS', 'READ.PERMISSIONS')
def get_user_permissions(current_user, username):
    """Effective permissions of any user"""
    user = User.query.filter_by(username=username).first()
    permissions = get_effective_permissions(user) if user else []

    if not permissions:
        return error_response(
            'PERMISSIONS_NOT_FOUND',
            'Không tìm thấy quyền cho người dùng này hoặc người dùng không tồn tại.',
            {'username': username},
            404
        )

    return jsonify({
        'username': username,
        'permissions': permissions,
        'total_permissions': len(permissions)
    }), 200
