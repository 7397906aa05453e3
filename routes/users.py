from flask import Blueprint, request, jsonify, current_app
from datetime import datetime
from models import db, User, Group, Student, AssessmentBatch, AssessmentTest, UserStatus
from decorators import token_required, permission_required

from .helpers import (
    error_response, success_response, server_error, missing_fields_response,
    invalid_body_response, get_pagination_args, pagination_dict
)

users_bp = Blueprint('users', __name__)

MIN_PASSWORD_LENGTH = 6
EDITABLE_STATUSES = [UserStatus.INACTIVE.value, UserStatus.ACTIVE.value]
EDITABLE_FIELDS = ['full_name', 'phone_number', 'department', 'user_status', 'level_security', 'manage_by', 'group_id']

def live_users():
    """Users that have not been soft-deleted"""
    return User.query.filter(User.user_status != UserStatus.DELETED.value)

def get_user_or_404(user_id):
    user = live_users().filter(User.user_id == user_id).first()
    if not user:
        return None, error_response('USER_NOT_FOUND', 'Người dùng không tồn tại.', {'user_id': user_id}, 404)
    return user, None

def validate_password(new_password, confirm_password=None):
    """Return an error response for an unacceptable new password, else None"""
    if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
        return error_response(
            'PASSWORD_TOO_SHORT',
            f'Mật khẩu phải có ít nhất {MIN_PASSWORD_LENGTH} ký tự.',
            {'min_length': MIN_PASSWORD_LENGTH}
        )
    if confirm_password is not None and confirm_password != new_password:
        return error_response('PASSWORD_MISMATCH', 'Mật khẩu xác nhận không khớp.')
    return None

def validate_user_payload(data, user=None):
    """Return an error response for invalid account fields, else None"""
    if 'user_status' in data and data['user_status'] not in EDITABLE_STATUSES:
        return error_response(
            'INVALID_STATUS',
            'Trạng thái người dùng không hợp lệ.',
            {'provided_status': data['user_status'], 'valid_statuses': EDITABLE_STATUSES}
        )

    if 'level_security' in data:
        level = data['level_security']
        if not isinstance(level, int) or isinstance(level, bool) or level < 0:
            return error_response('INVALID_SECURITY_LEVEL', 'Cấp độ bảo mật không hợp lệ.', {'level_security': level})

    manage_by = data.get('manage_by')
    if manage_by:
        if user is not None and manage_by == user.user_id:
            return error_response('INVALID_MANAGER', 'Người dùng không thể tự quản lý chính mình.')
        if not live_users().filter(User.user_id == manage_by).first():
            return error_response('MANAGER_NOT_FOUND', 'Người quản lý không tồn tại.', {'manage_by': manage_by}, 404)

    if data.get('group_id') and not Group.query.get(data['group_id']):
        return error_response('GROUP_NOT_FOUND', 'Nhóm không tồn tại.', {'group_id': data['group_id']}, 404)
    return None

# ====================== USER ROUTES ======================

@users_bp.route('', methods=['GET'])
@permission_required('READ.USERS')
def get_users(current_user):
    """List accounts with optional search, status and group filters"""
    page, per_page = get_pagination_args()
    search_term = request.args.get('search')
    status = request.args.get('status', type=int)
    group_id = request.args.get('group_id')

    # Soft-deleted accounts only show up when asked for explicitly
    if status is not None:
        query = User.query.filter(User.user_status == status)
    else:
        query = live_users()

    if search_term:
        like = f'%{search_term}%'
        query = query.filter(db.or_(
            User.username.ilike(like),
            User.full_name.ilike(like),
            User.phone_number.ilike(like),
            User.department.ilike(like)
        ))
    if group_id:
        query = query.filter(User.group_id == group_id)

    users = query.order_by(User.username).paginate(page=page, per_page=per_page, error_out=False)
    return jsonify({
        'users': [u.to_dict() for u in users.items],
        'pagination': pagination_dict(users)
    }), 200

@users_bp.route('/me', methods=['GET'])
@token_required
def get_current_user(current_user):
    return jsonify({'user': current_user.to_dict()}), 200

@users_bp.route('/check-username/<username>', methods=['GET'])
@permission_required('READ.USERS')
def check_username(current_user, username):
    exists = live_users().filter(User.username == username).first() is not None
    return jsonify({'username': username, 'exists': exists}), 200

@users_bp.route('/username/<username>', methods=['GET'])
@permission_required('READ.USERS')
def get_user_by_username(current_user, username):
    user = live_users().filter(User.username == username).first()
    if not user:
        return error_response('USER_NOT_FOUND', 'Người dùng không tồn tại.', {'username': username}, 404)
    return jsonify({'user': user.to_dict()}), 200

@users_bp.route('/manager/<manager_id>', methods=['GET'])
@permission_required('READ.USERS')
def get_users_by_manager(current_user, manager_id):
    """Accounts managed by the given user"""
    users = live_users().filter(User.manage_by == manager_id).order_by(User.username).all()
    return jsonify({
        'manager_id': manager_id,
        'users': [u.to_dict() for u in users],
        'total': len(users)
    }), 200

@users_bp.route('/security-level/<int:level>', methods=['GET'])
@permission_required('READ.USERS')
def get_users_by_security_level(current_user, level):
    """Accounts whose security level does not exceed the given one"""
    users = live_users().filter(User.level_security <= level).order_by(User.username).all()
    return jsonify({'level': level, 'users': [u.to_dict() for u in users], 'total': len(users)}), 200

@users_bp.route('/<user_id>', methods=['GET'])
@permission_required('READ.USERS')
def get_user(current_user, user_id):
    user, not_found = get_user_or_404(user_id)
    if not_found:
        return not_found
    return jsonify({'user': user.to_dict()}), 200

@users_bp.route('', methods=['POST'])
@permission_required('CREATE.USERS')
def create_user(current_user):
    """Create an account, managed by its creator unless manage_by is given"""
    try:
        data = request.get_json(silent=True) or {}
        invalid = invalid_body_response(data)
        if invalid:
            return invalid

        invalid = missing_fields_response(data, ['username', 'password'])
        if invalid:
            return invalid

        if User.query.filter_by(username=data['username']).first():
            return error_response('USERNAME_EXISTS', 'Tên đăng nhập đã tồn tại.', {'username': data['username']}, 409)

        invalid = validate_password(data['password'], data.get('confirm_password'))
        if invalid:
            return invalid
        invalid = validate_user_payload(data)
        if invalid:
            return invalid

        user = User(username=data['username'], manage_by=data.get('manage_by') or current_user.user_id)
        user.set_password(data['password'])
        for field in EDITABLE_FIELDS:
            if field in data and field != 'manage_by':
                setattr(user, field, data[field])

        db.session.add(user)
        db.session.commit()
        return success_response('Tạo người dùng thành công.', {'user': user.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_USER_FAILED', 'Tạo người dùng thất bại.', e)

@users_bp.route('/<user_id>', methods=['PUT'])
@permission_required('UPDATE.USERS')
def update_user(current_user, user_id):
    try:
        user, not_found = get_user_or_404(user_id)
        if not_found:
            return not_found

        data = request.get_json(silent=True) or {}
        invalid = invalid_body_response(data)
        if invalid:
            return invalid

        invalid = validate_user_payload(data, user)
        if invalid:
            return invalid

        for field in EDITABLE_FIELDS:
            if field in data:
                setattr(user, field, data[field])
        user.update_at = datetime.utcnow()

        db.session.commit()
        return success_response('Cập nhật người dùng thành công.', {'user': user.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_USER_FAILED', 'Cập nhật người dùng thất bại.', e)

@users_bp.route('/<user_id>', methods=['DELETE'])
@permission_required('DELETE.USERS')
def delete_user(current_user, user_id):
    """Soft delete: the account is kept with status -2 and can no longer log in"""
    try:
        user, not_found = get_user_or_404(user_id)
        if not_found:
            return not_found
        if user.user_id == current_user.user_id:
            return error_response('CANNOT_DELETE_SELF', 'Không thể xóa tài khoản đang đăng nhập.')

        user.user_status = UserStatus.DELETED.value
        user.update_at = datetime.utcnow()
        db.session.commit()
        return success_response('Xóa người dùng thành công.', {'user_id': user_id})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_USER_FAILED', 'Xóa người dùng thất bại.', e)

@users_bp.route('/<user_id>/permanent', methods=['DELETE'])
@permission_required('DELETE.USERS')
def hard_delete_user(current_user, user_id):
    """Remove an account for good, refused while other records still point at it"""
    try:
        user = User.query.get(user_id)
        if not user:
            return error_response('USER_NOT_FOUND', 'Người dùng không tồn tại.', {'user_id': user_id}, 404)
        if user.user_id == current_user.user_id:
            return error_response('CANNOT_DELETE_SELF', 'Không thể xóa tài khoản đang đăng nhập.')

        references = {
            'managed_users': User.query.filter_by(manage_by=user_id).count(),
            'students': Student.query.filter(db.or_(Student.created_by == user_id, Student.manage_by == user_id)).count(),
            'assessment_batches': AssessmentBatch.query.filter(
                db.or_(AssessmentBatch.created_by == user_id, AssessmentBatch.manager_by == user_id)
            ).count(),
            'assessment_tests': AssessmentTest.query.filter_by(recorded_by=user_id).count(),
        }
        if any(references.values()):
            return error_response(
                'USER_IN_USE',
                'Không thể xóa vĩnh viễn người dùng còn dữ liệu liên quan.',
                {'user_id': user_id, 'references': references},
                409
            )

        db.session.delete(user)
        db.session.commit()
        return success_response('Xóa vĩnh viễn người dùng thành công.', {'user_id': user_id})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_USER_FAILED', 'Xóa người dùng thất bại.', e)

@users_bp.route('/change-password', methods=['POST'])
@permission_required('UPDATE.USERS')
def change_password(current_user):
    """Administrative password reset"""
    try:
        data = request.get_json(silent=True) or {}
        invalid = invalid_body_response(data)
        if invalid:
            return invalid

        invalid = missing_fields_response(data, ['user_id', 'new_password'])
        if invalid:
            return invalid

        user, not_found = get_user_or_404(data['user_id'])
        if not_found:
            return not_found

        invalid = validate_password(data['new_password'], data.get('confirm_password'))
        if invalid:
            return invalid

        user.set_password(data['new_password'])
        user.update_at = datetime.utcnow()
        db.session.commit()
        current_app.logger.info(f"Password of {user.username} reset by {current_user.username}")
        return success_response('Đổi mật khẩu thành công.', {'user_id': user.user_id})

    except Exception as e:
        db.session.rollback()
        return server_error('CHANGE_PASSWORD_FAILED', 'Đổi mật khẩu thất bại.', e)

@users_bp.route('/first-change-password', methods=['POST'])
def first_change_password():
    """Set a new password on an inactive account and activate it"""
    try:
        data = request.get_json(silent=True) or {}
        invalid = invalid_body_response(data)
        if invalid:
            return invalid

        invalid = missing_fields_response(data, ['username', 'current_password', 'new_password', 'confirm_password'])
        if invalid:
            return invalid

        user = live_users().filter(User.username == data['username']).first()
        if not user or not isinstance(data['current_password'], str) or not user.check_password(data['current_password']):
            current_app.logger.warning(f"Failed first password change for {data['username']}")
            return error_response('INVALID_CREDENTIALS', 'Tên đăng nhập hoặc mật khẩu không đúng.', {'username': data['username']}, 401)

        if user.user_status != UserStatus.INACTIVE.value:
            return error_response('ACCOUNT_ALREADY_ACTIVE', 'Tài khoản đã được kích hoạt.', {'username': user.username}, 409)

        invalid = validate_password(data['new_password'], data['confirm_password'])
        if invalid:
            return invalid
        if data['new_password'] == data['current_password']:
            return error_response('PASSWORD_UNCHANGED', 'Mật khẩu mới phải khác mật khẩu hiện tại.')

        user.set_password(data['new_password'])
        user.user_status = UserStatus.ACTIVE.value
        user.update_at = datetime.utcnow()
        db.session.commit()
        return success_response('Đổi mật khẩu và kích hoạt tài khoản thành công.', {'username': user.username})

    except Exception as e:
        db.session.rollback()
        return server_error('CHANGE_PASSWORD_FAILED', 'Đổi mật khẩu thất bại.', e)
