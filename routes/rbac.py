from flask import Blueprint, request, jsonify
from models import db, Role, Action, Entity, Permission, Group, GroupRole, RoleUser, User
from decorators import permission_required

from .helpers import error_response, success_response, server_error, missing_fields_response

rbac_bp = Blueprint('rbac', __name__)

def not_found(error_code, message, **details):
    return error_response(error_code, message, details, 404)

# ====================== ROLE ROUTES ======================

@rbac_bp.route('/roles', methods=['GET'])
@permission_required('READ.ROLES')
def get_roles(current_user):
    roles = Role.query.order_by(Role.role_name).all()
    return jsonify({'roles': [r.to_dict() for r in roles]}), 200

@rbac_bp.route('/roles', methods=['POST'])
@permission_required('CREATE.ROLES')
def create_role(current_user):
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['role_id', 'role_name'])
        if invalid:
            return invalid

        if Role.query.get(data['role_id']) or Role.query.filter_by(role_name=data['role_name']).first():
            return error_response('ROLE_EXISTS', 'Vai trò đã tồn tại.', {'role_id': data['role_id']}, 409)

        role = Role(role_id=data['role_id'], role_name=data['role_name'], is_active=data.get('is_active', True))
        db.session.add(role)
        db.session.commit()
        return success_response('Tạo vai trò thành công.', {'role': role.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_ROLE_FAILED', 'Tạo vai trò thất bại.', e)

@rbac_bp.route('/roles/<role_id>', methods=['PUT'])
@permission_required('UPDATE.ROLES')
def update_role(current_user, role_id):
    try:
        role = Role.query.get(role_id)
        if not role:
            return not_found('ROLE_NOT_FOUND', 'Vai trò không tồn tại.', role_id=role_id)

        data = request.get_json(silent=True) or {}
        for field in ['role_name', 'is_active']:
            if field in data:
                setattr(role, field, data[field])

        db.session.commit()
        return success_response('Cập nhật vai trò thành công.', {'role': role.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_ROLE_FAILED', 'Cập nhật vai trò thất bại.', e)

@rbac_bp.route('/roles/<role_id>', methods=['DELETE'])
@permission_required('DELETE.ROLES')
def delete_role(current_user, role_id):
    """Delete a role; its permissions are detached, not deleted"""
    try:
        role = Role.query.get(role_id)
        if not role:
            return not_found('ROLE_NOT_FOUND', 'Vai trò không tồn tại.', role_id=role_id)

        for permission in role.permissions:
            permission.role_id = None
        db.session.delete(role)
        db.session.commit()
        return success_response('Xóa vai trò thành công.', {'role_id': role_id})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_ROLE_FAILED', 'Xóa vai trò thất bại.', e)

@rbac_bp.route('/roles/<role_id>/users', methods=['POST'])
@permission_required('UPDATE.USERS', 'UPDATE.ROLES')
def assign_role_users(current_user, role_id):
    """Grant a role directly to users"""
    try:
        role = Role.query.get(role_id)
        if not role:
            return not_found('ROLE_NOT_FOUND', 'Vai trò không tồn tại.', role_id=role_id)

        user_ids = (request.get_json(silent=True) or {}).get('user_ids') or []
        users = {uid: User.query.get(uid) for uid in user_ids}
        unknown_ids = [uid for uid, user in users.items() if user is None]
        if not user_ids or unknown_ids:
            return error_response('INVALID_USER_IDS', 'Danh sách người dùng không hợp lệ.', {'unknown_user_ids': unknown_ids})

        existing = {ru.user_id for ru in role.role_users}
        new_ids = [uid for uid in users if uid not in existing]
        for user_id in new_ids:
            db.session.add(RoleUser(role=role, user=users[user_id]))

        db.session.commit()
        return success_response('Gán vai trò thành công.', {'assigned_count': len(new_ids)})

    except Exception as e:
        db.session.rollback()
        return server_error('ASSIGN_ROLE_FAILED', 'Gán vai trò thất bại.', e)

@rbac_bp.route('/roles/<role_id>/users/<user_id>', methods=['DELETE'])
@permission_required('UPDATE.USERS', 'UPDATE.ROLES')
def remove_role_user(current_user, role_id, user_id):
    try:
        role_user = RoleUser.query.get((role_id, user_id))
        if not role_user:
            return not_found('ROLE_USER_NOT_FOUND', 'Người dùng không có vai trò này.', role_id=role_id, user_id=user_id)

        db.session.delete(role_user)
        db.session.commit()
        return success_response('Thu hồi vai trò thành công.', {'role_id': role_id, 'user_id': user_id})

    except Exception as e:
        db.session.rollback()
        return server_error('REMOVE_ROLE_FAILED', 'Thu hồi vai trò thất bại.', e)

# ====================== ACTION & ENTITY ROUTES ======================

@rbac_bp.route('/actions', methods=['GET'])
@permission_required('READ.ACTIONS')
def get_actions(current_user):
    query = Action.query
    if request.args.get('active_only', type=int):
        query = query.filter_by(is_active=True)
    return jsonify({'actions': [a.to_dict() for a in query.order_by(Action.code).all()]}), 200

@rbac_bp.route('/actions/<action_id>', methods=['GET'])
@permission_required('READ.ACTIONS')
def get_action(current_user, action_id):
    action = Action.query.get(action_id)
    if not action:
        return not_found('ACTION_NOT_FOUND', 'Hành động không tồn tại.', action_id=action_id)
    return jsonify({'action': action.to_dict()}), 200

@rbac_bp.route('/actions/<action_id>', methods=['PUT'])
@permission_required('UPDATE.ACTIONS')
def update_action(current_user, action_id):
    try:
        action = Action.query.get(action_id)
        if not action:
            return not_found('ACTION_NOT_FOUND', 'Hành động không tồn tại.', action_id=action_id)

        data = request.get_json(silent=True) or {}
        for field in ['action_name', 'is_active']:
            if field in data:
                setattr(action, field, data[field])

        db.session.commit()
        return success_response('Cập nhật hành động thành công.', {'action': action.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_ACTION_FAILED', 'Cập nhật hành động thất bại.', e)

@rbac_bp.route('/entities', methods=['GET'])
@permission_required('READ.ENTITIES')
def get_entities(current_user):
    """List entities, optionally those at or above a security level"""
    query = Entity.query
    min_level = request.args.get('min_level', type=int)
    if min_level is not None:
        query = query.filter(Entity.level_security >= min_level)
    return jsonify({'entities': [e.to_dict() for e in query.order_by(Entity.entity_id).all()]}), 200

@rbac_bp.route('/entities/<entity_id>', methods=['GET'])
@permission_required('READ.ENTITIES')
def get_entity(current_user, entity_id):
    entity = Entity.query.get(entity_id)
    if not entity:
        return not_found('ENTITY_NOT_FOUND', 'Đối tượng không tồn tại.', entity_id=entity_id)
    return jsonify({'entity': entity.to_dict()}), 200

@rbac_bp.route('/entities/<entity_id>', methods=['PUT'])
@permission_required('UPDATE.ENTITIES')
def update_entity(current_user, entity_id):
    try:
        entity = Entity.query.get(entity_id)
        if not entity:
            return not_found('ENTITY_NOT_FOUND', 'Đối tượng không tồn tại.', entity_id=entity_id)

        data = request.get_json(silent=True) or {}
        for field in ['name_entity', 'level_security', 'type']:
            if field in data:
                setattr(entity, field, data[field])

        db.session.commit()
        return success_response('Cập nhật đối tượng thành công.', {'entity': entity.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_ENTITY_FAILED', 'Cập nhật đối tượng thất bại.', e)

# ====================== PERMISSION ROUTES ======================

@rbac_bp.route('/permissions', methods=['GET'])
@permission_required('READ.PERMISSIONS')
def get_permissions(current_user):
    query = Permission.query
    role_id = request.args.get('role_id')
    if role_id:
        query = query.filter_by(role_id=role_id)
    return jsonify({'permissions': [p.to_dict() for p in query.order_by(Permission.permission_id).all()]}), 200

@rbac_bp.route('/permissions', methods=['POST'])
@permission_required('CREATE.PERMISSIONS')
def create_permission(current_user):
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['permission_id', 'permission_name', 'action_id', 'entity_id'])
        if invalid:
            return invalid

        if Permission.query.get(data['permission_id']):
            return error_response('PERMISSION_EXISTS', 'Quyền đã tồn tại.', {'permission_id': data['permission_id']}, 409)
        if not Action.query.get(data['action_id']):
            return not_found('ACTION_NOT_FOUND', 'Hành động không tồn tại.', action_id=data['action_id'])
        if not Entity.query.get(data['entity_id']):
            return not_found('ENTITY_NOT_FOUND', 'Đối tượng không tồn tại.', entity_id=data['entity_id'])
        if data.get('role_id') and not Role.query.get(data['role_id']):
            return not_found('ROLE_NOT_FOUND', 'Vai trò không tồn tại.', role_id=data['role_id'])

        permission = Permission(
            permission_id=data['permission_id'],
            permission_name=data['permission_name'],
            action_id=data['action_id'],
            entity_id=data['entity_id'],
            role_id=data.get('role_id'),
            is_active=data.get('is_active', True)
        )
        db.session.add(permission)
        db.session.commit()
        return success_response('Tạo quyền thành công.', {'permission': permission.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_PERMISSION_FAILED', 'Tạo quyền thất bại.', e)

@rbac_bp.route('/permissions/<permission_id>/toggle', methods=['PATCH'])
@permission_required('UPDATE.PERMISSIONS')
def toggle_permission(current_user, permission_id):
    try:
        permission = Permission.query.get(permission_id)
        if not permission:
            return not_found('PERMISSION_NOT_FOUND', 'Quyền không tồn tại.', permission_id=permission_id)

        permission.is_active = not permission.is_active
        db.session.commit()
        return success_response('Cập nhật trạng thái quyền thành công.', {'permission': permission.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_PERMISSION_FAILED', 'Cập nhật quyền thất bại.', e)

# ====================== GROUP ROUTES ======================

@rbac_bp.route('/groups', methods=['GET'])
@permission_required('READ.GROUPS')
def get_groups(current_user):
    groups = Group.query.order_by(Group.group_name).all()
    groups_data = []
    for group in groups:
        group_data = group.to_dict()
        group_data['user_count'] = len(group.users)
        groups_data.append(group_data)
    return jsonify({'groups': groups_data}), 200

@rbac_bp.route('/groups', methods=['POST'])
@permission_required('CREATE.GROUPS')
def create_group(current_user):
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['group_id', 'group_name'])
        if invalid:
            return invalid

        if Group.query.get(data['group_id']) or Group.query.filter_by(group_name=data['group_name']).first():
            return error_response('GROUP_EXISTS', 'Nhóm đã tồn tại.', {'group_id': data['group_id']}, 409)

        group = Group(group_id=data['group_id'], group_name=data['group_name'], is_active=data.get('is_active', True))
        db.session.add(group)
        db.session.commit()
        return success_response('Tạo nhóm thành công.', {'group': group.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_GROUP_FAILED', 'Tạo nhóm thất bại.', e)

@rbac_bp.route('/groups/<group_id>/roles', methods=['PUT'])
@permission_required('UPDATE.GROUPS', 'UPDATE.ROLES')
def set_group_roles(current_user, group_id):
    """Replace the roles granted to a group"""
    try:
        group = Group.query.get(group_id)
        if not group:
            return not_found('GROUP_NOT_FOUND', 'Nhóm không tồn tại.', group_id=group_id)

        role_ids = (request.get_json(silent=True) or {}).get('role_ids')
        if not isinstance(role_ids, list):
            return error_response('MISSING_ROLE_IDS', 'Yêu cầu cung cấp danh sách role_ids.')

        roles = {rid: Role.query.get(rid) for rid in role_ids}
        unknown_ids = [rid for rid, role in roles.items() if role is None]
        if unknown_ids:
            return not_found('ROLE_NOT_FOUND', 'Vai trò không tồn tại.', role_ids=unknown_ids)

        current = {gr.role_id for gr in group.group_roles}
        for group_role in list(group.group_roles):
            if group_role.role_id not in roles:
                group.group_roles.remove(group_role)
        for role_id, role in roles.items():
            if role_id not in current:
                db.session.add(GroupRole(group=group, role=role))

        db.session.commit()
        return success_response('Cập nhật vai trò của nhóm thành công.', {'group': group.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_GROUP_FAILED', 'Cập nhật nhóm thất bại.', e)

@rbac_bp.route('/groups/<group_id>/users', methods=['POST'])
@permission_required('UPDATE.GROUPS', 'UPDATE.USERS')
def add_group_users(current_user, group_id):
    """Move users into a group"""
    try:
        group = Group.query.get(group_id)
        if not group:
            return not_found('GROUP_NOT_FOUND', 'Nhóm không tồn tại.', group_id=group_id)

        user_ids = (request.get_json(silent=True) or {}).get('user_ids') or []
        users = User.query.filter(User.user_id.in_(user_ids)).all()
        for user in users:
            user.group_id = group_id

        db.session.commit()
        return success_response('Thêm người dùng vào nhóm thành công.', {'assigned_count': len(users)})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_GROUP_FAILED', 'Cập nhật nhóm thất bại.', e)
