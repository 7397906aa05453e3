from flask import Blueprint, request, jsonify
from models import db, Department, Student
from decorators import permission_required

from .helpers import error_response, success_response, server_error, missing_fields_response

departments_bp = Blueprint('departments', __name__)

EDITABLE_FIELDS = ['battalion', 'course', 'character_code']

# ====================== DEPARTMENT ROUTES ======================

@departments_bp.route('', methods=['GET'])
@permission_required('READ.Department')
def get_all_departments(current_user):
    """Get all departments"""
    query = Department.query
    battalion = request.args.get('battalion')
    course = request.args.get('course')
    if battalion:
        query = query.filter_by(battalion=battalion)
    if course:
        query = query.filter_by(course=course)

    departments = query.order_by(Department.department_code).all()
    return jsonify({
        'departments': [dept.to_dict() for dept in departments]
    }), 200

@departments_bp.route('/<department_code>', methods=['GET'])
@permission_required('READ.Department')
def get_department(current_user, department_code):
    """Get a department with its student count"""
    department = Department.query.get(department_code)
    if not department:
        return error_response('DEPARTMENT_NOT_FOUND', 'Đơn vị không tồn tại.', {'department_code': department_code}, 404)

    department_data = department.to_dict()
    department_data['student_count'] = Student.query.filter_by(department=department_code).count()
    return jsonify({'department': department_data}), 200

@departments_bp.route('', methods=['POST'])
@permission_required('CREATE.Department')
def create_department(current_user):
    """Create a department"""
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['department_code'])
        if invalid:
            return invalid

        if Department.query.get(data['department_code']):
            return error_response(
                'DEPARTMENT_EXISTS',
                'Mã đơn vị đã tồn tại.',
                {'department_code': data['department_code']},
                409
            )

        department = Department(department_code=data['department_code'])
        for field in EDITABLE_FIELDS:
            if field in data:
                setattr(department, field, data[field])

        db.session.add(department)
        db.session.commit()
        return success_response('Tạo đơn vị thành công.', {'department': department.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_DEPARTMENT_FAILED', 'Tạo đơn vị thất bại.', e)

@departments_bp.route('/<department_code>', methods=['PUT'])
@permission_required('UPDATE.Department')
def update_department(current_user, department_code):
    """Update a department"""
    try:
        department = Department.query.get(department_code)
        if not department:
            return error_response('DEPARTMENT_NOT_FOUND', 'Đơn vị không tồn tại.', {'department_code': department_code}, 404)

        data = request.get_json(silent=True) or {}
        for field in EDITABLE_FIELDS:
            if field in data:
                setattr(department, field, data[field])

        db.session.commit()
        return success_response('Cập nhật đơn vị thành công.', {'department': department.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_DEPARTMENT_FAILED', 'Cập nhật đơn vị thất bại.', e)

@departments_bp.route('/<department_code>', methods=['DELETE'])
@permission_required('DELETE.Department')
def delete_department(current_user, department_code):
    """Delete a department that no student belongs to"""
    try:
        department = Department.query.get(department_code)
        if not department:
            return error_response('DEPARTMENT_NOT_FOUND', 'Đơn vị không tồn tại.', {'department_code': department_code}, 404)

        student_count = Student.query.filter_by(department=department_code).count()
        if student_count:
            return error_response(
                'DEPARTMENT_IN_USE',
                'Không thể xóa đơn vị đang có học viên.',
                {'department_code': department_code, 'student_count': student_count},
                409
            )

        db.session.delete(department)
        db.session.commit()
        return success_response('Xóa đơn vị thành công.', {'department_code': department_code})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_DEPARTMENT_FAILED', 'Xóa đơn vị thất bại.', e)
