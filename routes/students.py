from flask import Blueprint, request, jsonify
from flask_jwt_extended import get_jwt
from datetime import datetime
from models import db, Student, Department, StudentStatus
from decorators import permission_required

from .helpers import (
    error_response, success_response, server_error, missing_fields_response,
    get_pagination_args, pagination_dict
)

students_bp = Blueprint('students', __name__)

VALID_STATUSES = [s.value for s in StudentStatus]
EDITABLE_FIELDS = ['name', 'dob', 'gender', 'phone', 'email', 'status', 'department', 'manage_by']

def validate_student_payload(data):
    """Return an error response for invalid student fields, else None"""
    if 'status' in data and data['status'] not in VALID_STATUSES:
        return error_response(
            'INVALID_STATUS',
            'Trạng thái học viên không hợp lệ.',
            {'provided_status': data['status'], 'valid_statuses': VALID_STATUSES}
        )

    if data.get('dob'):
        try:
            datetime.strptime(data['dob'], '%Y-%m-%d')
        except (TypeError, ValueError):
            return error_response('INVALID_DATE_FORMAT', 'Định dạng ngày không hợp lệ (YYYY-MM-DD).')

    if data.get('department') and not Department.query.get(data['department']):
        return error_response(
            'DEPARTMENT_NOT_FOUND',
            'Đơn vị không tồn tại.',
            {'department': data['department']},
            404
        )
    return None

# ====================== STUDENT ROUTES ======================

@students_bp.route('', methods=['GET'])
@permission_required('READ.Students', 'READ_SELF_MANAGED.Students')
def get_students(current_user):
    """List students with optional search and filters"""
    page, per_page = get_pagination_args()
    search_term = request.args.get('search')
    department = request.args.get('department')
    status = request.args.get('status', type=int)

    query = Student.query

    # Without the global read permission only self-managed students are visible
    if 'READ.Students' not in get_jwt().get('permissions', []):
        query = query.filter(Student.manage_by == current_user.user_id)

    if search_term:
        like = f'%{search_term}%'
        query = query.filter(db.or_(
            Student.student_id.ilike(like),
            Student.name.ilike(like),
            Student.email.ilike(like),
            Student.phone.ilike(like)
        ))
    if department:
        query = query.filter(Student.department == department)
    if status is not None:
        query = query.filter(Student.status == status)

    students = query.order_by(Student.name).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'students': [s.to_dict() for s in students.items],
        'pagination': pagination_dict(students)
    }), 200

@students_bp.route('/<student_id>', methods=['GET'])
@permission_required('READ.Students', 'READ_SELF_MANAGED.Students')
def get_student(current_user, student_id):
    """Get a single student"""
    student = Student.query.get(student_id)
    if not student:
        return error_response('STUDENT_NOT_FOUND', 'Học viên không tồn tại.', {'student_id': student_id}, 404)

    if 'READ.Students' not in get_jwt().get('permissions', []) and student.manage_by != current_user.user_id:
        return error_response('STUDENT_NOT_MANAGED', 'Bạn không quản lý học viên này.', {'student_id': student_id}, 403)

    return jsonify({'student': student.to_dict()}), 200

@students_bp.route('', methods=['POST'])
@permission_required('CREATE.Students')
def create_student(current_user):
    """Create a student"""
    try:
        data = request.get_json(silent=True) or {}

        invalid = missing_fields_response(data, ['student_id', 'name'])
        if invalid:
            return invalid

        if Student.query.get(data['student_id']):
            return error_response(
                'STUDENT_EXISTS',
                'Mã học viên đã tồn tại.',
                {'student_id': data['student_id']},
                409
            )

        invalid = validate_student_payload(data)
        if invalid:
            return invalid

        student = Student(
            student_id=data['student_id'],
            created_by=current_user.user_id,
            manage_by=data.get('manage_by') or current_user.user_id
        )
        for field in EDITABLE_FIELDS:
            if field in data and field != 'manage_by':
                setattr(student, field, data[field])

        db.session.add(student)
        db.session.commit()

        return success_response('Tạo học viên thành công.', {'student': student.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_STUDENT_FAILED', 'Tạo học viên thất bại.', e)

@students_bp.route('/<student_id>', methods=['PUT'])
@permission_required('UPDATE.Students')
def update_student(current_user, student_id):
    """Update a student"""
    try:
        student = Student.query.get(student_id)
        if not student:
            return error_response('STUDENT_NOT_FOUND', 'Học viên không tồn tại.', {'student_id': student_id}, 404)

        data = request.get_json(silent=True) or {}
        invalid = validate_student_payload(data)
        if invalid:
            return invalid

        for field in EDITABLE_FIELDS:
            if field in data:
                setattr(student, field, data[field])
        student.update_at = datetime.utcnow()

        db.session.commit()
        return success_response('Cập nhật học viên thành công.', {'student': student.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_STUDENT_FAILED', 'Cập nhật học viên thất bại.', e)

@students_bp.route('/<student_id>', methods=['DELETE'])
@permission_required('DELETE.Students')
def delete_student(current_user, student_id):
    """Delete a student and their batch assignments"""
    try:
        student = Student.query.get(student_id)
        if not student:
            return error_response('STUDENT_NOT_FOUND', 'Học viên không tồn tại.', {'student_id': student_id}, 404)

        db.session.delete(student)
        db.session.commit()
        return success_response('Xóa học viên thành công.', {'student_id': student_id})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_STUDENT_FAILED', 'Xóa học viên thất bại.', e)
