from flask import Blueprint, request, jsonify
from datetime import datetime
from models import db, AssessmentBatch, AssessmentBatchStudent, Student, BatchStatus
from decorators import permission_required

from .helpers import (
    error_response, success_response, server_error, missing_fields_response,
    get_pagination_args, pagination_dict, parse_datetime
)

assessment_batches_bp = Blueprint('assessment_batches', __name__)

VALID_STATUSES = [s.value for s in BatchStatus]
BULK_OPERATIONS = {
    'activate': BatchStatus.ACTIVE.value,
    'deactivate': BatchStatus.PENDING.value,
    'delete': BatchStatus.DELETED.value,
    'close': BatchStatus.COMPLETED.value,
}

def apply_batch_fields(batch, data):
    """Copy editable fields onto a batch; returns an error response or None"""
    if 'status' in data and data['status'] not in VALID_STATUSES:
        return error_response(
            'INVALID_STATUS',
            'Trạng thái đợt kiểm tra không hợp lệ.',
            {'provided_status': data['status'], 'valid_statuses': VALID_STATUSES}
        )
    if 'scheduled_at' in data:
        try:
            batch.scheduled_at = parse_datetime(data['scheduled_at'])
        except (TypeError, ValueError):
            return error_response('INVALID_DATE_FORMAT', 'Định dạng thời gian không hợp lệ (ISO 8601).')

    for field in ['code_name', 'description', 'status', 'manager_by']:
        if field in data:
            setattr(batch, field, data[field])
    return None

def get_batch_or_404(batch_id):
    batch = AssessmentBatch.query.get(batch_id)
    if not batch:
        return None, error_response('BATCH_NOT_FOUND', 'Đợt kiểm tra không tồn tại.', {'batch_id': batch_id}, 404)
    return batch, None

def get_student_ids(data):
    student_ids = data.get('student_ids') if isinstance(data, dict) else data
    if not isinstance(student_ids, list) or not student_ids:
        return None
    return [str(sid) for sid in student_ids]

# ====================== ASSESSMENT BATCH ROUTES ======================

@assessment_batches_bp.route('', methods=['GET'])
@permission_required('READ.AssessmentBatch', 'READ_SELF_MANAGED.AssessmentBatch')
def get_assessment_batches(current_user):
    """List batches; deleted batches are hidden unless filtered explicitly"""
    page, per_page = get_pagination_args()
    status = request.args.get('status', type=int)
    search_term = request.args.get('search')
    manager_by = request.args.get('manager_by')

    query = AssessmentBatch.query
    if status is not None:
        query = query.filter(AssessmentBatch.status == status)
    else:
        query = query.filter(AssessmentBatch.status != BatchStatus.DELETED.value)
    if search_term:
        like = f'%{search_term}%'
        query = query.filter(db.or_(
            AssessmentBatch.code_name.ilike(like),
            AssessmentBatch.description.ilike(like)
        ))
    if manager_by:
        query = query.filter(AssessmentBatch.manager_by == manager_by)

    batches = query.order_by(AssessmentBatch.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'assessment_batches': [b.to_dict() for b in batches.items],
        'pagination': pagination_dict(batches)
    }), 200

@assessment_batches_bp.route('/my', methods=['GET'])
@permission_required('READ_SELF.AssessmentBatch', 'READ_SELF_MANAGED.AssessmentBatch')
def get_my_assessment_batches(current_user):
    """Batches managed by the current user"""
    batches = AssessmentBatch.query.filter(
        AssessmentBatch.manager_by == current_user.user_id,
        AssessmentBatch.status != BatchStatus.DELETED.value
    ).order_by(AssessmentBatch.created_at.desc()).all()
    return jsonify({'assessment_batches': [b.to_dict() for b in batches]}), 200

@assessment_batches_bp.route('/statistics', methods=['GET'])
@permission_required('READ.AssessmentBatch')
def get_assessment_batch_statistics(current_user):
    """Batch counts by status"""
    def count(status):
        return AssessmentBatch.query.filter_by(status=status).count()

    return jsonify({
        'statistics': {
            'total_batches': AssessmentBatch.query.count(),
            'pending_batches': count(BatchStatus.PENDING.value),
            'active_batches': count(BatchStatus.ACTIVE.value),
            'running_batches': count(BatchStatus.RUNNING.value),
            'completed_batches': count(BatchStatus.COMPLETED.value),
            'registering_batches': count(BatchStatus.REGISTERING.value),
            'total_students_in_batches': AssessmentBatchStudent.query.count(),
            'last_updated': datetime.utcnow().isoformat()
        }
    }), 200

@assessment_batches_bp.route('/bulk-operation', methods=['POST'])
@permission_required('UPDATE.AssessmentBatch')
def bulk_operation(current_user):
    """Apply a status operation to several batches at once"""
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['batch_ids', 'operation'])
        if invalid:
            return invalid

        operation = str(data['operation']).lower()
        if operation not in BULK_OPERATIONS:
            return error_response(
                'INVALID_OPERATION',
                'Thao tác không hợp lệ.',
                {'provided_operation': data['operation'], 'valid_operations': list(BULK_OPERATIONS)}
            )

        batches = AssessmentBatch.query.filter(AssessmentBatch.batch_id.in_(data['batch_ids'])).all()
        now = datetime.utcnow()
        for batch in batches:
            batch.status = BULK_OPERATIONS[operation]
            batch.updated_at = now

        db.session.commit()
        return success_response('Thực hiện thao tác hàng loạt thành công.', {'affected_count': len(batches)})

    except Exception as e:
        db.session.rollback()
        return server_error('BULK_OPERATION_FAILED', 'Thao tác hàng loạt thất bại.', e)

@assessment_batches_bp.route('/<batch_id>', methods=['GET'])
@permission_required('READ.AssessmentBatch', 'READ_SELF_MANAGED.AssessmentBatch')
def get_assessment_batch(current_user, batch_id):
    batch, not_found = get_batch_or_404(batch_id)
    if not_found:
        return not_found
    return jsonify({'assessment_batch': batch.to_dict()}), 200

@assessment_batches_bp.route('/<batch_id>/detail', methods=['GET'])
@permission_required('READ.AssessmentBatch', 'READ_SELF_MANAGED.AssessmentBatch')
def get_assessment_batch_detail(current_user, batch_id):
    """Batch with its students and their graded results"""
    batch, not_found = get_batch_or_404(batch_id)
    if not_found:
        return not_found

    batch_data = batch.to_dict()
    batch_data['students'] = []
    for batch_student in batch.batch_students:
        student_data = batch_student.to_dict()
        student_data['name'] = batch_student.student.name if batch_student.student else None
        student_data['results'] = [t.to_dict() for t in batch_student.assessment_tests]
        batch_data['students'].append(student_data)

    return jsonify({'assessment_batch': batch_data}), 200

@assessment_batches_bp.route('', methods=['POST'])
@permission_required('CREATE.AssessmentBatch')
def create_assessment_batch(current_user):
    """Create an assessment batch"""
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['code_name'])
        if invalid:
            return invalid

        if data.get('batch_id') and AssessmentBatch.query.get(data['batch_id']):
            return error_response('BATCH_EXISTS', 'Đợt kiểm tra đã tồn tại.', {'batch_id': data['batch_id']}, 409)

        batch = AssessmentBatch(
            created_by=current_user.user_id,
            manager_by=current_user.user_id,
            status=BatchStatus.PENDING.value
        )
        if data.get('batch_id'):
            batch.batch_id = data['batch_id']

        invalid = apply_batch_fields(batch, data)
        if invalid:
            return invalid

        db.session.add(batch)
        db.session.commit()
        return success_response('Tạo đợt kiểm tra thành công.', {'assessment_batch': batch.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_BATCH_FAILED', 'Tạo đợt kiểm tra thất bại.', e)

@assessment_batches_bp.route('/<batch_id>', methods=['PUT'])
@permission_required('UPDATE.AssessmentBatch')
def update_assessment_batch(current_user, batch_id):
    try:
        batch, not_found = get_batch_or_404(batch_id)
        if not_found:
            return not_found

        data = request.get_json(silent=True) or {}
        invalid = apply_batch_fields(batch, data)
        if invalid:
            db.session.rollback()
            return invalid

        batch.updated_at = datetime.utcnow()
        db.session.commit()
        return success_response('Cập nhật đợt kiểm tra thành công.', {'assessment_batch': batch.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_BATCH_FAILED', 'Cập nhật đợt kiểm tra thất bại.', e)

@assessment_batches_bp.route('/<batch_id>', methods=['DELETE'])
@permission_required('DELETE.AssessmentBatch')
def delete_assessment_batch(current_user, batch_id):
    """Hard delete a batch with its assignments and results"""
    try:
        batch, not_found = get_batch_or_404(batch_id)
        if not_found:
            return not_found

        db.session.delete(batch)
        db.session.commit()
        return success_response('Xóa đợt kiểm tra thành công.', {'batch_id': batch_id})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_BATCH_FAILED', 'Xóa đợt kiểm tra thất bại.', e)

@assessment_batches_bp.route('/<batch_id>/soft-delete', methods=['PATCH'])
@permission_required('DELETE.AssessmentBatch')
def soft_delete_assessment_batch(current_user, batch_id):
    try:
        batch, not_found = get_batch_or_404(batch_id)
        if not_found:
            return not_found

        batch.status = BatchStatus.DELETED.value
        batch.updated_at = datetime.utcnow()
        db.session.commit()
        return success_response('Đã đánh dấu xóa đợt kiểm tra.', {'assessment_batch': batch.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_BATCH_FAILED', 'Xóa đợt kiểm tra thất bại.', e)

# ====================== BATCH STUDENT ROUTES ======================

@assessment_batches_bp.route('/<batch_id>/students', methods=['GET'])
@permission_required('READ.AssessmentBatch', 'READ_SELF_MANAGED.AssessmentBatch')
def get_students_in_batch(current_user, batch_id):
    batch, not_found = get_batch_or_404(batch_id)
    if not_found:
        return not_found

    students = Student.query.join(AssessmentBatchStudent) \
        .filter(AssessmentBatchStudent.batch_id == batch_id) \
        .order_by(Student.name).all()

    students_data = []
    for student in students:
        student_data = student.to_dict()
        student_data['abs_id'] = AssessmentBatchStudent.make_id(student.student_id, batch_id)
        students_data.append(student_data)

    return jsonify({'batch_id': batch_id, 'students': students_data}), 200

@assessment_batches_bp.route('/<batch_id>/students', methods=['POST'])
@permission_required('UPDATE.AssessmentBatch')
def assign_students(current_user, batch_id):
    """Assign students to a batch; already assigned students are skipped"""
    try:
        batch, not_found = get_batch_or_404(batch_id)
        if not_found:
            return not_found

        student_ids = get_student_ids(request.get_json(silent=True))
        if not student_ids:
            return error_response('MISSING_STUDENT_IDS', 'Yêu cầu cung cấp danh sách student_ids.')

        students = {sid: Student.query.get(sid) for sid in student_ids}
        unknown_ids = [sid for sid, student in students.items() if student is None]
        if unknown_ids:
            return error_response('STUDENT_NOT_FOUND', 'Học viên không tồn tại.', {'student_ids': unknown_ids}, 404)

        existing_ids = {bs.student_id for bs in batch.batch_students}
        new_ids = [sid for sid in students if sid not in existing_ids]
        for student_id in new_ids:
            db.session.add(AssessmentBatchStudent(
                abs_id=AssessmentBatchStudent.make_id(student_id, batch_id),
                student=students[student_id],
                batch=batch
            ))

        db.session.commit()
        return success_response('Thêm học viên vào đợt kiểm tra thành công.', {'assigned_count': len(new_ids)})

    except Exception as e:
        db.session.rollback()
        return server_error('ASSIGN_STUDENTS_FAILED', 'Thêm học viên thất bại.', e)

@assessment_batches_bp.route('/<batch_id>/students', methods=['DELETE'])
@permission_required('UPDATE.AssessmentBatch')
def remove_students(current_user, batch_id):
    """Remove students (and their results) from a batch"""
    try:
        batch, not_found = get_batch_or_404(batch_id)
        if not_found:
            return not_found

        student_ids = get_student_ids(request.get_json(silent=True))
        if not student_ids:
            return error_response('MISSING_STUDENT_IDS', 'Yêu cầu cung cấp danh sách student_ids.')

        assignments = AssessmentBatchStudent.query.filter(
            AssessmentBatchStudent.batch_id == batch_id,
            AssessmentBatchStudent.student_id.in_(student_ids)
        ).all()
        for assignment in assignments:
            db.session.delete(assignment)

        db.session.commit()
        return success_response('Xóa học viên khỏi đợt kiểm tra thành công.', {'removed_count': len(assignments)})

    except Exception as e:
        db.session.rollback()
        return server_error('REMOVE_STUDENTS_FAILED', 'Xóa học viên thất bại.', e)
