from flask import Blueprint, request, jsonify
from datetime import datetime
from models import db, AssessmentTest, AssessmentBatchStudent, TestType
from decorators import permission_required
from helper_function import result_to_string, RESULT_RANKS

from .helpers import (
    error_response, success_response, server_error, missing_fields_response,
    invalid_body_response, get_pagination_args, pagination_dict, parse_datetime
)

assessment_tests_bp = Blueprint('assessment_tests', __name__)

def get_test_or_404(testtype_id, abs_id):
    assessment_test = AssessmentTest.query.get((testtype_id, abs_id))
    if not assessment_test:
        return None, error_response(
            'ASSESSMENT_TEST_NOT_FOUND',
            'Kết quả kiểm tra không tồn tại.',
            {'testtype_id': testtype_id, 'abs_id': abs_id},
            404
        )
    return assessment_test, None

def apply_test_fields(assessment_test, data):
    """Copy editable fields onto a result; returns an error response or None"""
    if 'recorded_at' in data:
        try:
            assessment_test.recorded_at = parse_datetime(data['recorded_at']) or datetime.utcnow()
        except (TypeError, ValueError):
            return error_response('INVALID_DATE_FORMAT', 'Định dạng thời gian không hợp lệ (ISO 8601).')

    if 'result_value' in data and data['result_value'] is not None:
        data['result_value'] = str(data['result_value'])

    for field in ['code', 'unit', 'result_value', 'recorded_by']:
        if field in data:
            setattr(assessment_test, field, data[field])
    return None

# ====================== ASSESSMENT TEST ROUTES ======================

@assessment_tests_bp.route('', methods=['GET'])
@permission_required('READ.AssessmentTests')
def get_assessment_tests(current_user):
    """List results with optional filters"""
    page, per_page = get_pagination_args()
    testtype_id = request.args.get('testtype_id')
    batch_id = request.args.get('batch_id')
    student_id = request.args.get('student_id')
    recorded_by = request.args.get('recorded_by')
    result = request.args.get('result')

    query = AssessmentTest.query.join(AssessmentBatchStudent)
    if testtype_id:
        query = query.filter(AssessmentTest.testtype_id == testtype_id)
    if batch_id:
        query = query.filter(AssessmentBatchStudent.batch_id == batch_id)
    if student_id:
        query = query.filter(AssessmentBatchStudent.student_id == student_id)
    if recorded_by:
        query = query.filter(AssessmentTest.recorded_by == recorded_by)

    query = query.order_by(AssessmentTest.recorded_at.desc())

    # Rank labels are computed, so filtering on them happens after the query
    if result:
        if result not in RESULT_RANKS:
            return error_response('INVALID_RESULT', 'Kết quả xếp loại không hợp lệ.', {'valid_results': list(RESULT_RANKS)})
        tests = [t for t in query.all() if t.result == result]
        return jsonify({
            'assessment_tests': [t.to_dict() for t in tests],
            'total': len(tests)
        }), 200

    tests = query.paginate(page=page, per_page=per_page, error_out=False)
    return jsonify({
        'assessment_tests': [t.to_dict() for t in tests.items],
        'pagination': pagination_dict(tests)
    }), 200

@assessment_tests_bp.route('/grade', methods=['POST'])
@permission_required('READ.AssessmentTests', 'CREATE.AssessmentTests')
def grade_result(current_user):
    """Preview the rank a raw result would receive"""
    data = request.get_json(silent=True) or {}
    invalid = invalid_body_response(data)
    if invalid:
        return invalid

    code = data.get('code')
    result_value = data.get('result_value')
    if result_value is not None:
        result_value = str(result_value)

    return jsonify({
        'code': code,
        'result_value': result_value,
        'result': result_to_string(code, result_value)
    }), 200

@assessment_tests_bp.route('/abs/<abs_id>', methods=['GET'])
@permission_required('READ.AssessmentTests')
def get_assessment_tests_by_abs(current_user, abs_id):
    """All results of one student within one batch"""
    tests = AssessmentTest.query.filter_by(abs_id=abs_id).all()
    return jsonify({'assessment_tests': [t.to_dict() for t in tests]}), 200

@assessment_tests_bp.route('/batch/<batch_id>', methods=['GET'])
@permission_required('READ.AssessmentTests')
def get_assessment_tests_by_batch(current_user, batch_id):
    page, per_page = get_pagination_args()
    tests = AssessmentTest.query.join(AssessmentBatchStudent) \
        .filter(AssessmentBatchStudent.batch_id == batch_id) \
        .order_by(AssessmentTest.recorded_at.desc()) \
        .paginate(page=page, per_page=per_page, error_out=False)
    return jsonify({
        'assessment_tests': [t.to_dict() for t in tests.items],
        'pagination': pagination_dict(tests)
    }), 200

@assessment_tests_bp.route('/<testtype_id>/<abs_id>', methods=['GET'])
@permission_required('READ.AssessmentTests')
def get_assessment_test(current_user, testtype_id, abs_id):
    assessment_test, not_found = get_test_or_404(testtype_id, abs_id)
    if not_found:
        return not_found
    return jsonify({'assessment_test': assessment_test.to_dict()}), 200

@assessment_tests_bp.route('', methods=['POST'])
@permission_required('CREATE.AssessmentTests')
def create_assessment_test(current_user):
    """Record a test result for a student in a batch"""
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['testtype_id', 'abs_id', 'unit', 'result_value'])
        if invalid:
            return invalid

        test_type = TestType.query.get(data['testtype_id'])
        if not test_type:
            return error_response('TEST_TYPE_NOT_FOUND', 'Loại bài kiểm tra không tồn tại.', {'testtype_id': data['testtype_id']}, 404)

        batch_student = AssessmentBatchStudent.query.get(data['abs_id'])
        if not batch_student:
            return error_response('ABS_NOT_FOUND', 'Học viên không thuộc đợt kiểm tra.', {'abs_id': data['abs_id']}, 404)

        if AssessmentTest.query.get((data['testtype_id'], data['abs_id'])):
            return error_response(
                'ASSESSMENT_TEST_EXISTS',
                'Kết quả kiểm tra đã tồn tại.',
                {'testtype_id': data['testtype_id'], 'abs_id': data['abs_id']},
                409
            )

        assessment_test = AssessmentTest(
            testtype_id=data['testtype_id'],
            abs_id=data['abs_id'],
            code=test_type.code,
            recorded_by=current_user.user_id,
            recorded_at=datetime.utcnow()
        )
        invalid = apply_test_fields(assessment_test, data)
        if invalid:
            return invalid

        assessment_test.test_type = test_type
        assessment_test.abs = batch_student
        db.session.add(assessment_test)
        db.session.commit()
        return success_response('Ghi nhận kết quả kiểm tra thành công.', {'assessment_test': assessment_test.to_dict()}, 201)

    except Exception as e:
        db.session.rollback()
        return server_error('CREATE_ASSESSMENT_TEST_FAILED', 'Ghi nhận kết quả thất bại.', e)

@assessment_tests_bp.route('/<testtype_id>/<abs_id>', methods=['PUT'])
@permission_required('UPDATE.AssessmentTests')
def update_assessment_test(current_user, testtype_id, abs_id):
    try:
        assessment_test, not_found = get_test_or_404(testtype_id, abs_id)
        if not_found:
            return not_found

        invalid = apply_test_fields(assessment_test, request.get_json(silent=True) or {})
        if invalid:
            db.session.rollback()
            return invalid

        db.session.commit()
        return success_response('Cập nhật kết quả kiểm tra thành công.', {'assessment_test': assessment_test.to_dict()})

    except Exception as e:
        db.session.rollback()
        return server_error('UPDATE_ASSESSMENT_TEST_FAILED', 'Cập nhật kết quả thất bại.', e)

@assessment_tests_bp.route('/<testtype_id>/<abs_id>', methods=['DELETE'])
@permission_required('DELETE.AssessmentTests')
def delete_assessment_test(current_user, testtype_id, abs_id):
    try:
        assessment_test, not_found = get_test_or_404(testtype_id, abs_id)
        if not_found:
            return not_found

        db.session.delete(assessment_test)
        db.session.commit()
        return success_response('Xóa kết quả kiểm tra thành công.', {'testtype_id': testtype_id, 'abs_id': abs_id})

    except Exception as e:
        db.session.rollback()
        return server_error('DELETE_ASSESSMENT_TEST_FAILED', 'Xóa kết quả thất bại.', e)

@assessment_tests_bp.route('/bulk', methods=['POST'])
@permission_required('DELETE.AssessmentTests', 'UPDATE.AssessmentTests')
def bulk_operation(current_user):
    """Bulk delete results or reassign their recorder

    Each entry of ``tests`` is ``{"testtype_id": ..., "abs_id": ...}``.
    """
    try:
        data = request.get_json(silent=True) or {}
        invalid = missing_fields_response(data, ['tests', 'operation'])
        if invalid:
            return invalid

        operation = str(data['operation']).lower()
        if operation not in ('delete', 'update_recorder'):
            return error_response(
                'INVALID_OPERATION',
                'Thao tác không hợp lệ.',
                {'provided_operation': data['operation'], 'valid_operations': ['delete', 'update_recorder']}
            )
        if operation == 'update_recorder' and not data.get('new_recorded_by'):
            return error_response('MISSING_REQUIRED_FIELDS', 'Thiếu người ghi nhận mới.', {'missing_fields': ['new_recorded_by']})

        affected = 0
        for key in data['tests']:
            assessment_test = AssessmentTest.query.get((key.get('testtype_id'), key.get('abs_id')))
            if not assessment_test:
                continue
            if operation == 'delete':
                db.session.delete(assessment_test)
            else:
                assessment_test.recorded_by = data['new_recorded_by']
            affected += 1

        db.session.commit()
        return success_response('Thực hiện thao tác hàng loạt thành công.', {'affected_count': affected})

    except Exception as e:
        db.session.rollback()
        return server_error('BULK_OPERATION_FAILED', 'Thao tác hàng loạt thất bại.', e)
