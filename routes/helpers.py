from datetime import datetime
from flask import current_app, jsonify, make_response, request

# ====================== RESPONSE HELPERS ======================
# Helper function for error responses
def error_response(error_code, message, details=None, status_code=400):
    """Standardized error response format"""
    response_data = {
        'error': error_code,
        'message': message,
        'timestamp': datetime.utcnow().isoformat(),
        'status_code': status_code
    }
    if details:
        response_data['details'] = details

    response = make_response(jsonify(response_data), status_code)
    response.headers["Content-Type"] = "application/json; charset=utf-8"
    return response

# Helper function for success responses
def success_response(message, data=None, status_code=200):
    """Standardized success response format"""
    response_data = {
        'success': True,
        'message': message,
        'timestamp': datetime.utcnow().isoformat(),
        'status_code': status_code
    }
    if data is not None:
        response_data['data'] = data

    response = make_response(jsonify(response_data), status_code)
    response.headers["Content-Type"] = "application/json; charset=utf-8"
    return response

def server_error(error_code, message, error):
    """Log an unexpected failure and return a 500 envelope"""
    current_app.logger.exception(f"{error_code}: {str(error)}")
    return error_response(error_code, message, {'error_details': str(error)}, 500)

# ====================== VALIDATION & UTILITY HELPERS ======================
def invalid_body_response(data):
    """Return an error response unless the JSON body is an object, else None"""
    if not isinstance(data, dict):
        return error_response('INVALID_REQUEST_BODY', 'Dữ liệu gửi lên phải là một đối tượng JSON.')
    return None

def missing_fields_response(data, required_fields):
    """Return an error response when any required field is empty, else None"""
    missing_fields = [field for field in required_fields if data.get(field) in (None, '')]
    if missing_fields:
        return error_response(
            'MISSING_REQUIRED_FIELDS',
            'Thiếu các trường bắt buộc.',
            {'missing_fields': missing_fields, 'required_fields': required_fields}
        )
    return None

def get_pagination_args():
    """Read page/per_page query args, clamped to the configured maximum"""
    page = max(request.args.get('page', 1, type=int), 1)
    per_page = request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    per_page = min(max(per_page, 1), current_app.config['MAX_PAGE_SIZE'])
    return page, per_page

def pagination_dict(pagination):
    return {
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }

def parse_datetime(value):
    """Parse an ISO-8601 date or datetime string; raises ValueError on bad input"""
    if value is None or value == '':
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00')).replace(tzinfo=None)

def get_client_ip():
    """Client IP, honouring reverse proxy headers"""
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()

    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip

    return request.remote_addr or 'Unknown'
