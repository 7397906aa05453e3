import re
from collections import namedtuple
from types import MappingProxyType

# ====================== RESULT RANKS ======================
RANK_EXCELLENT = 'Giỏi'
RANK_GOOD = 'Khá'
RANK_PASS = 'Đạt'
RANK_FAIL = 'Chưa đạt'
RANK_UNDETERMINED = 'Không xác định'

RESULT_RANKS = (RANK_EXCELLENT, RANK_GOOD, RANK_PASS, RANK_FAIL, RANK_UNDETERMINED)

ThresholdSpec = namedtuple('ThresholdSpec', ['excellent', 'good', 'pass_', 'lower_is_better'])

_DECIMAL_PATTERN = re.compile(r'^[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?$')
_INTEGER_PATTERN = re.compile(r'\s*[+-]?[0-9]+\s*')


def parse_duration(text):
    """Convert a clock-style 'm:ss' string to seconds.

    Anything that is not exactly two integer parts degrades to 0.0.
    """
    parts = text.split(':')
    if len(parts) != 2 or not all(_INTEGER_PATTERN.fullmatch(part) for part in parts):
        return 0.0
    minutes, seconds = int(parts[0]), int(parts[1])
    return float(minutes * 60 + seconds)


def parse_numeric(text):
    """Parse a result value into (value, ok)"""
    if ':' in text:
        return parse_duration(text), True

    candidate = text.strip()
    if not _DECIMAL_PATTERN.match(candidate):
        return 0.0, False
    return float(candidate), True


def _timed(excellent, good, pass_):
    return ThresholdSpec(parse_duration(excellent), parse_duration(good), parse_duration(pass_), True)


# Sprint and swim cutoffs are in seconds, endurance runs in m:ss,
# strength events in repetitions, jumps and throws in meters.
THRESHOLDS = MappingProxyType({
    'RUN_60M': ThresholdSpec(8.2, 8.6, 9.0, True),
    'RUN_100M': ThresholdSpec(13.3, 13.6, 14.0, True),
    'RUN_400M': ThresholdSpec(62.0, 66.0, 70.0, True),
    'RUN_1500M': _timed('5:10', '5:40', '6:10'),
    'RUN_3000M': _timed('11:30', '12:10', '12:50'),
    'RUN_5000M': _timed('20:00', '21:30', '23:00'),
    'SHUTTLE_RUN_4X10M': ThresholdSpec(9.8, 10.2, 10.6, True),
    'SWIM_50M': ThresholdSpec(40.0, 45.0, 50.0, True),
    'SWIM_100M': _timed('1:30', '1:45', '2:00'),
    'PULL_UPS': ThresholdSpec(23.0, 19.0, 15.0, False),
    'PUSH_UPS': ThresholdSpec(50.0, 40.0, 30.0, False),
    'SIT_UPS': ThresholdSpec(45.0, 40.0, 35.0, False),
    'PARALLEL_BAR_DIPS': ThresholdSpec(25.0, 20.0, 15.0, False),
    'LONG_JUMP': ThresholdSpec(2.5, 2.3, 2.1, False),
    'GRENADE_THROW': ThresholdSpec(45.0, 40.0, 35.0, False),
})


def result_to_string(code, result_text):
    """Classify a raw test result into a rank label"""
    if not isinstance(code, str) or not isinstance(result_text, str) or not result_text.strip():
        return RANK_UNDETERMINED

    spec = THRESHOLDS.get(code)
    if spec is None:
        return RANK_UNDETERMINED

    value, ok = parse_numeric(result_text.strip())
    if not ok:
        return RANK_UNDETERMINED

    if spec.lower_is_better:
        if value <= spec.excellent:
            return RANK_EXCELLENT
        elif value <= spec.good:
            return RANK_GOOD
        elif value <= spec.pass_:
            return RANK_PASS
    else:
        if value >= spec.excellent:
            return RANK_EXCELLENT
        elif value >= spec.good:
            return RANK_GOOD
        elif value >= spec.pass_:
            return RANK_PASS

    return RANK_FAIL


def thresholds_to_dict():
    """Serialize the threshold table for API responses"""
    return {
        code: {
            'excellent': spec.excellent,
            'good': spec.good,
            'pass': spec.pass_,
            'lower_is_better': spec.lower_is_better
        }
        for code, spec in THRESHOLDS.items()
    }


def get_user_status_string(status):
    """Human-readable label for a user account status code"""
    return {
        -2: 'Đã xóa',
        0: 'Chưa kích hoạt',
        1: 'Đang hoạt động',
    }.get(status, RANK_UNDETERMINED)


def get_student_status_string(status):
    """Human-readable label for a student status code"""
    return {
        0: 'Do user tạo ra',
        1: 'Có dữ liệu đồng bộ với Atlas',
        10: 'offline',
        11: 'online',
    }.get(status, RANK_UNDETERMINED)


def get_batch_status_string(status):
    """Human-readable label for an assessment batch status code"""
    return {
        -2: 'Đã xóa',
        -1: 'Đang đăng ký',
        0: 'Chờ xử lý',
        1: 'Đang hoạt động',
        2: 'Đang diễn ra',
        3: 'Hoàn thành',
    }.get(status, RANK_UNDETERMINED)
