import pytest

from helper_function import (
    THRESHOLDS, ThresholdSpec, parse_duration, parse_numeric, result_to_string,
    thresholds_to_dict, get_student_status_string, get_batch_status_string,
    RANK_EXCELLENT, RANK_GOOD, RANK_PASS, RANK_FAIL, RANK_UNDETERMINED,
)


def test_parse_duration():
    assert parse_duration('1:05') == 65.0
    assert parse_duration('1:15') == 75.0
    assert parse_duration('12:30') == 750.0
    assert parse_duration('0:9') == 9.0


@pytest.mark.parametrize('text', ['bogus', '', '1:2:3', 'a:10', '1:', ':30', '1.5:10'])
def test_parse_duration_degrades_to_zero(text):
    assert parse_duration(text) == 0.0


@pytest.mark.parametrize('text', ['1_0:30', '١١:٣٠', '10:3_0', '1 0:30'])
def test_parse_duration_requires_ascii_integers(text):
    assert parse_duration(text) == 0.0


def test_parse_duration_allows_padding_and_sign():
    assert parse_duration(' 1 : 05 ') == 65.0
    assert parse_duration('+1:05') == 65.0


@pytest.mark.parametrize('text, expected', [
    ('13.3', (13.3, True)),
    ('  23 ', (23.0, True)),
    ('-1.5', (-1.5, True)),
    ('+2', (2.0, True)),
    ('.5', (0.5, True)),
    ('1e2', (100.0, True)),
    ('11:30', (690.0, True)),
    ('xx:yy', (0.0, True)),
    ('abc', (0.0, False)),
    ('13,3', (0.0, False)),
    ('nan', (0.0, False)),
    ('inf', (0.0, False)),
    ('1_000', (0.0, False)),
])
def test_parse_numeric(text, expected):
    assert parse_numeric(text) == expected


def test_threshold_table_is_read_only():
    assert len(THRESHOLDS) == 15
    with pytest.raises(TypeError):
        THRESHOLDS['RUN_100M'] = ThresholdSpec(1.0, 2.0, 3.0, True)


@pytest.mark.parametrize('code, spec', list(THRESHOLDS.items()))
def test_threshold_ordering(code, spec):
    if spec.lower_is_better:
        assert spec.excellent <= spec.good <= spec.pass_
    else:
        assert spec.excellent >= spec.good >= spec.pass_


def test_reference_cutoffs():
    assert THRESHOLDS['RUN_100M'] == ThresholdSpec(13.3, 13.6, 14.0, True)
    assert THRESHOLDS['PULL_UPS'] == ThresholdSpec(23.0, 19.0, 15.0, False)
    assert THRESHOLDS['RUN_3000M'] == ThresholdSpec(690.0, 730.0, 770.0, True)


@pytest.mark.parametrize('code, spec', list(THRESHOLDS.items()))
def test_cutoffs_are_inclusive(code, spec):
    assert result_to_string(code, repr(spec.excellent)) == RANK_EXCELLENT
    assert result_to_string(code, repr(spec.good)) in (RANK_EXCELLENT, RANK_GOOD)
    assert result_to_string(code, repr(spec.pass_)) in (RANK_EXCELLENT, RANK_GOOD, RANK_PASS)


@pytest.mark.parametrize('code', list(THRESHOLDS))
@pytest.mark.parametrize('result_text', ['', None, '   '])
def test_missing_result_is_undetermined(code, result_text):
    assert result_to_string(code, result_text) == RANK_UNDETERMINED


def test_unknown_code_is_undetermined():
    assert result_to_string('UNKNOWN_CODE_XYZ', '10') == RANK_UNDETERMINED
    assert result_to_string(None, '10') == RANK_UNDETERMINED


@pytest.mark.parametrize('code', [['RUN_100M'], {'code': 'RUN_100M'}, 100, b'RUN_100M'])
def test_non_string_code_is_undetermined(code):
    assert result_to_string(code, '13') == RANK_UNDETERMINED


def test_non_string_result_is_undetermined():
    assert result_to_string('PULL_UPS', 23) == RANK_UNDETERMINED
    assert result_to_string('PULL_UPS', ['23']) == RANK_UNDETERMINED


@pytest.mark.parametrize('result_text', ['١٣', '１３', '1٣.0'])
def test_non_ascii_digits_are_undetermined(result_text):
    assert result_to_string('RUN_100M', result_text) == RANK_UNDETERMINED



def test_unparsable_result_is_undetermined():
    assert result_to_string('PULL_UPS', 'many') == RANK_UNDETERMINED


@pytest.mark.parametrize('code, result_text, expected', [
    ('RUN_100M', '13.3', RANK_EXCELLENT),
    ('RUN_100M', '13.6', RANK_GOOD),
    ('RUN_100M', '14.0', RANK_PASS),
    ('RUN_100M', '20', RANK_FAIL),
    ('RUN_100M', ' 13.0 ', RANK_EXCELLENT),
    ('PULL_UPS', '23', RANK_EXCELLENT),
    ('PULL_UPS', '19', RANK_GOOD),
    ('PULL_UPS', '15', RANK_PASS),
    ('PULL_UPS', '10', RANK_FAIL),
    ('RUN_3000M', '11:30', RANK_EXCELLENT),
    ('RUN_3000M', '12:00', RANK_GOOD),
    ('RUN_3000M', '12:50', RANK_PASS),
    ('RUN_3000M', '13:05', RANK_FAIL),
    ('LONG_JUMP', '2.35', RANK_GOOD),
    ('SWIM_100M', '1:50', RANK_PASS),
])
def test_result_to_string(code, result_text, expected):
    assert result_to_string(code, result_text) == expected


def test_malformed_duration_ranks_as_zero():
    # Garbage clock strings become 0 seconds, the best possible timed result
    assert result_to_string('RUN_3000M', 'ab:cd') == RANK_EXCELLENT
    assert result_to_string('PULL_UPS', '1:2:3') == RANK_FAIL


def test_result_to_string_is_stable():
    first = result_to_string('RUN_1500M', '5:45')
    assert first == RANK_PASS
    assert all(result_to_string('RUN_1500M', '5:45') == first for _ in range(5))


def test_thresholds_to_dict():
    table = thresholds_to_dict()
    assert set(table) == set(THRESHOLDS)
    assert table['PULL_UPS'] == {'excellent': 23.0, 'good': 19.0, 'pass': 15.0, 'lower_is_better': False}


def test_status_labels():
    assert get_student_status_string(1) == 'Có dữ liệu đồng bộ với Atlas'
    assert get_student_status_string(11) == 'online'
    assert get_student_status_string(99) == RANK_UNDETERMINED
    assert get_batch_status_string(-2) == 'Đã xóa'
    assert get_batch_status_string(3) == 'Hoàn thành'
    assert get_batch_status_string(None) == RANK_UNDETERMINED
