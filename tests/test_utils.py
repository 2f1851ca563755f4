import pytest

from conftest import FakeAPIError
from utils import (
    format_grams, format_percent, format_status, empty_string_to_null,
    to_float_or_none, cleanup_order_values, cleanup_customer_values,
    validate_required_fields, is_network_error, is_validation_error,
    format_database_error, retry_operation, backup_form_draft,
    restore_form_draft, clear_form_draft, get_backup_key, wizard_draft_id
)


# ---------------------------------------------------------------------------
# formatting
# ---------------------------------------------------------------------------

def test_format_grams():
    assert format_grams(1217.4) == "1,217.4 g"
    assert format_grams(74, decimals=2) == "74.00 g"
    assert format_grams(200, unit='ml') == "200.0 ml"
    assert format_grams(None) == "0 g"


def test_format_percent():
    assert format_percent(92.0) == "92.0%"
    assert format_percent(-17.78, decimals=2, signed=True) == "-17.78%"
    assert format_percent(3.2, decimals=2, signed=True) == "+3.20%"


def test_format_status():
    assert format_status('qa_failed') == '❌ QA Failed'
    assert format_status('something_else') == 'Something Else'
    assert format_status(None) == 'Unknown'


# ---------------------------------------------------------------------------
# form cleanup
# ---------------------------------------------------------------------------

def test_to_float_or_none_keeps_blank_distinct_from_zero():
    assert to_float_or_none('') is None
    assert to_float_or_none('  ') is None
    assert to_float_or_none('abc') is None
    assert to_float_or_none('0') == 0.0
    assert to_float_or_none(' 12.5 ') == 12.5


@pytest.mark.parametrize("text,expected", [
    ('nan', None),
    ('inf', None),
    ('1e400', None),
    ('1_000', 1.0),
    ('2100g', 2100.0),
    ('-18.5 C', -18.5),
])
def test_to_float_or_none_stores_only_finite_leading_numbers(text, expected):
    assert to_float_or_none(text) == expected


def test_empty_string_to_null():
    assert empty_string_to_null({'a': '', 'b': 'x', 'c': None}) == {'a': None, 'b': 'x', 'c': None}


def test_cleanup_order_values():
    values = cleanup_order_values({
        'shopify_order_id': ' #1041 ',
        'customer_id': 'cust-1',
        'status': 'processing',
        'shipping_addr_1': '',
        'arrival_temp': '-18.5',
        'arrival_weight': '',
        'visual_check': 'none',
        'visual_check_remarks': '  ',
    })

    assert values['shopify_order_id'] == '#1041'
    assert values['status'] == 'processing'
    assert values['shipping_addr_1'] is None
    assert values['arrival_temp'] == -18.5
    assert values['arrival_weight'] is None
    assert values['visual_check'] is None
    assert values['visual_check_remarks'] is None


def test_cleanup_order_values_defaults_status():
    assert cleanup_order_values({'shopify_order_id': '1', 'customer_id': 'c'})['status'] == 'pending'


def test_cleanup_customer_values():
    values = cleanup_customer_values({'name': ' Mei ', 'phone': '', 'postal_code': '520012'})
    assert values == {
        'name': 'Mei',
        'phone': None,
        'shipping_addr_1': None,
        'shipping_addr_2': None,
        'postal_code': '520012',
        'shopify_customer_id': None,
    }


def test_validate_required_fields():
    assert validate_required_fields({'name': 'x'}, ['name']) is None
    assert validate_required_fields({'name': ' ', 'phone': None}, ['name', 'phone']) == \
        "Missing required fields: name, phone"


# ---------------------------------------------------------------------------
# error classification
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("error,expected", [
    (ConnectionError("reset by peer"), True),
    (TimeoutError(), True),
    (Exception("[Errno 111] Connection refused"), True),
    (Exception("Request timed out"), True),
    (FakeAPIError("upstream", code='PGRST000'), True),
    (FakeAPIError("duplicate key", code='23505'), False),
    (ValueError("bad literal"), False),
    ({'code': 'NetworkError'}, True),
])
def test_is_network_error(error, expected):
    assert is_network_error(error) is expected


def test_is_validation_error():
    assert is_validation_error(FakeAPIError("duplicate key", code='23505'))
    assert is_validation_error({'code': '22P02'})
    assert not is_validation_error(FakeAPIError("boom", code='42P01'))
    assert not is_validation_error(Exception("boom"))


def test_format_database_error_known_code():
    error = FakeAPIError("duplicate key value", code='23505', details='Key (shopify_order_id)')
    formatted = format_database_error(error)

    assert formatted['message'] == 'This record already exists. Please check for duplicates.'
    assert formatted['code'] == '23505'
    assert formatted['details'] == 'Key (shopify_order_id)'


def test_format_database_error_unknown_code():
    formatted = format_database_error(FakeAPIError("weird", code='99999'))
    assert formatted['message'] == 'An error occurred while saving your data. Please try again.'
    assert formatted['details'] == 'weird'


def test_format_database_error_plain_exception():
    formatted = format_database_error(RuntimeError("kaboom"))
    assert formatted['message'] == 'An unexpected error occurred. Please try again.'
    assert formatted['code'] is None
    assert formatted['details'] == 'kaboom'


# ---------------------------------------------------------------------------
# retry_operation
# ---------------------------------------------------------------------------

class Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_retry_succeeds_first_time():
    waits = []
    result = retry_operation(Flaky('ok'), sleep=waits.append)

    assert result.success
    assert result.data == 'ok'
    assert result.attempts == 1
    assert waits == []


def test_retry_backs_off_exponentially():
    waits = []
    op = Flaky(ConnectionError('down'), ConnectionError('down'), 'saved')
    result = retry_operation(op, base_delay=1.0, sleep=waits.append)

    assert result.success
    assert result.data == 'saved'
    assert result.attempts == 3
    assert waits == [1.0, 2.0]


def test_retry_gives_up_after_max_retries():
    waits, retries = [], []
    op = Flaky(*[ConnectionError('down')] * 4)
    result = retry_operation(op, max_retries=3, base_delay=1.0, sleep=waits.append,
                             on_retry=lambda attempt, total: retries.append((attempt, total)))

    assert not result.success
    assert isinstance(result.error, ConnectionError)
    assert result.attempts == 4
    assert waits == [1.0, 2.0, 4.0]
    assert retries == [(1, 3), (2, 3), (3, 3)]


def test_retry_never_retries_validation_errors():
    waits = []
    error = FakeAPIError("network says duplicate", code='23505')
    result = retry_operation(Flaky(error), sleep=waits.append)

    assert not result.success
    assert result.error is error
    assert result.attempts == 1
    assert waits == []


def test_retry_stops_on_non_retryable_error():
    op = Flaky(ValueError('bad input'), 'never')
    result = retry_operation(op, sleep=lambda s: None)

    assert not result.success
    assert op.calls == 1


def test_retry_default_sleep_is_patchable(no_sleep):
    result = retry_operation(Flaky(TimeoutError(), 'ok'))
    assert result.success
    assert no_sleep == [1.0]


# ---------------------------------------------------------------------------
# form draft backup
# ---------------------------------------------------------------------------

def test_form_draft_round_trip(example_inputs):
    store = {}
    timestamp = backup_form_draft('machine-run', None, example_inputs, store)

    assert get_backup_key('machine-run', None) == 'backup-machine-run-new'
    draft = restore_form_draft('machine-run', None, store)
    assert draft == {'data': example_inputs, 'timestamp': timestamp}

    clear_form_draft('machine-run', None, store)
    assert restore_form_draft('machine-run', None, store) is None


def test_form_drafts_are_kept_per_record(example_inputs):
    store = {}
    backup_form_draft('machine-run', 'run-1', example_inputs, store)

    assert restore_form_draft('machine-run', 'run-2', store) is None
    assert 'backup-machine-run-run-1' in store
    clear_form_draft('machine-run', 'run-2', store)
    assert 'backup-machine-run-run-1' in store


def test_new_run_drafts_are_kept_per_order(example_inputs):
    store = {}
    backup_form_draft('machine-run', wizard_draft_id('order-a', None), example_inputs, store)

    assert restore_form_draft('machine-run', wizard_draft_id('order-b', None), store) is None
    assert restore_form_draft('machine-run', wizard_draft_id('order-a', None), store)['data'] == example_inputs


def test_wizard_draft_id():
    assert wizard_draft_id('order-a', 'run-1') == 'run-1'
    assert wizard_draft_id('order-a', None) == 'order-a-new'
    assert wizard_draft_id(None, None) is None
