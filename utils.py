"""
Utility Functions for the Wonderbewbz Operations Dashboard

This file contains helper functions used across the application.
Data/configuration goes in config.py, machine-run math in calculations.py
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional

from config import (
    RETRY_CONFIG, NETWORK_ERROR_MARKERS, NETWORK_ERROR_CODES,
    VALIDATION_ERROR_CODES, DATABASE_ERROR_MESSAGES, DEFAULT_DATABASE_ERROR,
    FORM_BACKUP_PREFIX, STATUS_LABELS
)
from calculations import parse_number

logger = logging.getLogger(__name__)


# =============================================================================
# DISPLAY FORMATTING
# =============================================================================

def format_grams(amount: float, decimals: int = 1, unit: str = 'g') -> str:
    """
    Format a weight or volume for display.

    Args:
        amount: Numeric amount
        decimals: Number of decimal places
        unit: Unit suffix (g or ml)

    Returns:
        Formatted string like "1,217.4 g"
    """
    if amount is None:
        return f"0 {unit}"

    return f"{amount:,.{decimals}f} {unit}"


def format_percent(value: float, decimals: int = 1, signed: bool = False) -> str:
    """
    Format a value that is already a percentage (92.0 -> "92.0%").

    Args:
        value: Percentage value
        decimals: Number of decimal places
        signed: Show "+" on positive values (for variances)

    Returns:
        Formatted string like "92.0%" or "+3.20%"
    """
    if value is None:
        return "0%"

    if signed:
        return f"{value:+.{decimals}f}%"
    return f"{value:.{decimals}f}%"


def format_status(status: str) -> str:
    """Status enum value -> label with icon."""
    if not status:
        return 'Unknown'
    return STATUS_LABELS.get(status, status.replace('_', ' ').title())


# =============================================================================
# FORM VALUE CLEANUP (DRY - Don't Repeat Yourself)
# =============================================================================

def empty_string_to_null(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Optional text fields are stored as NULL, not ''."""
    return {key: (None if value == '' else value) for key, value in values.items()}


def to_float_or_none(value: Any) -> Optional[float]:
    """
    Convert form text to a number for storage.

    Reads the leading number like calculations.parse_qty, but keeps
    "nothing entered" distinct from 0: blank, non-numeric or non-finite
    text becomes None (NULL).
    """
    return parse_number(value)


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def cleanup_order_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Standard cleanup for order form values.

    Args:
        values: Raw values from the order form

    Returns:
        Dict ready for the orders table
    """
    visual_check = values.get('visual_check')
    if visual_check in (None, '', 'none'):
        visual_check = None

    return {
        'shopify_order_id': str(values.get('shopify_order_id', '')).strip(),
        'customer_id': values.get('customer_id'),
        'status': values.get('status') or 'pending',
        'shipping_addr_1': _text_or_none(values.get('shipping_addr_1')),
        'shipping_addr_2': _text_or_none(values.get('shipping_addr_2')),
        'postal_code': _text_or_none(values.get('postal_code')),
        'phone': _text_or_none(values.get('phone')),
        'arrival_temp': to_float_or_none(values.get('arrival_temp')),
        'arrival_weight': to_float_or_none(values.get('arrival_weight')),
        'visual_check': visual_check,
        'visual_check_remarks': _text_or_none(values.get('visual_check_remarks')),
    }


def cleanup_customer_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Standard cleanup for customer form values."""
    return {
        'name': str(values.get('name', '')).strip(),
        'phone': _text_or_none(values.get('phone')),
        'shipping_addr_1': _text_or_none(values.get('shipping_addr_1')),
        'shipping_addr_2': _text_or_none(values.get('shipping_addr_2')),
        'postal_code': _text_or_none(values.get('postal_code')),
        'shopify_customer_id': _text_or_none(values.get('shopify_customer_id')),
    }


def validate_required_fields(data: Mapping[str, Any], required_fields: List[str]) -> Optional[str]:
    """Return an error message naming the missing fields, or None."""
    missing = [
        name for name in required_fields
        if data.get(name) is None or str(data.get(name)).strip() == ''
    ]
    if not missing:
        return None
    return f"Missing required fields: {', '.join(missing)}"


# =============================================================================
# ERROR CLASSIFICATION
# Supabase raises postgrest APIError (with .code / .message / .details);
# transport failures surface as httpx / OS errors with only a message.
# =============================================================================

def _error_code(error: Any) -> Optional[str]:
    if isinstance(error, Mapping):
        code = error.get('code')
    else:
        code = getattr(error, 'code', None)
    return str(code) if code is not None else None


def _error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        return str(error.get('message', ''))
    message = getattr(error, 'message', None)
    if message:
        return str(message)
    return str(error)


def is_network_error(error: Any) -> bool:
    """Transient connection problems that are worth retrying."""
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    if _error_code(error) in NETWORK_ERROR_CODES:
        return True

    if isinstance(error, Exception):
        message = _error_message(error).lower()
        return any(marker in message for marker in NETWORK_ERROR_MARKERS)

    return False


def is_validation_error(error: Any) -> bool:
    """Bad data rejected by PostgreSQL - retrying will never help."""
    return _error_code(error) in VALIDATION_ERROR_CODES


def format_database_error(error: Any) -> Dict[str, Any]:
    """
    Format database errors for user display.

    Args:
        error: Exception or error dict from Supabase

    Returns:
        Dict with 'message' (friendly), 'code', 'details' (raw)
    """
    code = _error_code(error)

    if code is None and not isinstance(error, Mapping) and not hasattr(error, 'message'):
        return {
            'message': 'An unexpected error occurred. Please try again.',
            'code': None,
            'details': str(error),
        }

    if isinstance(error, Mapping):
        details = error.get('details') or error.get('message')
    else:
        details = getattr(error, 'details', None) or _error_message(error)

    return {
        'message': DATABASE_ERROR_MESSAGES.get(code, DEFAULT_DATABASE_ERROR),
        'code': code,
        'details': details,
    }


def log_error(context: str, error: Any, **additional_info) -> None:
    """Standard error logging with context."""
    info = ', '.join(f"{key}={value}" for key, value in additional_info.items())
    logger.error(
        f"[{context}] {type(error).__name__}: {_error_message(error)}"
        + (f" ({info})" if info else "")
    )


# =============================================================================
# RETRY WITH EXPONENTIAL BACKOFF
# =============================================================================

@dataclass
class RetryResult:
    success: bool
    data: Any
    error: Optional[BaseException]
    attempts: int


def retry_operation(
    operation: Callable[[], Any],
    max_retries: int = None,
    base_delay: float = None,
    should_retry: Callable[[Any], bool] = is_network_error,
    on_retry: Callable[[int, int], None] = None,
    sleep: Callable[[float], None] = None
) -> RetryResult:
    """
    Run an operation, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument callable doing the database work
        max_retries: Retries after the first attempt (default 3)
        base_delay: Seconds before the first retry, doubled each time
        should_retry: Decides whether an exception is transient
        on_retry: Called with (attempt, max_retries) before each wait
        sleep: Wait function (time.sleep by default)

    Returns:
        RetryResult - never raises for exceptions from the operation
    """
    if max_retries is None:
        max_retries = RETRY_CONFIG['max_retries']
    if base_delay is None:
        base_delay = RETRY_CONFIG['base_delay']
    if sleep is None:
        sleep = time.sleep

    last_error = None
    attempts = 0

    for attempt in range(1, max_retries + 2):
        attempts = attempt
        try:
            return RetryResult(success=True, data=operation(), error=None, attempts=attempts)
        except Exception as e:
            last_error = e

            if is_validation_error(e) or not should_retry(e):
                return RetryResult(success=False, data=None, error=e, attempts=attempts)

            if attempt <= max_retries:
                delay = base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Attempt {attempt}/{max_retries + 1} failed ({e}), retrying in {delay:.1f}s"
                )
                if on_retry:
                    on_retry(attempt, max_retries)
                sleep(delay)

    return RetryResult(success=False, data=None, error=last_error, attempts=attempts)


# =============================================================================
# FORM DRAFT BACKUP
# Keeps a copy of in-progress form data so a failed save or an accidental
# rerun does not lose what staff typed. Stored in st.session_state by default.
# =============================================================================

def get_backup_key(form_type: str, record_id: Optional[str]) -> str:
    return f"{FORM_BACKUP_PREFIX}{form_type}-{record_id or 'new'}"


def wizard_draft_id(order_id: Optional[str], run_id: Optional[str]) -> Optional[str]:
    """Draft id for the run wizard: per run when editing, per order when new."""
    if run_id:
        return run_id
    return f"{order_id}-new" if order_id else None


def _session_store() -> MutableMapping:
    import streamlit as st
    return st.session_state


def backup_form_draft(
    form_type: str,
    record_id: Optional[str],
    data: Any,
    store: MutableMapping = None
) -> datetime:
    """Save a timestamped draft. Returns the timestamp."""
    if store is None:
        store = _session_store()
    timestamp = datetime.now()
    store[get_backup_key(form_type, record_id)] = {'data': data, 'timestamp': timestamp}
    return timestamp


def restore_form_draft(
    form_type: str,
    record_id: Optional[str],
    store: MutableMapping = None
) -> Optional[Dict[str, Any]]:
    """Return {'data', 'timestamp'} for a saved draft, or None."""
    if store is None:
        store = _session_store()
    return store.get(get_backup_key(form_type, record_id))


def clear_form_draft(
    form_type: str,
    record_id: Optional[str],
    store: MutableMapping = None
) -> None:
    if store is None:
        store = _session_store()
    store.pop(get_backup_key(form_type, record_id), None)
