"""
Configuration for the Wonderbewbz Operations Dashboard

This file contains ONLY static configuration that rarely changes:
- Advisory thresholds (cross-check tolerance, bag weight, water content)
- Display rounding
- Status vocabularies
- Retry settings for database writes

NO CREDENTIALS HERE - Supabase url/key come from Streamlit secrets
NO FUNCTIONS HERE - functions go in utils.py and calculations.py
"""

# =============================================================================
# APP IDENTITY
# =============================================================================
APP_CONFIG = {
    'name': 'Wonderbewbz',
    'version': '0.3.0',
    'title': 'Wonderbewbz - Operations App',
    'description': 'Breastmilk processing operations dashboard',
}

# =============================================================================
# ADVISORY THRESHOLDS
#
# These never block a save. They only decide when a warning is shown.
#
# CROSS-CHECK FLOW:
#   1. Staff declare the powder weight for a machine run (e.g. 90g)
#   2. Powder is repackaged and each batch re-weighed: weight/unit × quantity
#   3. Combined total vs declared weight → variance %
#   4. |variance| > 5% → warning, invite remarks
#
# Example: declared 90g, re-weighed 10g × 5 + 8g × 3 = 74g
#   → (74 - 90) / 90 × 100 = -17.78% → outside tolerance
# =============================================================================
THRESHOLDS = {
    'cross_check_tolerance_pct': 5.0,   # ± % allowed between declared and re-weighed powder
    'bag_weight_min_g': 30,             # a single thawed bag below this is suspicious
    'bag_weight_max_g': 400,            # a single thawed bag above this is suspicious
    'water_content_min_pct': 85.0,      # typical human milk water content, lower bound
    'water_content_max_pct': 89.5,      # upper bound
}

# =============================================================================
# DISPLAY ROUNDING - decimal places per kind of quantity
# =============================================================================
ROUNDING = {
    'weight': 1,        # grams / millilitres
    'ratio': 4,         # powder per ml, powder per unit
    'percentage': 1,    # water content
    'cross_check': 2,   # re-weighed totals, difference, variance
}

# =============================================================================
# STATUS VOCABULARIES - must match the enums in the database
# =============================================================================
ORDER_STATUSES = ['pending', 'processing', 'completed']

MACHINE_RUN_STATUSES = [
    'pending',
    'documented',
    'processing',
    'completed',
    'qa_failed',
    'cancelled',
]

STATUS_LABELS = {
    'pending': '🕓 Pending',
    'documented': '📝 Documented',
    'processing': '⚙️ Processing',
    'completed': '✅ Completed',
    'qa_failed': '❌ QA Failed',
    'cancelled': '🚫 Cancelled',
}

VISUAL_CHECK_OPTIONS = ['none', 'passed', 'flagged']

# =============================================================================
# MACHINE RUN WIZARD
# =============================================================================
WIZARD_STEPS = [
    {'number': 1, 'title': 'Info'},
    {'number': 2, 'title': 'Individual Bags'},
    {'number': 3, 'title': 'Calculation Inputs'},
]

# =============================================================================
# DATABASE WRITES - retry with exponential backoff (1s, 2s, 4s)
# =============================================================================
RETRY_CONFIG = {
    'max_retries': 3,
    'base_delay': 1.0,  # seconds, doubled on each attempt
}

# Substrings that mark an exception as a transient network failure
NETWORK_ERROR_MARKERS = [
    'network',
    'fetch',
    'timeout',
    'timed out',
    'connection',
    'econnrefused',
    'enotfound',
    'socket',
]

# PostgREST / network error codes that are worth retrying
NETWORK_ERROR_CODES = ['PGRST000', 'NetworkError']

# PostgreSQL codes for bad data - retrying will never help
VALIDATION_ERROR_CODES = ['23505', '23503', '23502', '22P02', '22001']

# User-facing messages for common PostgreSQL error codes
DATABASE_ERROR_MESSAGES = {
    '23505': 'This record already exists. Please check for duplicates.',
    '23503': "Cannot delete this record because it's being used elsewhere.",
    '23502': 'Required information is missing. Please fill in all required fields.',
    '42P01': 'Database table not found. Please contact support.',
    '42703': 'Database column not found. Please contact support.',
}

DEFAULT_DATABASE_ERROR = 'An error occurred while saving your data. Please try again.'

# Session-state key prefix for in-progress form drafts
FORM_BACKUP_PREFIX = 'backup-'
