#!/usr/bin/env python

"""
    Configurations for Lending

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os
from decimal import Decimal


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

DEBUG = bool(int(os.environ.get('LENDING_DEBUG', 0)))
LOG_LEVEL = os.environ.get('LENDING_LOG_LEVEL', 'info')

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'lending'),
}

# Database configuration
DB_URI = os.environ.get('LENDING_DB_URI') or (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# Lending policy
LOAN_PERIOD_DAYS = int(os.environ.get('LENDING_LOAN_PERIOD_DAYS', 14))
MAX_RENEWALS = int(os.environ.get('LENDING_MAX_RENEWALS', 2))
MAX_ITEMS_ALLOWED = int(os.environ.get('LENDING_MAX_ITEMS_ALLOWED', 5))
MEMBERSHIP_MONTHS = int(os.environ.get('LENDING_MEMBERSHIP_MONTHS', 12))
LATE_FEE_PER_DAY = Decimal(os.environ.get('LENDING_LATE_FEE_PER_DAY', '0.50'))

# Patrons owing more than this may not borrow; empty disables the check
_fee_block = os.environ.get('LENDING_FEE_BLOCK_THRESHOLD', '10.00')
FEE_BLOCK_THRESHOLD = Decimal(_fee_block) if _fee_block else None

# Unit of work retry policy for conflicts and transient storage failures
MAX_RETRIES = int(os.environ.get('LENDING_MAX_RETRIES', 5))
RETRY_BACKOFF = float(os.environ.get('LENDING_RETRY_BACKOFF', 0.05))

# Acting identity recorded in the item change log
ACTOR = os.environ.get('LENDING_ACTOR', 'lending')

__all__ = [
    'TESTING', 'DEBUG', 'LOG_LEVEL', 'DB_CONFIG', 'DB_URI',
    'LOAN_PERIOD_DAYS', 'MAX_RENEWALS', 'MAX_ITEMS_ALLOWED',
    'MEMBERSHIP_MONTHS', 'LATE_FEE_PER_DAY', 'FEE_BLOCK_THRESHOLD',
    'MAX_RETRIES', 'RETRY_BACKOFF', 'ACTOR',
]
