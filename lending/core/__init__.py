#!/usr/bin/env python

"""
    Core module for Lending: storage, models and the lending engine

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from lending.configs import LOG_LEVEL

logging.getLogger('lending').setLevel(LOG_LEVEL.upper())
