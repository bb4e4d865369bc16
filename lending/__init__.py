#!/usr/bin/env python

"""
    Lending, a library circulation engine: loans, patrons and
    catalog inventory kept consistent inside one unit of work.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

__version__ = '0.1.0'
