#!/usr/bin/env python
"""
    Item Schemas for Lending,
    the catalog intake payload and the inventory snapshot carried by
    change notifications.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from pydantic import BaseModel, Field, field_validator
from lending.core.utils import clean_code


class ItemIntake(BaseModel):
    code: str
    title: str = Field(..., min_length=1, max_length=200)
    total_copies: int = Field(default=1, ge=0)

    @field_validator('code')
    @classmethod
    def validate_code(cls, value):
        cleaned = clean_code(value)
        if not cleaned:
            raise ValueError("must be 10 or 13 digits (ISBN-10 may end in X)")
        return cleaned

    @field_validator('title')
    @classmethod
    def strip_title(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("cannot be blank")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "code": "978-0-13-468547-9",
                "title": "Effective Python",
                "total_copies": 3,
            }
        }


class ItemSnapshot(BaseModel):
    code: str
    title: str
    total_copies: int
    available_copies: int
    is_retired: bool

    class Config:
        from_attributes = True
