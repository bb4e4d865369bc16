from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime


class PatronEnrollment(BaseModel):
    membership_code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    max_items_allowed: Optional[int] = Field(default=None, gt=0)
    membership_expires_at: Optional[datetime] = None

    @field_validator('membership_code', 'name')
    @classmethod
    def strip_blank(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("cannot be blank")
        return value
