from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal


class OverdueLoan(BaseModel):
    loan_id: int
    patron_id: int
    patron_name: str
    patron_email: str
    item_id: int
    code: str
    title: str
    borrowed_at: datetime
    due_at: datetime
    days_overdue: int
    calculated_late_fee: Decimal
    status: str
    notes: Optional[str] = None
