from pydantic import BaseModel
from typing import Optional
from datetime import datetime
import enum

from lending.schemas.item import ItemSnapshot


class ChangeAction(str, enum.Enum):
    INSERT = "Insert"
    UPDATE = "Update"


class ItemChange(BaseModel):
    """One catalog item mutation, delivered to the change log sink
    inside the unit of work that made it."""
    item_id: int
    action: ChangeAction
    before: Optional[ItemSnapshot] = None
    after: ItemSnapshot
    changed_at: datetime
    changed_by: str
