"""
    Change log sinks for catalog item mutations.

    A sink receives one `ItemChange` per successful item mutation while
    the unit of work that made it is still open, so the notification and
    the mutation commit together or not at all.
"""

import logging
from lending.core.models import ItemAudit

logger = logging.getLogger(__name__)


class ChangeLogSink:

    def record(self, session, change):
        raise NotImplementedError


class DatabaseChangeLog(ChangeLogSink):
    """Writes `item_changes` rows on the unit of work's own session."""

    def record(self, session, change):
        logger.debug(f"item {change.item_id} {change.action.value} by {change.changed_by}")
        session.add(ItemAudit.from_change(change))

    @classmethod
    def history(cls, session, item_id, limit=None):
        """Change rows for one item, most recent first."""
        return session.query(ItemAudit).filter(
            ItemAudit.item_id == item_id
        ).order_by(
            ItemAudit.changed_at.desc(), ItemAudit.id.desc()
        ).limit(limit).all()
