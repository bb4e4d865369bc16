"""
    Catalog maintenance: intake, copies, details and retirement.

    Item mutations made here notify the change log sink exactly like
    borrow and return do, because they go through the same unit of work.
"""

import logging
from pydantic import ValidationError
from lending.core.models import Item, Loan
from lending.core.exceptions import InvalidValue, ItemNotFound, DuplicateItem
from lending.core.utils import clean_code
from lending.schemas.item import ItemIntake

logger = logging.getLogger(__name__)


class CatalogService:

    def __init__(self, transactor):
        self.transactor = transactor

    @staticmethod
    def _item(session, item_id):
        item = session.get(Item, item_id)
        if item is None:
            raise ItemNotFound(item_id=item_id)
        return item

    def add_item(self, code, title, total_copies=1, actor=None):
        try:
            intake = ItemIntake(code=code, title=title, total_copies=total_copies)
        except ValidationError as e:
            raise InvalidValue.from_validation(e) from e
        item = self.transactor.run('add_item', self._add_item, intake, actor=actor)
        logger.info(f"item {item.id} ({item.code}) added with {item.total_copies} copies")
        return item

    def _add_item(self, uow, intake):
        if Item.by_code(uow.session, intake.code):
            raise DuplicateItem(code=intake.code)
        item = Item.create(intake.code, intake.title, total_copies=intake.total_copies)
        uow.session.add(item)
        return item

    def add_copies(self, item_id, count, actor=None):
        return self.transactor.run('add_copies', self._add_copies, item_id, count, actor=actor)

    def _add_copies(self, uow, item_id, count):
        item = self._item(uow.session, item_id)
        item.add_copies(count)
        return item

    def update_details(self, item_id, title=None, code=None, actor=None):
        if code is not None:
            cleaned = clean_code(code)
            if not cleaned:
                raise InvalidValue(field='code', reason='must be 10 or 13 digits')
            code = cleaned
        if title is not None:
            title = title.strip()
            if not title or len(title) > 200:
                raise InvalidValue(field='title', reason='must be 1 to 200 characters')
        return self.transactor.run(
            'update_details', self._update_details, item_id, title, code, actor=actor)

    def _update_details(self, uow, item_id, title, code):
        item = self._item(uow.session, item_id)
        if code is not None and code != item.code and Item.by_code(uow.session, code):
            raise DuplicateItem(code=code)
        item.update_details(title=title, code=code)
        return item

    def retire(self, item_id, actor=None):
        """Soft-deletes an item; its loan history is kept."""
        item = self.transactor.run('retire_item', self._retire, item_id, actor=actor)
        logger.info(f"item {item.id} retired")
        return item

    def _retire(self, uow, item_id):
        item = self._item(uow.session, item_id)
        item.retire(open_loans=Loan.count_open(uow.session, item_id=item.id))
        return item

    def get(self, item_id):
        return self.transactor.read(self._item, item_id)

    def find(self, code):
        cleaned = clean_code(code)
        if not cleaned:
            return None
        return self.transactor.read(Item.by_code, cleaned)

    def list(self, offset=None, limit=None):
        return self.transactor.read(Item.get_many, offset=offset, limit=limit)
