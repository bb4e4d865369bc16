"""
    The lending engine: every state transition that touches more than
    one entity (borrow, renew, return, lost, damaged, cancel, fee payment)
    runs here as one unit of work.
"""

import logging
from lending.configs import (
    ACTOR, LOAN_PERIOD_DAYS, MAX_RENEWALS, LATE_FEE_PER_DAY,
    FEE_BLOCK_THRESHOLD, MAX_RETRIES, RETRY_BACKOFF
)
from lending.core import fees, reports
from lending.core.catalog import CatalogService
from lending.core.changelog import DatabaseChangeLog
from lending.core.models import Item, Patron, Loan
from lending.core.patrons import PatronService
from lending.core.uow import Transactor
from lending.core.utils import utcnow, as_utc
from lending.core.exceptions import (
    PatronNotFound,
    ItemNotFound,
    LoanNotFound,
    ItemRetired,
    NotAvailable,
    BorrowLimitReached,
    OutstandingFeesExceeded,
    ChangeHistoryUnavailable
)

logger = logging.getLogger(__name__)


class LendingEngine:

    def __init__(self, session_factory=None, sink=None, clock=utcnow, actor=ACTOR,
                 loan_period_days=LOAN_PERIOD_DAYS, max_renewals=MAX_RENEWALS,
                 late_fee_per_day=LATE_FEE_PER_DAY, fee_block_threshold=FEE_BLOCK_THRESHOLD,
                 max_retries=MAX_RETRIES, retry_backoff=RETRY_BACKOFF):
        if session_factory is None:
            from lending.core.db import SessionLocal
            session_factory = SessionLocal
        self.sink = sink or DatabaseChangeLog()
        self.transactor = Transactor(
            session_factory, self.sink, clock=clock, actor=actor,
            max_retries=max_retries, backoff=retry_backoff)
        self.loan_period_days = loan_period_days
        self.max_renewals = max_renewals
        self.late_fee_per_day = late_fee_per_day
        self.fee_block_threshold = fee_block_threshold
        self.catalog = CatalogService(self.transactor)
        self.patrons = PatronService(self.transactor)

    @property
    def clock(self):
        return self.transactor.clock

    @staticmethod
    def _get(session, model, key, error, **context):
        obj = session.get(model, key)
        if obj is None:
            raise error(**context)
        return obj

    def _loan(self, session, loan_id):
        return self._get(session, Loan, loan_id, LoanNotFound, loan_id=loan_id)

    # Write operations

    def create_loan(self, patron_id, item_id, actor=None):
        """Lends one copy of `item_id` to `patron_id` and returns the
        new active Loan."""
        loan = self.transactor.run(
            'create_loan', self._create_loan, patron_id, item_id, actor=actor)
        logger.info(f"loan {loan.id} opened: item {item_id} to patron {patron_id}")
        return loan

    def _create_loan(self, uow, patron_id, item_id):
        session = uow.session
        patron = self._get(session, Patron, patron_id, PatronNotFound, patron_id=patron_id)
        patron.check_eligibility(uow.now)
        if (self.fee_block_threshold is not None
                and patron.outstanding_fees > self.fee_block_threshold):
            raise OutstandingFeesExceeded(
                patron_id=patron.id,
                membership_code=patron.membership_code,
                outstanding_fees=patron.outstanding_fees,
                threshold=self.fee_block_threshold)

        item = self._get(session, Item, item_id, ItemNotFound, item_id=item_id)
        if item.is_retired:
            raise ItemRetired(item_id=item.id, code=item.code)
        if item.available_copies <= 0:
            raise NotAvailable(
                item_id=item.id,
                available_copies=item.available_copies,
                total_copies=item.total_copies)

        active_loans = Loan.count_open(session, patron_id=patron.id)
        if active_loans >= patron.max_items_allowed:
            raise BorrowLimitReached(
                patron_id=patron.id,
                active_loans=active_loans,
                max_items_allowed=patron.max_items_allowed)

        item.borrow_copy()
        # writing the patron row makes concurrent borrows by the same
        # patron conflict, so the count above is re-checked on retry
        patron.touch(uow.now)
        loan = Loan.open(
            patron, item, uow.now,
            period_days=self.loan_period_days,
            max_renewals=self.max_renewals)
        session.add(loan)
        return loan

    def renew_loan(self, loan_id, actor=None):
        loan = self.transactor.run('renew_loan', self._renew_loan, loan_id, actor=actor)
        logger.info(f"loan {loan.id} renewed ({loan.renewal_count}), due {loan.due_at:%Y-%m-%d}")
        return loan

    def _renew_loan(self, uow, loan_id):
        loan = self._loan(uow.session, loan_id)
        loan.renew(uow.now, period_days=self.loan_period_days)
        return loan

    def return_loan(self, loan_id, actor=None):
        """Closes the loan, puts the copy back on the shelf and posts any
        late fee to the patron's outstanding fees."""
        loan = self.transactor.run('return_loan', self._return_loan, loan_id, actor=actor)
        logger.info(f"loan {loan.id} {loan.status.value}, late fee {loan.late_fee}")
        return loan

    def _return_loan(self, uow, loan_id):
        session = uow.session
        loan = self._loan(session, loan_id)
        fee = loan.close(uow.now, rate=self.late_fee_per_day)
        item = self._get(session, Item, loan.item_id, ItemNotFound, item_id=loan.item_id)
        item.return_copy()
        if fee and not loan.fee_paid:
            patron = self._get(
                session, Patron, loan.patron_id, PatronNotFound, patron_id=loan.patron_id)
            patron.add_fee(fee, at=uow.now)
        return loan

    def mark_lost(self, loan_id, notes=None, actor=None):
        """The copy is gone; inventory is not restored."""
        loan = self.transactor.run('mark_lost', self._mark_lost, loan_id, notes, actor=actor)
        logger.info(f"loan {loan.id} marked lost")
        return loan

    def _mark_lost(self, uow, loan_id, notes):
        loan = self._loan(uow.session, loan_id)
        loan.mark_lost(notes, uow.now)
        return loan

    def mark_damaged(self, loan_id, notes=None, actor=None):
        """The copy is unusable; inventory is not restored."""
        loan = self.transactor.run(
            'mark_damaged', self._mark_damaged, loan_id, notes, actor=actor)
        logger.info(f"loan {loan.id} marked damaged")
        return loan

    def _mark_damaged(self, uow, loan_id, notes):
        loan = self._loan(uow.session, loan_id)
        loan.mark_damaged(notes, uow.now)
        return loan

    def cancel_loan(self, loan_id, actor=None):
        """Voids a loan entered by mistake and restores the copy."""
        loan = self.transactor.run('cancel_loan', self._cancel_loan, loan_id, actor=actor)
        logger.info(f"loan {loan.id} cancelled")
        return loan

    def _cancel_loan(self, uow, loan_id):
        session = uow.session
        loan = self._loan(session, loan_id)
        loan.cancel(uow.now)
        item = self._get(session, Item, loan.item_id, ItemNotFound, item_id=loan.item_id)
        item.return_copy()
        return loan

    def pay_late_fee(self, loan_id, actor=None):
        loan = self.transactor.run('pay_late_fee', self._pay_late_fee, loan_id, actor=actor)
        logger.info(f"loan {loan.id} late fee {loan.late_fee} paid")
        return loan

    def _pay_late_fee(self, uow, loan_id):
        session = uow.session
        loan = self._loan(session, loan_id)
        amount = loan.pay_fee(uow.now)
        patron = self._get(
            session, Patron, loan.patron_id, PatronNotFound, patron_id=loan.patron_id)
        patron.pay_fee(amount, at=uow.now)
        return loan

    # Read operations

    def get_loan(self, loan_id):
        return self.transactor.read(self._loan, loan_id)

    def active_loans(self, patron_id):
        return self.transactor.read(
            lambda session: Loan.open_loans(session, patron_id=patron_id).order_by(Loan.due_at).all())

    def loan_history(self, patron_id=None, item_id=None):
        return self.transactor.read(Loan.history, patron_id=patron_id, item_id=item_id)

    def overdue_loans(self, as_of=None, min_days_overdue=0):
        return self.transactor.read(
            reports.overdue_loans,
            as_of=as_utc(as_of or self.clock()),
            min_days_overdue=min_days_overdue,
            rate=self.late_fee_per_day)

    def item_history(self, item_id, limit=None):
        if not isinstance(self.sink, DatabaseChangeLog):
            raise ChangeHistoryUnavailable(sink=type(self.sink).__name__)
        return self.transactor.read(self.sink.history, item_id, limit=limit)

    def late_fee(self, due_at, returned_at=None, as_of=None):
        """Same computation the engine posts at return time."""
        return fees.late_fee(
            due_at, returned_at=returned_at, as_of=as_of or as_utc(self.clock()),
            rate=self.late_fee_per_day)
