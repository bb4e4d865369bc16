#!/usr/bin/env python

"""
    Lending models: catalog items, patrons, loans and the item change
    rows written by the default change log.

    Each model guards its own invariants; the lending engine composes
    them inside one unit of work.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import enum
from decimal import Decimal

from sqlalchemy import (
    Column, String, Boolean, Integer, Numeric, DateTime, Text,
    ForeignKey, CheckConstraint, Enum as SQLAlchemyEnum
)
from sqlalchemy.orm import relationship, reconstructor
from sqlalchemy.orm.attributes import flag_modified
from lending.configs import (
    LOAN_PERIOD_DAYS, MAX_RENEWALS, MAX_ITEMS_ALLOWED,
    MEMBERSHIP_MONTHS, LATE_FEE_PER_DAY
)
from lending.core import fees
from lending.core.db import Base
from lending.core.utils import utcnow, add_months, normalize_email
from lending.core.exceptions import (
    InvalidValue,
    MemberNotActive,
    MembershipExpired,
    ItemRetired,
    ItemOnLoan,
    NotAvailable,
    InventoryOverflow,
    LoanNotActive,
    LoanNotCancellable,
    RenewalLimitExceeded,
    NoFeeDue
)
from lending.schemas.item import ItemSnapshot
from lending.schemas.change import ChangeAction

ZERO = Decimal('0.00')


class LoanStatus(enum.Enum):
    ACTIVE = "Active"
    RETURNED = "Returned"
    OVERDUE = "Overdue"
    RETURNED_LATE = "ReturnedLate"
    LOST = "Lost"
    DAMAGED = "Damaged"
    CANCELLED = "Cancelled"

    @property
    def is_open(self):
        """Open loans hold a copy; every other status is terminal."""
        return self in OPEN_STATUSES

    def can_become(self, target):
        return target in TRANSITIONS[self]


# Overdue is derived from due_at at read time and never written by the
# engine; a stored Overdue status behaves exactly like Active.
OPEN_STATUSES = frozenset({LoanStatus.ACTIVE, LoanStatus.OVERDUE})
_CLOSED_BY = frozenset({
    LoanStatus.RETURNED, LoanStatus.RETURNED_LATE, LoanStatus.LOST,
    LoanStatus.DAMAGED, LoanStatus.CANCELLED,
})
TRANSITIONS = {
    status: (_CLOSED_BY | {LoanStatus.ACTIVE}) if status in OPEN_STATUSES else frozenset()
    for status in LoanStatus
}


class Item(Base):
    __tablename__ = 'items'

    id = Column(Integer, primary_key=True)
    code = Column(String(13), unique=True, nullable=False)
    title = Column(String(200), nullable=False)
    total_copies = Column(Integer, default=0, nullable=False)
    available_copies = Column(Integer, default=0, nullable=False)
    is_retired = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('total_copies >= 0', name='ck_items_total_copies'),
        CheckConstraint(
            'available_copies >= 0 AND available_copies <= total_copies',
            name='ck_items_available_copies'),
    )
    # UPDATE ... WHERE version = :seen, so a concurrent writer makes the
    # flush fail with StaleDataError instead of overwriting counters
    __mapper_args__ = {'version_id_col': version}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._changes = []

    @reconstructor
    def _init_on_load(self):
        self._changes = []

    @property
    def copies_on_loan(self):
        return self.total_copies - self.available_copies

    @property
    def is_available(self):
        return not self.is_retired and self.available_copies > 0

    def snapshot(self):
        return ItemSnapshot.model_validate(self)

    def _record(self, action, before):
        self._changes.append((action, before, self.snapshot()))

    @property
    def has_changes(self):
        return bool(self._changes)

    def pop_changes(self):
        """Hands the queued (action, before, after) notifications to the
        unit of work, which delivers them to the change log sink."""
        changes, self._changes = self._changes, []
        return changes

    @classmethod
    def create(cls, code, title, total_copies=1):
        if total_copies < 0:
            raise InvalidValue(field='total_copies', reason='cannot be negative')
        item = cls(
            code=code,
            title=title,
            total_copies=total_copies,
            available_copies=total_copies,
            is_retired=False
        )
        item._record(ChangeAction.INSERT, None)
        return item

    @classmethod
    def by_code(cls, session, code):
        return session.query(cls).filter(cls.code == code).first()

    def borrow_copy(self):
        """Takes one copy off the shelf."""
        if self.is_retired:
            raise ItemRetired(item_id=self.id, code=self.code)
        if self.available_copies <= 0:
            raise NotAvailable(
                item_id=self.id,
                available_copies=self.available_copies,
                total_copies=self.total_copies)
        before = self.snapshot()
        self.available_copies -= 1
        self._record(ChangeAction.UPDATE, before)

    def return_copy(self):
        """Puts one copy back on the shelf."""
        if self.available_copies >= self.total_copies:
            raise InventoryOverflow(item_id=self.id, total_copies=self.total_copies)
        before = self.snapshot()
        self.available_copies += 1
        self._record(ChangeAction.UPDATE, before)

    def add_copies(self, count):
        if count <= 0:
            raise InvalidValue(field='count', reason='must be positive')
        before = self.snapshot()
        self.total_copies += count
        self.available_copies += count
        self._record(ChangeAction.UPDATE, before)

    def update_details(self, title=None, code=None):
        before = self.snapshot()
        if title is not None:
            self.title = title
        if code is not None:
            self.code = code
        if self.snapshot() != before:
            self._record(ChangeAction.UPDATE, before)

    def retire(self, open_loans=0):
        if open_loans:
            raise ItemOnLoan(item_id=self.id, copies_on_loan=open_loans)
        if self.is_retired:
            return
        before = self.snapshot()
        self.is_retired = True
        self._record(ChangeAction.UPDATE, before)

    def __repr__(self):
        return f"<Item {self.id} {self.code} {self.available_copies}/{self.total_copies}>"


class Patron(Base):
    __tablename__ = 'patrons'

    id = Column(Integer, primary_key=True)
    membership_code = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    enrolled_at = Column(DateTime, nullable=False)
    membership_expires_at = Column(DateTime, nullable=False)
    max_items_allowed = Column(Integer, default=MAX_ITEMS_ALLOWED, nullable=False)
    outstanding_fees = Column(Numeric(10, 2), default=ZERO, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('max_items_allowed > 0', name='ck_patrons_max_items'),
        CheckConstraint('outstanding_fees >= 0', name='ck_patrons_fees'),
        CheckConstraint('membership_expires_at > enrolled_at', name='ck_patrons_expiry'),
    )
    __mapper_args__ = {'version_id_col': version}

    @classmethod
    def enroll(cls, membership_code, name, email, enrolled_at,
               membership_expires_at=None, max_items_allowed=None):
        expires_at = membership_expires_at or add_months(enrolled_at, MEMBERSHIP_MONTHS)
        if expires_at <= enrolled_at:
            raise InvalidValue(
                field='membership_expires_at', reason='must be after the enrollment date')
        return cls(
            membership_code=membership_code,
            name=name,
            email=normalize_email(email),
            is_active=True,
            enrolled_at=enrolled_at,
            membership_expires_at=expires_at,
            max_items_allowed=max_items_allowed or MAX_ITEMS_ALLOWED,
            outstanding_fees=ZERO,
            created_at=enrolled_at,
            updated_at=enrolled_at
        )

    @classmethod
    def by_email(cls, session, email):
        return session.query(cls).filter(cls.email == normalize_email(email)).first()

    @classmethod
    def by_code(cls, session, membership_code):
        return session.query(cls).filter(cls.membership_code == membership_code).first()

    def can_borrow(self, as_of=None):
        as_of = as_of or utcnow()
        return bool(self.is_active) and self.membership_expires_at > as_of

    def check_eligibility(self, as_of=None):
        """Raises the reason this patron may not borrow right now."""
        as_of = as_of or utcnow()
        if not self.is_active:
            raise MemberNotActive(patron_id=self.id, membership_code=self.membership_code)
        if self.membership_expires_at <= as_of:
            raise MembershipExpired(
                patron_id=self.id,
                membership_code=self.membership_code,
                expired_at=self.membership_expires_at)

    def touch(self, at=None):
        self.updated_at = at or utcnow()
        # an UPDATE (and version bump) is emitted even if the timestamp is unchanged
        flag_modified(self, 'updated_at')

    def activate(self, at=None):
        self.is_active = True
        self.touch(at)

    def deactivate(self, at=None):
        self.is_active = False
        self.touch(at)

    def extend_membership(self, months, at=None):
        if months <= 0:
            raise InvalidValue(field='months', reason='must be positive')
        self.membership_expires_at = add_months(self.membership_expires_at, months)
        self.touch(at)

    def add_fee(self, amount, at=None):
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidValue(field='amount', reason='fee must be positive')
        self.outstanding_fees = (self.outstanding_fees or ZERO) + amount
        self.touch(at)

    def pay_fee(self, amount, at=None):
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidValue(field='amount', reason='payment must be positive')
        if amount > self.outstanding_fees:
            raise InvalidValue(field='amount', reason='payment exceeds outstanding fees')
        self.outstanding_fees -= amount
        self.touch(at)

    def __repr__(self):
        return f"<Patron {self.id} {self.membership_code}>"


class Loan(Base):
    __tablename__ = 'loans'

    id = Column(Integer, primary_key=True)
    patron_id = Column(Integer, ForeignKey('patrons.id'), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey('items.id'), nullable=False, index=True)
    borrowed_at = Column(DateTime, nullable=False)
    due_at = Column(DateTime, nullable=False)
    returned_at = Column(DateTime, nullable=True)
    status = Column(
        SQLAlchemyEnum(LoanStatus, name='loan_status'),
        default=LoanStatus.ACTIVE, nullable=False, index=True)
    late_fee = Column(Numeric(10, 2), nullable=True)
    fee_paid = Column(Boolean, default=False, nullable=False)
    renewal_count = Column(Integer, default=0, nullable=False)
    max_renewals_allowed = Column(Integer, default=MAX_RENEWALS, nullable=False)
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('due_at > borrowed_at', name='ck_loans_due'),
        CheckConstraint(
            'returned_at IS NULL OR returned_at >= borrowed_at', name='ck_loans_returned'),
        CheckConstraint(
            'renewal_count >= 0 AND renewal_count <= max_renewals_allowed',
            name='ck_loans_renewals'),
        CheckConstraint('late_fee IS NULL OR late_fee >= 0', name='ck_loans_late_fee'),
    )
    __mapper_args__ = {'version_id_col': version}

    patron = relationship('Patron', back_populates='loans')
    item = relationship('Item', back_populates='loans')

    @classmethod
    def open(cls, patron, item, borrowed_at,
             period_days=LOAN_PERIOD_DAYS, max_renewals=MAX_RENEWALS):
        if period_days <= 0:
            raise InvalidValue(field='period_days', reason='must be positive')
        return cls(
            patron_id=patron.id,
            item_id=item.id,
            borrowed_at=borrowed_at,
            due_at=borrowed_at + datetime.timedelta(days=period_days),
            status=LoanStatus.ACTIVE,
            fee_paid=False,
            renewal_count=0,
            max_renewals_allowed=max_renewals,
            created_at=borrowed_at,
            updated_at=borrowed_at
        )

    @classmethod
    def open_loans(cls, session, patron_id=None, item_id=None):
        query = session.query(cls).filter(cls.status.in_(OPEN_STATUSES))
        if patron_id is not None:
            query = query.filter(cls.patron_id == patron_id)
        if item_id is not None:
            query = query.filter(cls.item_id == item_id)
        return query

    @classmethod
    def count_open(cls, session, patron_id=None, item_id=None):
        return cls.open_loans(session, patron_id=patron_id, item_id=item_id).count()

    @classmethod
    def history(cls, session, patron_id=None, item_id=None):
        query = session.query(cls)
        if patron_id is not None:
            query = query.filter(cls.patron_id == patron_id)
        if item_id is not None:
            query = query.filter(cls.item_id == item_id)
        return query.order_by(cls.borrowed_at.desc(), cls.id.desc()).all()

    @property
    def is_open(self):
        return self.status.is_open

    def is_overdue(self, as_of=None):
        return self.is_open and self.due_at < (as_of or utcnow())

    def current_status(self, as_of=None):
        """Stored status, with open loans past due reported as Overdue."""
        return LoanStatus.OVERDUE if self.is_overdue(as_of) else self.status

    def days_overdue(self, as_of=None):
        return fees.days_overdue(self.due_at, returned_at=self.returned_at, as_of=as_of)

    def accrued_fee(self, as_of=None, rate=LATE_FEE_PER_DAY):
        return fees.late_fee(self.due_at, returned_at=self.returned_at, as_of=as_of, rate=rate)

    def _require_open(self):
        if not self.is_open:
            raise LoanNotActive(loan_id=self.id, status=self.status.value)

    def _transition(self, target, at):
        if not self.status.can_become(target):
            raise LoanNotActive(loan_id=self.id, status=self.status.value)
        self.status = target
        self.updated_at = at

    def renew(self, at, period_days=LOAN_PERIOD_DAYS):
        self._require_open()
        if self.renewal_count >= self.max_renewals_allowed:
            raise RenewalLimitExceeded(
                loan_id=self.id,
                renewal_count=self.renewal_count,
                max_renewals_allowed=self.max_renewals_allowed)
        self._transition(LoanStatus.ACTIVE, at)
        self.due_at = self.due_at + datetime.timedelta(days=period_days)
        self.renewal_count += 1

    def close(self, at, rate=LATE_FEE_PER_DAY):
        """Marks the loan returned at `at` and returns the late fee owed,
        or None when it came back on time."""
        self._require_open()
        if at < self.borrowed_at:
            raise InvalidValue(field='returned_at', reason='cannot precede borrowed_at')
        days_late = fees.days_overdue(self.due_at, returned_at=at)
        if days_late == 0:
            self._transition(LoanStatus.RETURNED, at)
            self.late_fee = None
        else:
            self._transition(LoanStatus.RETURNED_LATE, at)
            self.late_fee = fees.late_fee(self.due_at, returned_at=at, rate=rate)
        self.returned_at = at
        return self.late_fee

    def mark_lost(self, notes, at):
        self._transition(LoanStatus.LOST, at)
        self.notes = notes

    def mark_damaged(self, notes, at):
        self._transition(LoanStatus.DAMAGED, at)
        self.notes = notes

    def cancel(self, at):
        self._require_open()
        if self.renewal_count:
            raise LoanNotCancellable(loan_id=self.id, renewal_count=self.renewal_count)
        self._transition(LoanStatus.CANCELLED, at)

    def pay_fee(self, at):
        if not self.late_fee or self.fee_paid:
            raise NoFeeDue(loan_id=self.id)
        self.fee_paid = True
        self.updated_at = at
        return self.late_fee

    def __repr__(self):
        return f"<Loan {self.id} item={self.item_id} patron={self.patron_id} {self.status.value}>"


class ItemAudit(Base):
    """Row written by `DatabaseChangeLog` for every item change.

    `item_id` carries no foreign key so audit rows never constrain the
    catalog they describe.
    """
    __tablename__ = 'item_changes'

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, nullable=False, index=True)
    action = Column(String(10), nullable=False)
    old_code = Column(String(13))
    new_code = Column(String(13))
    old_title = Column(String(200))
    new_title = Column(String(200))
    old_available_copies = Column(Integer)
    new_available_copies = Column(Integer)
    old_total_copies = Column(Integer)
    new_total_copies = Column(Integer)
    old_is_retired = Column(Boolean)
    new_is_retired = Column(Boolean)
    changed_at = Column(DateTime, nullable=False)
    changed_by = Column(String(128), nullable=False)

    @classmethod
    def from_change(cls, change):
        before, after = change.before, change.after
        return cls(
            item_id=change.item_id,
            action=change.action.value,
            old_code=before.code if before else None,
            new_code=after.code,
            old_title=before.title if before else None,
            new_title=after.title,
            old_available_copies=before.available_copies if before else None,
            new_available_copies=after.available_copies,
            old_total_copies=before.total_copies if before else None,
            new_total_copies=after.total_copies,
            old_is_retired=before.is_retired if before else None,
            new_is_retired=after.is_retired,
            changed_at=change.changed_at,
            changed_by=change.changed_by
        )

    def describe(self):
        if self.action == ChangeAction.INSERT.value:
            return f"Item created: '{self.new_title}' (code: {self.new_code})"
        changes = []
        if self.old_title != self.new_title:
            changes.append(f"Title: '{self.old_title}' -> '{self.new_title}'")
        if self.old_code != self.new_code:
            changes.append(f"Code: {self.old_code} -> {self.new_code}")
        if self.old_available_copies != self.new_available_copies:
            changes.append(
                f"Available copies: {self.old_available_copies} -> {self.new_available_copies}")
        if self.old_total_copies != self.new_total_copies:
            changes.append(f"Total copies: {self.old_total_copies} -> {self.new_total_copies}")
        if self.old_is_retired != self.new_is_retired:
            changes.append("Retired" if self.new_is_retired else "Reinstated")
        if not changes:
            return "Item updated (no tracked fields changed)"
        return f"Item updated: {', '.join(changes)}"


Item.loans = relationship('Loan', back_populates='item')
Patron.loans = relationship('Loan', back_populates='patron')
