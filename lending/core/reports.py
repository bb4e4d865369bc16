"""
    Read-only reports over committed loan state.

    Overdue is computed here from `due_at` at the requested time; the
    engine never stores it. Fees use the same function the engine posts
    at return time, so a report and a return made at the same instant
    agree to the cent.
"""

from lending.configs import LATE_FEE_PER_DAY
from lending.core import fees
from lending.core.models import Item, Patron, Loan, OPEN_STATUSES, LoanStatus
from lending.core.utils import utcnow
from lending.schemas.report import OverdueLoan


def overdue_loans(session, as_of=None, min_days_overdue=0, rate=LATE_FEE_PER_DAY):
    """Open loans past due at `as_of`, most overdue first."""
    as_of = as_of or utcnow()
    rows = session.query(Loan, Patron, Item).join(
        Patron, Loan.patron_id == Patron.id
    ).join(
        Item, Loan.item_id == Item.id
    ).filter(
        Loan.status.in_(OPEN_STATUSES),
        Loan.due_at < as_of
    ).all()

    report = []
    for loan, patron, item in rows:
        days = fees.days_overdue(loan.due_at, as_of=as_of)
        if days < min_days_overdue:
            continue
        report.append(OverdueLoan(
            loan_id=loan.id,
            patron_id=patron.id,
            patron_name=patron.name,
            patron_email=patron.email,
            item_id=item.id,
            code=item.code,
            title=item.title,
            borrowed_at=loan.borrowed_at,
            due_at=loan.due_at,
            days_overdue=days,
            calculated_late_fee=fees.late_fee(loan.due_at, as_of=as_of, rate=rate),
            status=LoanStatus.OVERDUE.value,
            notes=loan.notes
        ))
    report.sort(key=lambda row: (-row.days_overdue, row.due_at))
    return report
