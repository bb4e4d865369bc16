import datetime
from decimal import Decimal

import pytest
from lending.core.exceptions import (
    InvalidValue,
    DuplicatePatron,
    PatronNotFound,
    MemberNotActive
)

NOW = datetime.datetime(2026, 3, 2, 10, 0, 0)


def test_enroll_defaults(lending, patron):
    assert patron.email == "ada@lovelace.org"
    assert patron.is_active is True
    assert patron.enrolled_at == NOW
    assert patron.membership_expires_at == datetime.datetime(2027, 3, 2, 10, 0, 0)
    assert patron.max_items_allowed == 5
    assert patron.outstanding_fees == Decimal("0")
    assert lending.patrons.find_by_email(" ADA@lovelace.org").id == patron.id
    assert lending.patrons.find_by_code("M-0001").id == patron.id


def test_enroll_with_terms(lending):
    expires = datetime.datetime(2026, 6, 1, 12, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=2)))
    patron = lending.patrons.enroll(
        "M-0200", "Short Term", "short@lovelace.org",
        membership_expires_at=expires, max_items_allowed=2)
    assert patron.membership_expires_at == datetime.datetime(2026, 6, 1, 10, 0)
    assert patron.max_items_allowed == 2


def test_duplicates_rejected(lending, patron):
    with pytest.raises(DuplicatePatron) as excinfo:
        lending.patrons.enroll("M-0002", "Someone Else", "ADA@LOVELACE.ORG")
    assert excinfo.value.context["field"] == "email"

    with pytest.raises(DuplicatePatron) as excinfo:
        lending.patrons.enroll("M-0001", "Someone Else", "else@lovelace.org")
    assert excinfo.value.context["field"] == "membership code"


@pytest.mark.parametrize("kwargs, field", [
    ({"email": "not-an-email"}, "email"),
    ({"name": "   "}, "name"),
    ({"max_items_allowed": 0}, "max_items_allowed"),
])
def test_invalid_enrollment(lending, kwargs, field):
    values = {"membership_code": "M-0300", "name": "Valid Name", "email": "valid@lovelace.org"}
    values.update(kwargs)
    with pytest.raises(InvalidValue) as excinfo:
        lending.patrons.enroll(**values)
    assert excinfo.value.context["field"] == field
    assert lending.patrons.find_by_code("M-0300") is None


def test_expiry_must_follow_enrollment(lending):
    with pytest.raises(InvalidValue):
        lending.patrons.enroll(
            "M-0400", "Already Expired", "expired@lovelace.org",
            membership_expires_at=NOW - datetime.timedelta(days=1))


def test_deactivate_and_reactivate(lending, item, patron):
    lending.patrons.deactivate(patron.id)
    assert lending.patrons.get(patron.id).is_active is False
    with pytest.raises(MemberNotActive):
        lending.create_loan(patron.id, item.id)

    lending.patrons.activate(patron.id)
    assert lending.create_loan(patron.id, item.id).patron_id == patron.id


def test_extend_membership(lending, patron):
    extended = lending.patrons.extend_membership(patron.id, 6)
    assert extended.membership_expires_at == datetime.datetime(2027, 9, 2, 10, 0, 0)
    with pytest.raises(InvalidValue):
        lending.patrons.extend_membership(patron.id, 0)
    with pytest.raises(PatronNotFound):
        lending.patrons.extend_membership(9999, 1)
