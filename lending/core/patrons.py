"""
    Patron maintenance: enrollment, activation and membership terms.
    Patrons are deactivated, never deleted.
"""

import logging
from pydantic import ValidationError
from lending.core.models import Patron
from lending.core.exceptions import PatronNotFound, DuplicatePatron, InvalidValue
from lending.core.utils import as_utc
from lending.schemas.patron import PatronEnrollment

logger = logging.getLogger(__name__)


class PatronService:

    def __init__(self, transactor):
        self.transactor = transactor

    @staticmethod
    def _patron(session, patron_id):
        patron = session.get(Patron, patron_id)
        if patron is None:
            raise PatronNotFound(patron_id=patron_id)
        return patron

    def enroll(self, membership_code, name, email, membership_expires_at=None,
               max_items_allowed=None, actor=None):
        try:
            enrollment = PatronEnrollment(
                membership_code=membership_code,
                name=name,
                email=email,
                membership_expires_at=membership_expires_at,
                max_items_allowed=max_items_allowed)
        except ValidationError as e:
            raise InvalidValue.from_validation(e) from e
        patron = self.transactor.run('enroll', self._enroll, enrollment, actor=actor)
        logger.info(f"patron {patron.id} ({patron.membership_code}) enrolled")
        return patron

    def _enroll(self, uow, enrollment):
        session = uow.session
        if Patron.by_code(session, enrollment.membership_code):
            raise DuplicatePatron(field='membership code', value=enrollment.membership_code)
        if Patron.by_email(session, enrollment.email):
            raise DuplicatePatron(field='email', value=enrollment.email.lower())
        expires_at = enrollment.membership_expires_at
        if expires_at is not None:
            expires_at = as_utc(expires_at)
        patron = Patron.enroll(
            enrollment.membership_code,
            enrollment.name,
            enrollment.email,
            enrolled_at=uow.now,
            membership_expires_at=expires_at,
            max_items_allowed=enrollment.max_items_allowed)
        session.add(patron)
        return patron

    def _update(self, operation, patron_id, change, actor=None):
        def apply(uow):
            patron = self._patron(uow.session, patron_id)
            change(patron, uow.now)
            return patron
        return self.transactor.run(operation, apply, actor=actor)

    def deactivate(self, patron_id, actor=None):
        return self._update(
            'deactivate', patron_id, lambda p, now: p.deactivate(at=now), actor=actor)

    def activate(self, patron_id, actor=None):
        return self._update(
            'activate', patron_id, lambda p, now: p.activate(at=now), actor=actor)

    def extend_membership(self, patron_id, months, actor=None):
        return self._update(
            'extend_membership', patron_id,
            lambda p, now: p.extend_membership(months, at=now), actor=actor)

    def get(self, patron_id):
        return self.transactor.read(self._patron, patron_id)

    def find_by_email(self, email):
        return self.transactor.read(Patron.by_email, email)

    def find_by_code(self, membership_code):
        return self.transactor.read(Patron.by_code, membership_code)
