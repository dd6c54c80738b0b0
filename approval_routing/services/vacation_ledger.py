"""
Vacation ledger read port.

Answers two questions for the substitution resolver:
  - is user X away on date D?
  - who stands in for X while they are away?

``SqlVacationLedger`` reads ``vacation_schedules``; a schedule covers a
date when it is not cancelled and the date falls inside its inclusive
[start_date, end_date] range.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date

from sqlalchemy import select

from approval_routing.models import db
from approval_routing.models.organization import User
from approval_routing.models.vacation import VacationSchedule
from approval_routing.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class VacationLedger(ABC):
    """Read-only availability facts."""

    @abstractmethod
    def is_user_away(self, user_id: int, on_date: date) -> bool:
        ...

    @abstractmethod
    def get_active_substitute(self, user_id: int, on_date: date | None = None) -> User | None:
        """Substitute named on the schedule covering ``on_date`` (default today)."""


class SqlVacationLedger(VacationLedger):

    def _covering_schedule(self, user_id: int, on_date: date) -> VacationSchedule | None:
        return db.session.execute(
            select(VacationSchedule)
            .where(
                VacationSchedule.user_id == user_id,
                VacationSchedule.status != "cancelled",
                VacationSchedule.start_date <= on_date,
                VacationSchedule.end_date >= on_date,
            )
            .order_by(VacationSchedule.start_date.desc(), VacationSchedule.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def is_user_away(self, user_id, on_date):
        return self._covering_schedule(user_id, on_date) is not None

    def get_active_substitute(self, user_id, on_date=None):
        on_date = on_date or utcnow().date()
        schedule = self._covering_schedule(user_id, on_date)
        if schedule is None or schedule.substitute is None:
            return None
        if not schedule.substitute.is_active:
            logger.warning(
                "Substitute %s for user %s is inactive; ignoring",
                schedule.substitute_user_id, user_id,
            )
            return None
        logger.debug("User %s is on vacation, substitute is %s", user_id, schedule.substitute_user_id)
        return schedule.substitute
