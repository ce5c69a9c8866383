"""Daily check for stays that need an operator.

Flags, never transitions: a booking whose check-in date has gone by without a
check-in gets ``missed_checkin``, an occupancy past its check-out date gets
``missed_checkout``. Statuses are left for a person to resolve.
"""
import logging
from typing import NamedTuple

from .clock import local_today, utc_now

logger = logging.getLogger(__name__)

MISSED_CHECKIN = 'missed_checkin'
MISSED_CHECKOUT = 'missed_checkout'


class OverdueResult(NamedTuple):
    missed_check_ins: int
    missed_check_outs: int

    @property
    def total(self):
        return self.missed_check_ins + self.missed_check_outs


class OverdueDetector:

    def __init__(self, repository, policy, clock=None):
        self.repository = repository
        self.policy = policy
        self.clock = clock or utc_now

    def check_overdue_stays(self) -> OverdueResult:
        today = local_today(self.clock(), self.policy.timezone)
        with self.repository.unit_of_work():
            missed_in = self.repository.find_missed_check_ins(today, MISSED_CHECKIN)
            for stay in missed_in:
                self.repository.flag_needs_action(stay, MISSED_CHECKIN)

            missed_out = self.repository.find_missed_check_outs(today, MISSED_CHECKOUT)
            for stay in missed_out:
                self.repository.flag_needs_action(stay, MISSED_CHECKOUT)

        result = OverdueResult(len(missed_in), len(missed_out))
        logger.info("Overdue check for %s (%s): %s stays flagged (%s missed check-ins, %s missed check-outs)",
                    today.isoformat(), self.policy.timezone, result.total,
                    result.missed_check_ins, result.missed_check_outs)
        return result
