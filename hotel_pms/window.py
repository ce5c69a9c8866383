"""Stay windows: the instants between which a stay holds its room."""
from datetime import date, datetime
from typing import NamedTuple

from .clock import as_date, compose_local
from .policy import PolicyHours


class StayWindow(NamedTuple):
    check_in_at: datetime
    check_out_at: datetime

    def covers(self, now: datetime) -> bool:
        # Half open: at the check-out instant the guest has already left
        return self.check_in_at <= now < self.check_out_at

    def departed(self, now: datetime) -> bool:
        return now >= self.check_out_at


def stay_window(stay, hours: PolicyHours, tz: str) -> StayWindow:
    return StayWindow(
        check_in_at=compose_local(stay.check_in, hours.in_hour, tz),
        check_out_at=compose_local(stay.check_out, hours.out_hour, tz),
    )


def covers_today(stay, today: date) -> bool:
    """Date-level and inclusive on both ends"""
    return as_date(stay.check_in) <= today <= as_date(stay.check_out)


def is_future(stay, today: date) -> bool:
    return as_date(stay.check_in) > today


def ends_by(stay, today: date) -> bool:
    return as_date(stay.check_out) <= today
