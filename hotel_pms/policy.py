"""Policy hours: when a check-in or check-out takes effect for a room.

Precedence, first complete pair wins:

1. the room's own ``check_in_hour`` / ``check_out_hour``
2. the owning admin's hotel hours
3. the configured defaults

A pair is atomic. A room with only one hour set does not override anything,
and neither does a pair containing a value outside 0..23. Bad stored values
are skipped here, never raised: validation belongs to the write path.
"""
from typing import NamedTuple


class PolicyHours(NamedTuple):
    in_hour: int
    out_hour: int


def is_hour(value) -> bool:
    """True if value is an integer hour in the inclusive range [0..23]"""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 0 <= value <= 23


def is_hour_or_none(value) -> bool:
    """None means "follow the hotel defaults" on write"""
    return value is None or is_hour(value)


def _pair(source):
    if source is None:
        return None
    in_hour = getattr(source, 'check_in_hour', None)
    out_hour = getattr(source, 'check_out_hour', None)
    if is_hour(in_hour) and is_hour(out_hour):
        return PolicyHours(in_hour, out_hour)
    return None


def resolve_hours(room, policy) -> PolicyHours:
    """Effective (in_hour, out_hour) for a room under the given StatusPolicy"""
    return (
        _pair(room)
        or _pair(getattr(room, 'admin', None))
        or PolicyHours(policy.default_check_in_hour, policy.default_check_out_hour)
    )
