"""
Document numbers: ``{prefix}-{YYYYMMDD}-{NNNN}``.

The day is taken in the branch's timezone. The sequence continues from the
highest number already issued with the same prefix and day, starting at 1.
"""

from datetime import datetime
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pos_shared.config.constants import ORDER_SEQUENCE_WIDTH
from pos_shared.config.logging import get_logger

logger = get_logger(__name__)


def branch_day(timezone_name: str | None, now: datetime) -> str:
    try:
        zone = ZoneInfo(timezone_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown branch timezone, using UTC", timezone=timezone_name)
        zone = ZoneInfo("UTC")
    return now.astimezone(zone).strftime("%Y%m%d")


def number_prefix(*parts: str) -> str:
    """``number_prefix("MAIN", "20240105")`` -> ``"MAIN-20240105-"``"""
    return "-".join(parts) + "-"


def parse_sequence(number: str, prefix: str) -> int | None:
    if not number or not number.startswith(prefix):
        return None
    suffix = number[len(prefix):]
    return int(suffix) if suffix.isdigit() else None


def next_number(prefix: str, existing: Iterable[str]) -> str:
    sequences = [parse_sequence(number, prefix) for number in existing]
    highest = max((seq for seq in sequences if seq is not None), default=0)
    return f"{prefix}{highest + 1:0{ORDER_SEQUENCE_WIDTH}d}"


def order_number_prefix(branch_code: str, now: datetime, timezone_name: str | None) -> str:
    return number_prefix(branch_code, branch_day(timezone_name, now))


def purchase_number_prefix(branch_code: str, kind: str, now: datetime, timezone_name: str | None) -> str:
    return number_prefix(branch_code, kind, branch_day(timezone_name, now))
