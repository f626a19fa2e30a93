"""API dependencies"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from streamdash.core.exceptions import InvalidTimeRange
from streamdash.core.influx import influx_client
from streamdash.core.redis import redis_client
from streamdash.services.bandwidth_service import BandwidthQueryEngine
from streamdash.services.flux import format_time


def get_bandwidth_engine() -> BandwidthQueryEngine:
    """Engine bound to the process-wide InfluxDB and Redis clients"""
    return BandwidthQueryEngine(influx_client, redis_client)


def parse_int(value: Optional[str], default: int, minimum: int = 1) -> int:
    """Lenient integer parsing for query-string values"""
    try:
        parsed = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        parsed = default
    return max(parsed, minimum)


def _is_time(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        format_time(value)
    except InvalidTimeRange:
        return False
    return True


def resolve_time_range(
    start_time: Optional[str],
    end_time: Optional[str],
    date_range: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, str]:
    """Pick the query range from explicit bounds or a comma-joined dateRange.

    Falls back to the last 24 hours when neither yields two valid bounds.
    """
    if date_range and not (start_time and end_time):
        parts = [part.strip() for part in date_range.split(",")]
        if len(parts) == 2:
            start_time, end_time = parts

    if _is_time(start_time) and _is_time(end_time):
        return start_time, end_time

    now = now or datetime.now(timezone.utc)
    start = now - timedelta(days=1)
    return (
        start.isoformat().replace("+00:00", "Z"),
        now.isoformat().replace("+00:00", "Z"),
    )
