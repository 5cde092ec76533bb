"""Current time information for the dimension prompt."""

from __future__ import annotations

import logging
from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import TimeContext

logger = logging.getLogger("qdg.time_context")

TIME_FORMAT = "%A, %B %d, %Y %H:%M:%S %Z"


def get_current_time_context(
    timezone: Optional[str] = None,
    locale: str = "en-US",
    now: Optional[datetime] = None,
) -> TimeContext:
    """Describe the current moment, optionally in a named IANA time zone.

    ``locale`` is accepted for compatibility with callers; formatting is
    always English. An unknown zone falls back to the local zone.
    """
    moment = now or datetime.now(dt_timezone.utc)
    if moment.tzinfo is None:
        moment = moment.astimezone()

    zone_name = None
    if timezone:
        try:
            moment = moment.astimezone(ZoneInfo(timezone))
            zone_name = timezone
        except (ZoneInfoNotFoundError, ValueError, OSError):
            logger.warning(f"Invalid timezone: {timezone}, using system timezone")

    if zone_name is None:
        moment = moment.astimezone()
        zone_name = moment.tzname() or "UTC"

    logger.debug(f"Time context for locale {locale}: {moment.isoformat()}")
    return TimeContext(
        timestamp=int(moment.timestamp() * 1000),
        formatted_time=moment.strftime(TIME_FORMAT),
        timezone=zone_name,
        year=moment.year,
        month=moment.month,
        day=moment.day,
        weekday=moment.strftime("%A"),
    )
