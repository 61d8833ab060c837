"""Suggest the date range of the next settlement draft."""

import logging
from datetime import date, timedelta

from .models import PeriodSuggestion

logger = logging.getLogger(__name__)


def suggest_period(
    oldest_unsettled_date: date | None,
    newest_unsettled_date: date | None,
    unsettled_count: int,
    last_confirmed_end: date | None,
    has_unsettled_on_last_confirmed: bool,
    today: date,
) -> PeriodSuggestion:
    """
    Compute a sensible start/end for the next draft.

    Rules:
    - End: newest unsettled payment date, or today when there is none.
    - Start after a confirmed session: the day after its end, or the end day
      itself when unsettled payments exist on that exact day.
    - Start without a prior session: oldest unsettled date, or the 1st of
      the current month.
    - Back-dated payments older than the start pull the start back.
    - The start never passes the end.

    Args:
        oldest_unsettled_date: Oldest unsettled payment date, if any
        newest_unsettled_date: Newest unsettled payment date, if any
        unsettled_count: Number of unsettled payments
        last_confirmed_end: End date of the last confirmed session, if any
        has_unsettled_on_last_confirmed: Unsettled payments exist on
            last_confirmed_end
        today: Current date

    Returns:
        PeriodSuggestion with suggested_start <= suggested_end
    """
    suggested_end = newest_unsettled_date or today

    if last_confirmed_end is not None:
        if has_unsettled_on_last_confirmed:
            suggested_start = last_confirmed_end
        else:
            suggested_start = last_confirmed_end + timedelta(days=1)
    else:
        suggested_start = oldest_unsettled_date or today.replace(day=1)

    if oldest_unsettled_date is not None and oldest_unsettled_date < suggested_start:
        logger.debug(
            f"Back-dated payment on {oldest_unsettled_date} pulls start "
            f"back from {suggested_start}"
        )
        suggested_start = oldest_unsettled_date

    if suggested_start > suggested_end:
        suggested_start = suggested_end

    return PeriodSuggestion(
        suggested_start=suggested_start,
        suggested_end=suggested_end,
        oldest_unsettled_date=oldest_unsettled_date,
        last_confirmed_end=last_confirmed_end,
        unsettled_count=unsettled_count,
    )
