from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterator

from autocat.caldav_client import CalDAVService
from autocat.models import CalendarInfo, CalendarRulesConfig, EventRecord

logger = logging.getLogger(__name__)


def mark_read_only(
    calendars: list[CalendarInfo],
    rules: CalendarRulesConfig,
    suggested_ids: set[str],
) -> list[CalendarInfo]:
    configured = set(rules.read_only_calendar_ids) | suggested_ids
    for calendar in calendars:
        if calendar.calendar_id in configured:
            calendar.read_only = True
    return calendars


class EventScanner:
    """Pulls events of every writable calendar inside one time window."""

    def __init__(self, service: CalDAVService, rules: CalendarRulesConfig) -> None:
        self.service = service
        self.rules = rules

    def calendars(self) -> list[CalendarInfo]:
        # Not guarded: a server that cannot list calendars fails the whole scan.
        calendars = self.service.list_calendars()
        suggested = self.service.suggest_read_only_calendar_ids(calendars, self.rules.read_only_keywords)
        return mark_read_only(calendars, self.rules, suggested)

    def scan(
        self,
        calendars: list[CalendarInfo],
        start: datetime,
        end: datetime,
        failures: list[CalendarInfo] | None = None,
    ) -> Iterator[tuple[CalendarInfo, list[EventRecord]]]:
        for calendar in calendars:
            if calendar.read_only:
                logger.info("Skipping read-only calendar: %s", calendar.name)
                continue
            try:
                events = self.service.fetch_events(calendar.calendar_id, start, end)
            except Exception:
                logger.exception("Error retrieving events from calendar %s", calendar.name)
                if failures is not None:
                    failures.append(calendar)
                continue
            logger.info("Calendar %s: %d events found", calendar.name, len(events))
            yield calendar, events
