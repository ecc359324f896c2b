from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

import caldav
from caldav.lib import error as caldav_error
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from autocat.models import CalendarInfo, CalDAVConfig, EventRecord, date_to_datetime

logger = logging.getLogger(__name__)

PRIVILEGE_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:current-user-privilege-set/></d:prop></d:propfind>'
)
# RFC 3744: "all" and "write" both aggregate "write-content".
WRITE_PRIVILEGES = {"{DAV:}all", "{DAV:}write", "{DAV:}write-content"}


def _coerce_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return date_to_datetime(value)
    return None


def current_user_privileges(tree: Any) -> set[str] | None:
    """Privilege tags granted in a PROPFIND answer, or None when the server sent no privilege set."""
    if tree is None:
        return None
    privileges: set[str] | None = None
    for privilege_set in tree.iter("{DAV:}current-user-privilege-set"):
        if privileges is None:
            privileges = set()
        for privilege in privilege_set.iter("{DAV:}privilege"):
            privileges.update(str(child.tag) for child in privilege)
    return privileges


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def _decoded(vevent: ICEvent, name: str) -> Any:
    if vevent.get(name) is None:
        return None
    return vevent.decoded(name)


def read_categories(vevent: ICEvent) -> list[str]:
    raw = vevent.get("CATEGORIES")
    if raw is None:
        return []
    entries = raw if isinstance(raw, list) else [raw]
    categories: list[str] = []
    for entry in entries:
        values = getattr(entry, "cats", None)
        if values is None:
            values = str(entry).split(",")
        categories.extend(str(value).strip() for value in values if str(value).strip())
    return categories


def write_categories(vevent: ICEvent, categories: list[str]) -> None:
    vevent.pop("CATEGORIES", None)
    if categories:
        vevent.add("CATEGORIES", list(categories))


def _find_target_component(
    calendar_obj: ICalendar, uid: str, recurrence_id: datetime | None
) -> ICEvent | None:
    master: ICEvent | None = None
    for vevent in calendar_obj.walk("VEVENT"):
        if uid and str(vevent.get("UID", "")).strip() != uid:
            continue
        component_recurrence = _coerce_datetime(_decoded(vevent, "RECURRENCE-ID"))
        if component_recurrence is None:
            if master is None:
                master = vevent
            continue
        if recurrence_id is not None and component_recurrence == recurrence_id:
            return vevent
    # Occurrences without an override share the master's CATEGORIES.
    return master


class CalDAVService:
    def __init__(self, config: CalDAVConfig) -> None:
        self.config = config
        self._client: Any = None
        self._principal: Any = None
        self._calendar_cache: dict[str, Any] = {}

    def _connect(self) -> None:
        if self._principal is not None:
            return
        if not self.config.base_url or not self.config.username:
            raise RuntimeError("CalDAV config is incomplete.")
        self._client = caldav.DAVClient(
            url=self.config.base_url,
            username=self.config.username,
            password=self.config.password,
        )
        self._principal = self._client.principal()

    def list_calendars(self) -> list[CalendarInfo]:
        self._connect()
        self._calendar_cache = {}
        calendars: list[CalendarInfo] = []
        for calendar in self._principal.calendars():
            calendar_id = str(calendar.url)
            name = getattr(calendar, "name", "") or calendar_id
            self._calendar_cache[calendar_id] = calendar
            calendars.append(
                CalendarInfo(
                    calendar_id=calendar_id,
                    name=name,
                    url=calendar_id,
                    read_only=self._is_read_only(calendar_id),
                )
            )
        return calendars

    def _is_read_only(self, calendar_url: str) -> bool:
        try:
            response = self._client.propfind(calendar_url, props=PRIVILEGE_QUERY, depth=0)
        except caldav_error.DAVError:
            logger.warning("Privileges of %s could not be read, treating it as writable", calendar_url, exc_info=True)
            return False
        privileges = current_user_privileges(getattr(response, "tree", None))
        if privileges is None:
            return False
        return not privileges & WRITE_PRIVILEGES

    @staticmethod
    def suggest_read_only_calendar_ids(calendars: list[CalendarInfo], keywords: list[str]) -> set[str]:
        normalized_keywords = [x.strip().lower() for x in keywords if x.strip()]
        if not normalized_keywords:
            return set()
        suggested: set[str] = set()
        for cal in calendars:
            name_lower = cal.name.lower()
            if any(keyword in name_lower for keyword in normalized_keywords):
                suggested.add(cal.calendar_id)
        return suggested

    def _get_calendar(self, calendar_id: str) -> Any:
        if calendar_id in self._calendar_cache:
            return self._calendar_cache[calendar_id]
        for calendar in self._principal.calendars():
            cid = str(calendar.url)
            self._calendar_cache[cid] = calendar
        if calendar_id not in self._calendar_cache:
            raise RuntimeError(f"Calendar not found: {calendar_id}")
        return self._calendar_cache[calendar_id]

    def fetch_events(self, calendar_id: str, start: datetime, end: datetime) -> list[EventRecord]:
        self._connect()
        calendar = self._get_calendar(calendar_id)
        resources = calendar.search(start=start, end=end, event=True, expand=True)
        events: list[EventRecord] = []
        for item in resources:
            events.extend(self._parse_resource(calendar_id, item))
        return events

    def _parse_resource(self, calendar_id: str, resource: Any) -> list[EventRecord]:
        calendar_obj = ICalendar.from_ical(_decode_raw_ical(resource.data))
        href = str(getattr(resource, "url", "") or "")
        return [
            EventRecord(
                calendar_id=calendar_id,
                uid=str(vevent.get("UID", "")).strip(),
                summary=str(vevent.get("SUMMARY", "")).strip(),
                categories=read_categories(vevent),
                href=href,
                recurrence_id=_coerce_datetime(_decoded(vevent, "RECURRENCE-ID")),
            )
            for vevent in calendar_obj.walk("VEVENT")
        ]

    def modify_event(self, calendar_id: str, updated: EventRecord, original: EventRecord) -> None:
        """Store ``updated`` in place of ``original`` on the server.

        Only the CATEGORIES of the matching VEVENT are rewritten; every other
        property of the stored object is kept as the server returned it.
        """
        self._connect()
        if not original.href:
            raise RuntimeError(f"Event {original.uid or original.summary!r} has no resource URL.")
        calendar = self._get_calendar(calendar_id)
        resource = calendar.event_by_url(original.href)
        calendar_obj = ICalendar.from_ical(_decode_raw_ical(resource.data))
        target = _find_target_component(calendar_obj, original.uid, original.recurrence_id)
        if target is None:
            raise RuntimeError(f"VEVENT {original.uid!r} missing in calendar resource.")

        write_categories(target, updated.categories)
        resource.data = calendar_obj.to_ical().decode("utf-8")
        resource.save()
        logger.debug("Replaced %s in %s with categories %s", original.href, calendar_id, updated.categories)
