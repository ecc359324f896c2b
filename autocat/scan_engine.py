from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autocat.caldav_client import CalDAVService
from autocat.categorizer import apply_rules
from autocat.category_registry import CategoryRegistry
from autocat.config_manager import ConfigManager
from autocat.models import (
    CalendarInfo,
    EnsureResult,
    RemoveResult,
    Rule,
    ScanResult,
    scan_window,
)
from autocat.scanner import EventScanner
from autocat.state_store import StateStore

logger = logging.getLogger(__name__)


def _resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return timezone.utc


def _duration_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


class ScanEngine:
    def __init__(self, config_manager: ConfigManager, state_store: StateStore) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.registry = CategoryRegistry(state_store)
        self._scan_lock = threading.Lock()
        self._last_result = ScanResult()

    def get_stats(self) -> ScanResult:
        return self._last_result

    def ensure_categories(self, color_map: dict[str, str] | None = None) -> EnsureResult:
        if color_map is None:
            color_map = self.config_manager.load().categories
        return self.registry.ensure_categories(color_map)

    def remove_categories(self, names: list[str]) -> RemoveResult:
        return self.registry.remove_categories(names)

    def list_calendars(self) -> list[CalendarInfo]:
        config = self.config_manager.load()
        scanner = EventScanner(CalDAVService(config.caldav), config.calendar_rules)
        return scanner.calendars()

    def run_once(self, trigger: str = "manual", force: bool = False, ensure: bool = True) -> ScanResult:
        config = self.config_manager.load()
        if ensure:
            self.ensure_categories(config.categories)
        rules = config.rules()
        if not rules:
            logger.info("No rules defined, skipping scan")
            return ScanResult()
        return self.apply_categories(
            rules,
            config.days_back,
            config.days_forward,
            force=force,
            trigger=trigger,
        )

    def apply_categories(
        self,
        rules: list[Rule],
        days_back: int,
        days_forward: int,
        force: bool = False,
        trigger: str = "manual",
    ) -> ScanResult:
        with self._scan_lock:
            return self._apply_locked(rules, days_back, days_forward, force, trigger)

    def _apply_locked(
        self,
        rules: list[Rule],
        days_back: int,
        days_forward: int,
        force: bool,
        trigger: str,
    ) -> ScanResult:
        started_at = datetime.now(timezone.utc)
        result = ScanResult.started_now()
        self._last_result = result
        logger.info(
            "Starting scan (%s): %d rules, -%d to +%d days, force=%s",
            trigger,
            len(rules),
            days_back,
            days_forward,
            force,
        )

        try:
            config = self.config_manager.load()
            service = CalDAVService(config.caldav)
            scanner = EventScanner(service, config.calendar_rules)
            calendars = scanner.calendars()
            window_start, window_end = scan_window(
                datetime.now(_resolve_timezone(config.timezone)), days_back, days_forward
            )
            logger.info("Found %d calendar(s), range %s to %s", len(calendars), window_start, window_end)

            failed_calendars: list[CalendarInfo] = []
            for calendar, events in scanner.scan(calendars, window_start, window_end, failed_calendars):

                def replace_event(updated, original, calendar_id=calendar.calendar_id):
                    service.modify_event(calendar_id, updated, original)

                apply_rules(calendar, events, rules, force, result, replace_event)
            result.failed += len(failed_calendars)
        except Exception as exc:
            logger.exception("Scan failed")
            self._record_run(
                trigger=trigger,
                force=force,
                status="error",
                message=f"{type(exc).__name__}: {exc}",
                started_at=started_at,
                result=result,
            )
            raise

        message = f"Processed {result.processed} events, {result.modified} modified."
        self._record_run(
            trigger=trigger,
            force=force,
            status="success",
            message=message,
            started_at=started_at,
            result=result,
        )
        logger.info("Scan done. %s", message)
        return result

    def _record_run(
        self,
        *,
        trigger: str,
        force: bool,
        status: str,
        message: str,
        started_at: datetime,
        result: ScanResult,
    ) -> None:
        try:
            self.state_store.record_scan_run(
                trigger=trigger,
                forced=force,
                status=status,
                message=message,
                duration_ms=_duration_ms(started_at),
                result=result,
            )
        except sqlite3.Error:
            logger.exception("Could not record scan run")
