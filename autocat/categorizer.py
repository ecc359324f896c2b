from __future__ import annotations

import logging
from typing import Callable, Iterable

from autocat.models import CalendarInfo, EventRecord, Rule, ScanResult

logger = logging.getLogger(__name__)

ReplaceEvent = Callable[[EventRecord, EventRecord], None]


def match_rule(title: str, rules: Iterable[Rule]) -> Rule | None:
    """Return the first rule whose keyword occurs in ``title``, ignoring case."""
    if not title:
        return None
    title_lower = title.lower()
    for rule in rules:
        if rule.keyword.lower() in title_lower:
            return rule
    return None


def planned_categories(current: list[str], rule: Rule, force: bool) -> list[str] | None:
    """Category list the event should carry after ``rule`` fired, or None to leave it alone."""
    if force:
        return [rule.category]
    if rule.category in current:
        return None
    return [*current, rule.category]


def apply_rules(
    calendar: CalendarInfo,
    events: Iterable[EventRecord],
    rules: list[Rule],
    force: bool,
    result: ScanResult,
    replace_event: ReplaceEvent,
) -> None:
    for event in events:
        result.processed += 1

        title = event.summary or ""
        rule = match_rule(title, rules)
        if rule is None:
            continue

        new_categories = planned_categories(list(event.categories), rule, force)
        if new_categories is None:
            continue

        updated = event.with_updates(categories=new_categories)
        try:
            replace_event(updated, event)
        except Exception:
            result.failed += 1
            logger.exception("Could not update %r in calendar %s", title, calendar.name)
            continue

        logger.info('"%s" -> %s%s', title, rule.category, " (forced)" if force else "")
        result.record_modification(title=title, category=rule.category, calendar=calendar.name)
