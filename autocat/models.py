from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any


DEFAULT_CATEGORIES = {
    "Auslieferung": "#8B0000",
    "Abholung": "#FF0000",
    "Rückgabe": "#FFD700",
    "Rücknahme": "#FFFF00",
    "Ferien": "#800080",
    "Linth": "#0000FF",
}

# Keys shared with the add-on's exported settings file.
PORTABLE_KEYS = ("categories", "days_back", "days_forward", "interval_minutes", "full_width_colors")

_CAMEL_CASE_KEYS = {
    "days_back": "daysBack",
    "days_forward": "daysForward",
    "interval_minutes": "intervalMinutes",
    "full_width_colors": "fullWidthColors",
}

_MISSING = object()


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def date_to_datetime(value: datetime | date | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _config_value(data: dict[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    alias = _CAMEL_CASE_KEYS.get(key)
    if alias and alias in data:
        return data[alias]
    return _MISSING


def snake_case_keys(data: dict[str, Any]) -> dict[str, Any]:
    renamed = {alias: key for key, alias in _CAMEL_CASE_KEYS.items()}
    output: dict[str, Any] = {}
    for key, value in data.items():
        output[renamed.get(key, key)] = value
    return output


def _non_negative_int(value: Any, default: int) -> int:
    if value is _MISSING or value is None:
        return default
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default


def normalize_categories(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return dict(DEFAULT_CATEGORIES)
    normalized: dict[str, str] = {}
    for name, color in raw.items():
        display_name = str(name).strip()
        if not display_name:
            continue
        normalized[display_name] = str(color or "").strip()
    return normalized


@dataclass
class CalDAVConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalDAVConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip(),
            username=str(data.get("username", "")).strip(),
            password=str(data.get("password", "")).strip(),
        )


@dataclass
class CalendarRulesConfig:
    read_only_calendar_ids: list[str] = field(default_factory=list)
    read_only_keywords: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarRulesConfig":
        data = data or {}
        return cls(
            read_only_calendar_ids=[
                str(x).strip() for x in data.get("read_only_calendar_ids", []) if str(x).strip()
            ],
            read_only_keywords=[str(x).strip() for x in data.get("read_only_keywords", []) if str(x).strip()],
        )


@dataclass(frozen=True)
class Rule:
    keyword: str
    category: str


def build_rules(categories: dict[str, str]) -> list[Rule]:
    return [Rule(keyword=name, category=name) for name in categories]


@dataclass
class AppConfig:
    categories: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORIES))
    days_back: int = 1
    days_forward: int = 90
    interval_minutes: int = 10
    full_width_colors: bool = True
    timezone: str = "UTC"
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    calendar_rules: CalendarRulesConfig = field(default_factory=CalendarRulesConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        categories = _config_value(data, "categories")
        full_width = _config_value(data, "full_width_colors")
        return cls(
            categories=dict(DEFAULT_CATEGORIES) if categories is _MISSING else normalize_categories(categories),
            days_back=_non_negative_int(_config_value(data, "days_back"), 1),
            days_forward=_non_negative_int(_config_value(data, "days_forward"), 90),
            interval_minutes=_non_negative_int(_config_value(data, "interval_minutes"), 10),
            full_width_colors=True if full_width is _MISSING else bool(full_width),
            timezone=str(data.get("timezone", "UTC") or "").strip() or "UTC",
            caldav=CalDAVConfig.from_dict(data.get("caldav")),
            calendar_rules=CalendarRulesConfig.from_dict(data.get("calendar_rules")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def portable_dict(self) -> dict[str, Any]:
        payload = self.to_dict()
        return {key: payload[key] for key in PORTABLE_KEYS}

    def rules(self) -> list[Rule]:
        return build_rules(self.categories)


@dataclass
class CalendarInfo:
    calendar_id: str
    name: str
    url: str
    read_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EventRecord:
    calendar_id: str
    uid: str
    summary: str = ""
    categories: list[str] = field(default_factory=list)
    href: str = ""
    recurrence_id: datetime | None = None

    def clone(self) -> "EventRecord":
        return EventRecord(
            calendar_id=self.calendar_id,
            uid=self.uid,
            summary=self.summary,
            categories=list(self.categories),
            href=self.href,
            recurrence_id=self.recurrence_id,
        )

    def with_updates(self, **kwargs: Any) -> "EventRecord":
        copied = self.clone()
        for key, value in kwargs.items():
            setattr(copied, key, value)
        return copied


@dataclass
class ScanDetail:
    title: str
    category: str
    calendar: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanResult:
    processed: int = 0
    modified: int = 0
    failed: int = 0
    last_run: datetime | None = None
    details: list[ScanDetail] = field(default_factory=list)

    @classmethod
    def started_now(cls) -> "ScanResult":
        return cls(last_run=datetime.now(timezone.utc))

    def record_modification(self, *, title: str, category: str, calendar: str) -> None:
        self.modified += 1
        self.details.append(ScanDetail(title=title, category=category, calendar=calendar))

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "modified": self.modified,
            "failed": self.failed,
            "last_run": serialize_datetime(self.last_run),
            "details": [detail.to_dict() for detail in self.details],
        }


@dataclass
class EnsureResult:
    created: int = 0
    existing: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RemoveResult:
    removed_colors: int = 0
    removed_names: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


def scan_window(now: datetime, days_back: int, days_forward: int) -> tuple[datetime, datetime]:
    now_tz = _ensure_tz(now)
    today = now_tz.date()
    start_date = today - timedelta(days=max(0, int(days_back)))
    end_date = today + timedelta(days=max(0, int(days_forward)))
    start = datetime.combine(start_date, time.min, tzinfo=now_tz.tzinfo)
    end = datetime.combine(end_date, time.max, tzinfo=now_tz.tzinfo)
    return start, end
