from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from autocat.config_manager import ConfigManager
from autocat.models import EnsureResult, RemoveResult, ScanResult
from autocat.scan_engine import ScanEngine
from autocat.scheduler import ScanScheduler

logger = logging.getLogger(__name__)


class CommandKind(str, Enum):
    RELOAD_CONFIG = "reload_config"
    SCAN = "scan"
    FORCE_SCAN = "force_scan"
    RESET_CATEGORIES = "reset_categories"


@dataclass
class Command:
    kind: CommandKind
    category_names: list[str] = field(default_factory=list)


@dataclass
class CommandResponse:
    success: bool
    stats: ScanResult | None = None
    removed: RemoveResult | None = None
    ensured: EnsureResult | None = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.stats is not None:
            payload["stats"] = self.stats.to_dict()
        if self.removed is not None:
            payload["removed"] = self.removed.to_dict()
        if self.ensured is not None:
            payload["ensured"] = self.ensured.to_dict()
        if self.error:
            payload["error"] = self.error
        return payload


def parse_command(action: str, category_names: list[str] | None = None) -> Command:
    try:
        kind = CommandKind(str(action or "").strip())
    except ValueError as exc:
        raise ValueError(f"Unknown action: {action}") from exc
    return Command(kind=kind, category_names=list(category_names or []))


class CommandDispatcher:
    def __init__(
        self,
        config_manager: ConfigManager,
        scan_engine: ScanEngine,
        scheduler: ScanScheduler,
    ) -> None:
        self.config_manager = config_manager
        self.scan_engine = scan_engine
        self.scheduler = scheduler

    def dispatch_action(self, action: str, category_names: list[str] | None = None) -> CommandResponse:
        try:
            command = parse_command(action, category_names)
        except ValueError as exc:
            return CommandResponse(success=False, error=str(exc))
        return self.dispatch(command)

    def dispatch(self, command: Command) -> CommandResponse:
        logger.info("Received command: %s", command.kind.value)
        try:
            if command.kind is CommandKind.RELOAD_CONFIG:
                return self._reload_config()
            if command.kind is CommandKind.SCAN:
                return self._scan(force=False)
            if command.kind is CommandKind.FORCE_SCAN:
                return self._scan(force=True)
            if command.kind is CommandKind.RESET_CATEGORIES:
                return self._reset_categories(command.category_names)
        except Exception as exc:
            logger.exception("Command %s failed", command.kind.value)
            return CommandResponse(success=False, error=f"{type(exc).__name__}: {exc}")
        return CommandResponse(success=False, error=f"Unknown action: {command.kind}")

    def _reload_config(self) -> CommandResponse:
        config = self.config_manager.load()
        logger.info(
            "Config loaded: %d categories, -%d to +%d days, interval %d minutes",
            len(config.categories),
            config.days_back,
            config.days_forward,
            config.interval_minutes,
        )
        ensured = self.scan_engine.ensure_categories(config.categories)
        self.scheduler.reconfigure(config.interval_minutes)
        return CommandResponse(success=True, ensured=ensured)

    def _scan(self, force: bool) -> CommandResponse:
        stats = self.scan_engine.run_once(trigger="force" if force else "manual", force=force)
        return CommandResponse(success=True, stats=stats)

    def _reset_categories(self, names: list[str]) -> CommandResponse:
        if not names:
            names = list(self.config_manager.load().categories)
        removed = self.scan_engine.remove_categories(names)
        return CommandResponse(success=True, removed=removed)
