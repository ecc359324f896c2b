from __future__ import annotations

import copy
import errno
import json
import os
import re
import threading
from pathlib import Path
from typing import Any

import yaml

from autocat.models import AppConfig, default_app_config, snake_case_keys

COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

# Maps that a payload replaces instead of merging into.
_REPLACED_KEYS = {"categories"}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict) and key not in _REPLACED_KEYS:
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_category(keyword: str, color: str) -> None:
    if not keyword:
        raise ValueError("Please enter a keyword")
    if "," in keyword:
        raise ValueError(f"Keyword must not contain a comma: {keyword!r}")
    if not isinstance(color, str) or not COLOR_PATTERN.match(color):
        raise ValueError(f"Invalid color for {keyword!r}: {color!r}")


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        self._ensure_exists()

    def _ensure_exists(self) -> None:
        if self.config_path.exists():
            return
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            with self.config_path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
            return AppConfig.from_dict(data)

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            config_dict = config.to_dict()
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                self._dump(config_dict, handle)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # Some bind-mounted single files in containers cannot be atomically replaced.
                if exc.errno != errno.EBUSY:
                    raise
                with self.config_path.open("w", encoding="utf-8") as handle:
                    self._dump(config_dict, handle)
                if tmp_path.exists():
                    tmp_path.unlink()

    @staticmethod
    def _dump(config_dict: dict[str, Any], handle: Any) -> None:
        yaml.safe_dump(
            config_dict,
            handle,
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )

    def update(self, payload: dict[str, Any]) -> AppConfig:
        categories = payload.get("categories")
        if categories is not None:
            if not isinstance(categories, dict):
                raise ValueError("categories must be an object")
            for keyword, color in categories.items():
                validate_category(str(keyword).strip(), color)
        with self._lock:
            current = self.load().to_dict()
            merged = _deep_merge(current, payload)
            config = AppConfig.from_dict(merged)
            self.save(config)
            return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        if config.get("caldav", {}).get("password"):
            config["caldav"]["password"] = "***"
        return config

    def export_json(self) -> str:
        return json.dumps(self.load().portable_dict(), indent=2, ensure_ascii=False)

    def import_json(self, text: str) -> AppConfig:
        """Replace the portable settings with an exported settings file.

        Missing top-level keys fall back to the defaults; the CalDAV
        connection and calendar rules of the current config are kept.
        """
        try:
            imported = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON: {exc.msg}") from exc
        if not isinstance(imported, dict):
            raise ValueError("Invalid config: expected an object")
        imported = snake_case_keys(imported)
        categories = imported.get("categories")
        if not isinstance(categories, dict):
            raise ValueError("Invalid config: missing categories")
        for keyword, color in categories.items():
            validate_category(str(keyword).strip(), color)

        with self._lock:
            current = self.load()
            merged = {**default_app_config().portable_dict(), **imported}
            merged["caldav"] = current.to_dict()["caldav"]
            merged["calendar_rules"] = current.to_dict()["calendar_rules"]
            merged.setdefault("timezone", current.timezone)
            config = AppConfig.from_dict(merged)
            self.save(config)
            return config

    def add_category(self, keyword: str, color: str) -> AppConfig:
        keyword = str(keyword or "").strip()
        validate_category(keyword, color)
        with self._lock:
            config = self.load()
            if keyword in config.categories:
                raise ValueError("Keyword already exists")
            config.categories[keyword] = color
            self.save(config)
            return config

    def remove_category(self, keyword: str) -> AppConfig:
        with self._lock:
            config = self.load()
            if keyword not in config.categories:
                raise KeyError(keyword)
            del config.categories[keyword]
            self.save(config)
            return config
