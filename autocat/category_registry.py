from __future__ import annotations

import logging
import sqlite3

from autocat.encoding import encode_category_name
from autocat.models import EnsureResult, RemoveResult
from autocat.state_store import StateStore

logger = logging.getLogger(__name__)

CATEGORY_NAMES_KEY = "calendar.categories.names"
CATEGORY_COLOR_PREFIX = "calendar.category.color."


def color_pref_key(name: str) -> str:
    return f"{CATEGORY_COLOR_PREFIX}{encode_category_name(name)}"


def _split_names(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


class CategoryRegistry:
    """Known category names and their colors, kept in the preference store."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def known_category_names(self) -> list[str]:
        try:
            return _split_names(self.store.get_pref(CATEGORY_NAMES_KEY))
        except sqlite3.Error:
            logger.warning("Category names list could not be read, treating it as empty", exc_info=True)
            return []

    def _current_color(self, name: str) -> str | None:
        try:
            return self.store.get_pref(color_pref_key(name))
        except sqlite3.Error:
            logger.warning("Color for category %r could not be read", name, exc_info=True)
            return None

    def ensure_categories(self, color_map: dict[str, str]) -> EnsureResult:
        result = EnsureResult(total=len(color_map))
        names = self.known_category_names()
        names_changed = False

        for name, color in color_map.items():
            current_color = self._current_color(name)
            name_known = name in names
            color_matches = current_color == color

            if color_matches and name_known:
                result.existing += 1
                logger.debug("Category exists: %s (%s)", name, encode_category_name(name))
                continue

            if not color_matches:
                try:
                    self.store.set_pref(color_pref_key(name), color)
                except sqlite3.Error:
                    logger.warning("Color for category %r could not be written", name, exc_info=True)
                    continue
                if current_color:
                    logger.info("Color updated: %s = %s (was %s)", name, color, current_color)
                else:
                    logger.info("Color set: %s = %s", name, color)
            if not name_known:
                names.append(name)
                names_changed = True
                logger.info("Added to names list: %s", name)
            result.created += 1

        if names_changed:
            try:
                self.store.set_pref(CATEGORY_NAMES_KEY, ",".join(names))
            except sqlite3.Error:
                logger.warning("Category names list could not be written", exc_info=True)

        logger.info("Categories ensured: %d created, %d already existed", result.created, result.existing)
        return result

    def remove_categories(self, names_to_remove: list[str]) -> RemoveResult:
        result = RemoveResult()
        names = self.known_category_names()

        for name in names_to_remove:
            key = color_pref_key(name)
            try:
                self.store.clear_pref(key)
                result.removed_colors += 1
            except sqlite3.Error:
                logger.warning("Color pref %s could not be cleared", key, exc_info=True)

            if name in names:
                names.remove(name)
                result.removed_names += 1
                logger.info("Removed from names list: %s", name)

        if result.removed_names:
            try:
                self.store.set_pref(CATEGORY_NAMES_KEY, ",".join(names))
            except sqlite3.Error:
                logger.warning("Category names list could not be written", exc_info=True)

        logger.info(
            "Categories removed: %d colors, %d names", result.removed_colors, result.removed_names
        )
        return result
