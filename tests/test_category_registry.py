import sqlite3
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from autocat.category_registry import CATEGORY_NAMES_KEY, CategoryRegistry, color_pref_key
from autocat.state_store import StateStore


class CategoryRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = StateStore(str(Path(self.temp_dir.name) / "state.db"))
        self.registry = CategoryRegistry(self.store)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_color_pref_key_uses_encoded_name(self) -> None:
        self.assertEqual(color_pref_key("Rückgabe"), "calendar.category.color.r-uxfc-ckgabe")

    def test_ensure_creates_then_reports_existing(self) -> None:
        colors = {"Auslieferung": "#8B0000", "Rückgabe": "#FFD700"}
        first = self.registry.ensure_categories(colors)
        self.assertEqual((first.created, first.existing, first.total), (2, 0, 2))
        self.assertEqual(self.store.get_pref(CATEGORY_NAMES_KEY), "Auslieferung,Rückgabe")
        self.assertEqual(self.store.get_pref(color_pref_key("Rückgabe")), "#FFD700")

        second = self.registry.ensure_categories(colors)
        self.assertEqual((second.created, second.existing, second.total), (0, 2, 2))

    def test_ensure_keeps_foreign_names_and_updates_changed_color(self) -> None:
        self.store.set_pref(CATEGORY_NAMES_KEY, " Privat , ,Ferien")
        self.store.set_pref(color_pref_key("Ferien"), "#000000")
        result = self.registry.ensure_categories({"Ferien": "#800080"})
        self.assertEqual((result.created, result.existing), (1, 0))
        self.assertEqual(self.store.get_pref(color_pref_key("Ferien")), "#800080")
        self.assertEqual(self.registry.known_category_names(), ["Privat", "Ferien"])

    def test_ensure_writes_names_list_once(self) -> None:
        with mock.patch.object(self.store, "set_pref", wraps=self.store.set_pref) as set_pref:
            self.registry.ensure_categories({"A": "#111111", "B": "#222222", "C": "#333333"})
        name_writes = [call for call in set_pref.call_args_list if call.args[0] == CATEGORY_NAMES_KEY]
        self.assertEqual(len(name_writes), 1)
        self.assertEqual(name_writes[0].args[1], "A,B,C")

    def test_name_match_is_case_preserving(self) -> None:
        self.store.set_pref(CATEGORY_NAMES_KEY, "ferien")
        self.store.set_pref(color_pref_key("Ferien"), "#800080")
        result = self.registry.ensure_categories({"Ferien": "#800080"})
        self.assertEqual(result.created, 1)
        self.assertEqual(self.registry.known_category_names(), ["ferien", "Ferien"])

    def test_remove_absent_category_counts_color_clear(self) -> None:
        result = self.registry.remove_categories(["Ferien"])
        self.assertEqual((result.removed_colors, result.removed_names), (1, 0))
        self.assertIsNone(self.store.get_pref(CATEGORY_NAMES_KEY))

    def test_remove_existing_category(self) -> None:
        self.registry.ensure_categories({"Ferien": "#800080", "Linth": "#0000FF"})
        result = self.registry.remove_categories(["Ferien"])
        self.assertEqual((result.removed_colors, result.removed_names), (1, 1))
        self.assertIsNone(self.store.get_pref(color_pref_key("Ferien")))
        self.assertEqual(self.registry.known_category_names(), ["Linth"])

    def test_remove_swallows_clear_failure(self) -> None:
        self.registry.ensure_categories({"Ferien": "#800080"})
        with mock.patch.object(self.store, "clear_pref", side_effect=sqlite3.OperationalError("locked")):
            result = self.registry.remove_categories(["Ferien"])
        self.assertEqual((result.removed_colors, result.removed_names), (0, 1))
        self.assertEqual(self.registry.known_category_names(), [])

    def _failing_set_pref(self, failing_key: str):
        real_set_pref = self.store.set_pref

        def set_pref(key: str, value: str) -> None:
            if key == failing_key:
                raise sqlite3.OperationalError("database is locked")
            real_set_pref(key, value)

        return mock.patch.object(self.store, "set_pref", side_effect=set_pref)

    def test_ensure_continues_after_failed_color_write(self) -> None:
        colors = {"Auslieferung": "#8B0000", "Abholung": "#FF0000", "Ferien": "#800080"}
        with self._failing_set_pref(color_pref_key("Abholung")):
            with self.assertLogs("autocat.category_registry", level="WARNING"):
                result = self.registry.ensure_categories(colors)
        self.assertEqual((result.created, result.existing, result.total), (2, 0, 3))
        self.assertEqual(self.registry.known_category_names(), ["Auslieferung", "Ferien"])
        self.assertIsNone(self.store.get_pref(color_pref_key("Abholung")))

    def test_ensure_survives_failed_names_list_write(self) -> None:
        with self._failing_set_pref(CATEGORY_NAMES_KEY):
            with self.assertLogs("autocat.category_registry", level="WARNING"):
                result = self.registry.ensure_categories({"Ferien": "#800080"})
        self.assertEqual(result.created, 1)
        self.assertEqual(self.store.get_pref(color_pref_key("Ferien")), "#800080")
        self.assertIsNone(self.store.get_pref(CATEGORY_NAMES_KEY))


if __name__ == "__main__":
    unittest.main()
