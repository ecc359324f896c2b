import unittest
from unittest import mock

from autocat.commands import Command, CommandDispatcher, CommandKind, parse_command
from autocat.models import AppConfig, EnsureResult, RemoveResult, ScanResult


class CommandDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config_manager = mock.Mock()
        self.config_manager.load.return_value = AppConfig.from_dict(
            {"categories": {"Ferien": "#800080", "Linth": "#0000FF"}, "interval_minutes": 15}
        )
        self.engine = mock.Mock()
        self.scheduler = mock.Mock()
        self.dispatcher = CommandDispatcher(self.config_manager, self.engine, self.scheduler)

    def test_parse_command(self) -> None:
        command = parse_command("force_scan")
        self.assertIs(command.kind, CommandKind.FORCE_SCAN)
        with self.assertRaises(ValueError):
            parse_command("injectStyles")

    def test_reload_config_ensures_and_reconfigures(self) -> None:
        self.engine.ensure_categories.return_value = EnsureResult(created=2, existing=0, total=2)
        response = self.dispatcher.dispatch(Command(CommandKind.RELOAD_CONFIG))
        self.assertTrue(response.success)
        self.engine.ensure_categories.assert_called_once_with({"Ferien": "#800080", "Linth": "#0000FF"})
        self.scheduler.reconfigure.assert_called_once_with(15)
        self.assertEqual(response.to_dict()["ensured"], {"created": 2, "existing": 0, "total": 2})

    def test_scan_and_force_scan(self) -> None:
        stats = ScanResult(processed=4, modified=1)
        self.engine.run_once.return_value = stats
        response = self.dispatcher.dispatch(Command(CommandKind.SCAN))
        self.assertTrue(response.success)
        self.assertIs(response.stats, stats)
        self.engine.run_once.assert_called_with(trigger="manual", force=False)

        self.dispatcher.dispatch(Command(CommandKind.FORCE_SCAN))
        self.engine.run_once.assert_called_with(trigger="force", force=True)

    def test_reset_defaults_to_configured_categories(self) -> None:
        self.engine.remove_categories.return_value = RemoveResult(removed_colors=2, removed_names=2)
        response = self.dispatcher.dispatch(Command(CommandKind.RESET_CATEGORIES))
        self.engine.remove_categories.assert_called_once_with(["Ferien", "Linth"])
        self.assertEqual(response.to_dict()["removed"], {"removed_colors": 2, "removed_names": 2})

    def test_reset_with_explicit_names(self) -> None:
        self.engine.remove_categories.return_value = RemoveResult(removed_colors=1, removed_names=0)
        response = self.dispatcher.dispatch_action("reset_categories", ["Ferien"])
        self.assertTrue(response.success)
        self.engine.remove_categories.assert_called_once_with(["Ferien"])

    def test_unknown_action(self) -> None:
        response = self.dispatcher.dispatch_action("configUpdated")
        self.assertFalse(response.success)
        self.assertEqual(response.error, "Unknown action: configUpdated")
        self.engine.run_once.assert_not_called()

    def test_scan_failure_is_reported(self) -> None:
        self.engine.run_once.side_effect = RuntimeError("CalDAV config is incomplete.")
        with self.assertLogs("autocat.commands", level="ERROR"):
            response = self.dispatcher.dispatch(Command(CommandKind.SCAN))
        self.assertFalse(response.success)
        self.assertIn("CalDAV config is incomplete.", response.error)
        self.assertNotIn("stats", response.to_dict())


if __name__ == "__main__":
    unittest.main()
