import logging
import queue
import tempfile
import unittest
import unittest.mock as mock
from pathlib import Path

from config_store import AppConfig, load_config
from hotkey_manager import HotkeyEvent
from translation_coordinator import NotificationKind

try:
    import thirdspace_app
    from thirdspace_app import PyperclipClipboard, ThirdSpaceApp, configure_logging, parse_args
except SystemExit:  # pragma: no cover - tkinter missing from the interpreter
    thirdspace_app = None


class FakeUi:
    def __init__(self) -> None:
        self.notifications = []
        self.settings_opened = 0

    def notify(self, kind, title) -> None:
        self.notifications.append((kind, title))

    def open_settings(self, app) -> None:
        self.settings_opened += 1


class FakeClipboard:
    def __init__(self) -> None:
        self.writes = []

    def read_text(self) -> str:
        return "Hola mundo"

    def write_text(self, text: str) -> None:
        self.writes.append(text)


class FakeKeyboard:
    def __init__(self) -> None:
        self.registered = {}
        self.fail_on = set()
        self._next_handle = 1

    def add_hotkey(self, hotkey, callback, suppress=False):
        if hotkey in self.fail_on:
            raise ValueError(f"cannot register {hotkey}")
        handle = self._next_handle
        self._next_handle += 1
        self.registered[handle] = (hotkey, callback)
        return handle

    def remove_hotkey(self, handle) -> None:
        self.registered.pop(handle)

    def combos(self):
        return [combo for combo, _ in self.registered.values()]


@unittest.skipIf(thirdspace_app is None, "tkinter is not available")
class ThirdSpaceAppTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.app_dir = Path(self._tmp.name)
        self.ui = FakeUi()
        self.keyboard = FakeKeyboard()
        self.app = ThirdSpaceApp(
            AppConfig(api_key="secret"),
            app_dir=self.app_dir,
            clipboard=FakeClipboard(),
            ui=self.ui,
            keyboard_module=self.keyboard,
        )

    def tearDown(self) -> None:
        self.app.stop()
        self._tmp.cleanup()

    def test_save_settings_persists_and_notifies(self) -> None:
        new_config = AppConfig(api_key="other", target_language="Japanese")
        self.assertIsNone(self.app.save_settings(new_config))

        self.assertEqual(self.app.config, new_config)
        self.assertEqual(load_config(self.app_dir), new_config)
        self.assertEqual(self.ui.notifications[-1], (NotificationKind.SUCCESS, "Saved"))

    def test_save_settings_rebinds_changed_hotkey(self) -> None:
        self.app._start_hotkeys()
        self.assertEqual(self.keyboard.combos(), ["ctrl+alt+t"])

        self.assertIsNone(self.app.save_settings(AppConfig(api_key="secret", hotkey="Ctrl+Shift+Y")))
        self.assertEqual(self.keyboard.combos(), ["ctrl+shift+y"])

    def test_invalid_hotkey_is_rejected_and_config_kept(self) -> None:
        error = self.app.save_settings(AppConfig(api_key="secret", hotkey="Ctrl+Alt"))

        self.assertEqual(error, "No key specified")
        self.assertEqual(self.app.config.hotkey, "Ctrl+Alt+T")
        self.assertEqual(self.ui.notifications[-1][0], NotificationKind.ERROR)
        self.assertFalse((self.app_dir / "config.json").exists())

    def test_failed_rebind_restores_previous_hotkey(self) -> None:
        self.app._start_hotkeys()
        self.keyboard.fail_on.add("ctrl+shift+y")

        error = self.app.save_settings(AppConfig(api_key="secret", hotkey="Ctrl+Shift+Y"))

        self.assertIsNotNone(error)
        self.assertEqual(self.keyboard.combos(), ["ctrl+alt+t"])
        self.assertEqual(self.app.config.hotkey, "Ctrl+Alt+T")

    def test_hotkey_event_triggers_translation(self) -> None:
        self.app._process_hotkey_event(HotkeyEvent("translate", 0.0))
        request = self.app.coordinator._request_queue.get_nowait()
        self.assertEqual(request.source_text, "Hola mundo")

    def test_hotkey_event_ignored_while_recording(self) -> None:
        self.app.gate.pause()
        self.app._process_hotkey_event(HotkeyEvent("translate", 0.0))
        self.assertTrue(self.app.coordinator._request_queue.empty())

    def test_settings_window_is_opened_through_ui(self) -> None:
        self.app.open_settings()
        self.assertEqual(self.ui.settings_opened, 1)


@unittest.skipIf(thirdspace_app is None, "tkinter is not available")
class ModuleHelpersTests(unittest.TestCase):
    def test_parse_args_defaults(self) -> None:
        args = parse_args([])
        self.assertEqual(args.timeout, 30.0)
        self.assertIsNone(args.log_level)

    def test_parse_args_config_dir(self) -> None:
        args = parse_args(["--config-dir", "/tmp/thirdspace-test", "--timeout", "5"])
        self.assertEqual(args.config_dir, Path("/tmp/thirdspace-test"))
        self.assertEqual(args.timeout, 5.0)

    def test_ui_drops_callbacks_when_tk_is_unavailable(self) -> None:
        ui = thirdspace_app.UiManager()
        ui.notify(NotificationKind.PROCESSING, "Translating")
        with mock.patch.object(thirdspace_app.tk, "Tk", side_effect=thirdspace_app.tk.TclError("no display")):
            with self.assertLogs("thirdspace", level="ERROR"):
                ui._run()

        ui.notify(NotificationKind.ERROR, "Network error")
        ui.open_settings(None)
        self.assertTrue(ui._queue.empty())

    def test_pyperclip_clipboard_uses_paste_and_copy(self) -> None:
        class Module:
            copied = None

            @staticmethod
            def paste():
                return None

            @classmethod
            def copy(cls, text):
                cls.copied = text

        clipboard = PyperclipClipboard(Module)
        self.assertEqual(clipboard.read_text(), "")
        clipboard.write_text("Hello world")
        self.assertEqual(Module.copied, "Hello world")

    def test_configure_logging_writes_to_log_dir(self) -> None:
        root = logging.getLogger("thirdspace")
        saved = list(root.handlers)
        for handler in saved:
            root.removeHandler(handler)
        with tempfile.TemporaryDirectory() as tmp:
            try:
                configure_logging(Path(tmp) / "logs", "debug")
                configure_logging(Path(tmp) / "logs", "debug")
                self.assertEqual(len(root.handlers), 2)
                self.assertEqual(root.level, logging.DEBUG)
                self.assertTrue((Path(tmp) / "logs" / "thirdspace.log").exists())
            finally:
                for handler in list(root.handlers):
                    handler.close()
                    root.removeHandler(handler)
                for handler in saved:
                    root.addHandler(handler)


if __name__ == "__main__":  # pragma: no cover - allows direct execution
    unittest.main()
