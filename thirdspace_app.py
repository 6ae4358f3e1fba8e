"""Tray utility that translates the clipboard through an LLM on a global hotkey."""

from __future__ import annotations

import argparse
import logging
import os
import queue
import sys
import threading
from dataclasses import replace
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Callable, List, Optional

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - handled in PyperclipClipboard
    pyperclip = None  # type: ignore

try:
    import tkinter as tk
    from tkinter import ttk
except ImportError as exc:  # pragma: no cover - tkinter ships with CPython
    raise SystemExit("tkinter is required to display notifications and settings") from exc

try:  # pragma: no cover - optional dependency for system tray support
    import pystray  # type: ignore
    from pystray import MenuItem  # type: ignore
except Exception:  # pragma: no cover - package missing or no display backend available
    pystray = None  # type: ignore
    MenuItem = None  # type: ignore

try:  # pragma: no cover - optional dependency for system tray support
    from PIL import Image, ImageDraw  # type: ignore
except ImportError:  # pragma: no cover - handled when starting the tray icon
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore

from config_store import APP_DIR, AppConfig, ConfigError, load_config, logs_dir, save_config
from hotkey_gate import HotkeyGate
from hotkey_manager import (
    TRANSLATE_HOTKEY,
    HotkeyEvent,
    KeyboardHotkeyService,
    format_recorded_shortcut,
    modifier_for_keysym,
    parse_shortcut,
)
from openrouter_client import DEFAULT_TIMEOUT, ModelInfo, OpenRouterClient, filter_models
from translation_coordinator import NotificationKind, TranslationCoordinator
from translation_errors import TranslationError


LOG_FILE_NAME = "thirdspace.log"
LOG_RETENTION_DAYS = 14
LOG_ENV_VAR = "THIRDSPACE_LOG"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

TOAST_DURATION_MS = 2200
TOAST_WIDTH = 200
TOAST_HEIGHT = 56
TOAST_MARGIN = 16
TASKBAR_HEIGHT = 48

TOAST_LABELS = {
    NotificationKind.PROCESSING: "Translating...",
    NotificationKind.SUCCESS: "Done",
    NotificationKind.ERROR: "Error",
}
TOAST_COLORS = {
    NotificationKind.PROCESSING: "#1a73e8",
    NotificationKind.SUCCESS: "#188038",
    NotificationKind.ERROR: "#d93025",
}

logger = logging.getLogger("thirdspace")


def configure_logging(log_dir: Optional[Path], level: Optional[str] = None) -> logging.Logger:
    """Attach file and console handlers to the ``thirdspace`` logger once."""

    root = logging.getLogger("thirdspace")
    level_name = (level or os.environ.get(LOG_ENV_VAR) or "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    if root.handlers:
        return root

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir is None:
        return root
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        root.warning("Logging to console only; cannot create %s: %s", log_dir, exc)
        return root

    handler = TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.info("Logging initialized | log_dir=%s retention_days=%d", log_dir, LOG_RETENTION_DAYS)
    return root


class PyperclipClipboard:
    """Clipboard collaborator backed by pyperclip."""

    def __init__(self, clipboard_module=pyperclip) -> None:
        if clipboard_module is None:
            raise RuntimeError(
                "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
            )
        self._clipboard = clipboard_module

    def read_text(self) -> str:
        return self._clipboard.paste() or ""

    def write_text(self, text: str) -> None:
        self._clipboard.copy(text)


class UiManager:
    """Owns the Tk thread hosting the toast and the settings window.

    Other threads hand work to Tk through ``post``; the queue is drained
    from an ``after`` loop so widgets are only touched on the Tk thread.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._root: Optional[tk.Tk] = None
        self._toast: Optional[tk.Toplevel] = None
        self._toast_label: Optional[tk.Label] = None
        self._toast_hide_job: Optional[str] = None
        self._settings: Optional[SettingsWindow] = None
        self._unavailable = False

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name="TkUi", daemon=True)
        self._thread.start()
        self._ready.wait(timeout=5)

    def stop(self) -> None:
        if self._root is not None:
            self.post(self._root.quit)
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._thread = None

    def post(self, callback: Callable[[], None]) -> None:
        if self._unavailable:
            logger.debug("Dropping UI callback, Tk is unavailable")
            return
        self._queue.put(callback)

    def notify(self, kind: NotificationKind, title: str) -> None:
        self.post(lambda: self._show_toast(kind, title))

    def open_settings(self, app: "ThirdSpaceApp") -> None:
        self.post(lambda: self._open_settings(app))

    def _run(self) -> None:
        try:
            root = tk.Tk()
        except tk.TclError as exc:
            logger.error("Notifications and settings are unavailable: %s", exc)
            self._unavailable = True
            self._discard_pending()
            self._ready.set()
            return
        root.withdraw()
        root.title("ThirdSpace")
        self._root = root
        self._ready.set()
        self._drain()
        root.mainloop()
        self._settings = None
        self._toast = None
        self._toast_label = None
        self._root = None

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _drain(self) -> None:
        try:
            while True:
                callback = self._queue.get_nowait()
                try:
                    callback()
                except Exception:  # pragma: no cover - keep the Tk loop alive
                    logger.exception("UI callback failed")
        except queue.Empty:
            pass
        if self._root is not None:
            self._root.after(50, self._drain)

    def _show_toast(self, kind: NotificationKind, title: str) -> None:
        assert self._root is not None
        if self._toast is None:
            toast = tk.Toplevel(self._root)
            toast.overrideredirect(True)
            toast.attributes("-topmost", True)
            label = tk.Label(toast, fg="white", font=("Segoe UI", 11, "bold"), padx=12)
            label.pack(fill=tk.BOTH, expand=True)
            self._toast = toast
            self._toast_label = label

        assert self._toast_label is not None
        color = TOAST_COLORS.get(kind, TOAST_COLORS[NotificationKind.SUCCESS])
        self._toast.configure(bg=color)
        self._toast_label.configure(text=title or TOAST_LABELS.get(kind, kind.value), bg=color)

        screen_w = self._toast.winfo_screenwidth()
        screen_h = self._toast.winfo_screenheight()
        x = screen_w - TOAST_WIDTH - TOAST_MARGIN
        y = screen_h - TOAST_HEIGHT - TOAST_MARGIN - TASKBAR_HEIGHT
        self._toast.geometry(f"{TOAST_WIDTH}x{TOAST_HEIGHT}+{x}+{y}")
        self._toast.deiconify()
        self._toast.lift()

        if self._toast_hide_job is not None:
            self._toast.after_cancel(self._toast_hide_job)
        self._toast_hide_job = self._toast.after(TOAST_DURATION_MS, self._hide_toast)

    def _hide_toast(self) -> None:
        self._toast_hide_job = None
        if self._toast is not None:
            self._toast.withdraw()

    def _open_settings(self, app: "ThirdSpaceApp") -> None:
        assert self._root is not None
        if self._settings is not None and self._settings.exists():
            self._settings.focus()
            logger.info("Settings window reused")
            return
        self._settings = SettingsWindow(self._root, app, self)
        logger.info("Settings window opened")


class SettingsWindow:
    """Settings form; its hotkey field pauses the global hotkey while focused."""

    def __init__(self, root: tk.Tk, app: "ThirdSpaceApp", ui: UiManager) -> None:
        self._app = app
        self._ui = ui
        self._models: Optional[List[ModelInfo]] = None
        self._models_fetching = False
        self._held_modifiers: set[str] = set()

        config = app.config
        window = tk.Toplevel(root)
        window.title("ThirdSpace Settings")
        window.geometry("480x360")
        window.resizable(False, False)
        self._window = window

        self._api_key = tk.StringVar(value=config.api_key)
        self._model = tk.StringVar(value=config.model)
        self._target_language = tk.StringVar(value=config.target_language)
        self._hotkey = tk.StringVar(value=config.hotkey)
        self._reasoning = tk.BooleanVar(value=config.reasoning_enabled)

        form = ttk.Frame(window, padding=16)
        form.pack(fill=tk.BOTH, expand=True)
        form.columnconfigure(1, weight=1)

        ttk.Label(form, text="API key").grid(row=0, column=0, sticky="w", pady=4)
        ttk.Entry(form, textvariable=self._api_key, show="*").grid(row=0, column=1, sticky="ew", pady=4)

        ttk.Label(form, text="Model").grid(row=1, column=0, sticky="w", pady=4)
        model_box = ttk.Combobox(form, textvariable=self._model)
        model_box.grid(row=1, column=1, sticky="ew", pady=4)
        model_box.bind("<KeyRelease>", lambda _event: self._refresh_model_choices())
        model_box.bind("<FocusIn>", lambda _event: self._refresh_model_choices())
        self._model_box = model_box

        ttk.Label(form, text="Target language").grid(row=2, column=0, sticky="w", pady=4)
        ttk.Entry(form, textvariable=self._target_language).grid(row=2, column=1, sticky="ew", pady=4)

        ttk.Label(form, text="Hotkey").grid(row=3, column=0, sticky="w", pady=4)
        hotkey_entry = ttk.Entry(form, textvariable=self._hotkey)
        hotkey_entry.grid(row=3, column=1, sticky="ew", pady=4)
        hotkey_entry.bind("<FocusIn>", self._on_hotkey_focus_in)
        hotkey_entry.bind("<FocusOut>", self._on_hotkey_focus_out)
        hotkey_entry.bind("<KeyPress>", self._on_hotkey_key_press)
        hotkey_entry.bind("<KeyRelease>", self._on_hotkey_key_release)
        self._hotkey_entry = hotkey_entry

        ttk.Checkbutton(form, text="Enable reasoning", variable=self._reasoning).grid(
            row=4, column=1, sticky="w", pady=4
        )

        self._status = tk.StringVar(value="")
        ttk.Label(form, textvariable=self._status, foreground="#d93025").grid(
            row=5, column=0, columnspan=2, sticky="w", pady=(8, 0)
        )

        ttk.Button(form, text="Save", command=self._on_save).grid(row=6, column=1, sticky="e", pady=(12, 0))

        window.protocol("WM_DELETE_WINDOW", self._on_close)
        window.bind("<Escape>", lambda _event: self._on_close())

    def exists(self) -> bool:
        return bool(self._window.winfo_exists())

    def focus(self) -> None:
        self._window.deiconify()
        self._window.lift()
        self._window.focus_force()

    def _on_close(self) -> None:
        self._app.gate.resume()
        self._window.destroy()

    # Hotkey recording -------------------------------------------------

    def _on_hotkey_focus_in(self, _event: tk.Event) -> None:
        self._app.gate.pause()
        self._held_modifiers.clear()

    def _on_hotkey_focus_out(self, _event: tk.Event) -> None:
        self._app.gate.resume()
        self._held_modifiers.clear()
        if not self._hotkey.get().strip():
            self._hotkey.set(self._app.config.hotkey)

    def _on_hotkey_key_press(self, event: tk.Event) -> str:
        modifier = modifier_for_keysym(event.keysym)
        if modifier is not None:
            self._held_modifiers.add(modifier)
            return "break"
        combo = format_recorded_shortcut(sorted(self._held_modifiers), event.keysym)
        if combo is not None:
            self._hotkey.set(combo)
            self._window.focus_set()
        return "break"

    def _on_hotkey_key_release(self, event: tk.Event) -> str:
        modifier = modifier_for_keysym(event.keysym)
        if modifier is not None:
            self._held_modifiers.discard(modifier)
        return "break"

    # Model catalogue --------------------------------------------------

    def _refresh_model_choices(self) -> None:
        api_key = self._api_key.get().strip()
        if not api_key:
            self._status.set("Enter API key first")
            return
        if self._models is None:
            self._start_model_fetch(api_key)
            return
        self._model_box.configure(values=[model.id for model in filter_models(self._model.get(), self._models)])

    def _start_model_fetch(self, api_key: str) -> None:
        if self._models_fetching:
            return
        self._models_fetching = True
        self._status.set("Loading models...")

        def worker() -> None:
            try:
                models = self._app.client.fetch_models(api_key)
            except TranslationError as exc:
                logger.error("Failed to fetch models: %s", exc)
                self._ui.post(lambda: self._on_models_failed())
            else:
                self._ui.post(lambda: self._on_models_loaded(models))

        threading.Thread(target=worker, name="ModelFetch", daemon=True).start()

    def _on_models_loaded(self, models: List[ModelInfo]) -> None:
        self._models_fetching = False
        self._models = models
        if not self.exists():
            return
        self._status.set("" if models else "No matching models")
        self._refresh_model_choices()

    def _on_models_failed(self) -> None:
        self._models_fetching = False
        if self.exists():
            self._status.set("Failed to load models")

    # Saving -------------------------------------------------------------

    def _on_save(self) -> None:
        new_config = replace(
            self._app.config,
            api_key=self._api_key.get().strip(),
            model=self._model.get().strip() or self._app.config.model,
            target_language=self._target_language.get().strip() or self._app.config.target_language,
            hotkey=self._hotkey.get().strip() or self._app.config.hotkey,
            reasoning_enabled=bool(self._reasoning.get()),
        )
        error = self._app.save_settings(new_config)
        self._status.set(error or "")


class SystemTrayController:
    """Tray icon exposing Translate, Settings and Quit."""

    def __init__(self, app: "ThirdSpaceApp") -> None:
        self._app = app
        self._icon: Optional["pystray.Icon"] = None

    @staticmethod
    def _is_supported() -> bool:
        return pystray is not None and MenuItem is not None and Image is not None and ImageDraw is not None

    def start(self) -> None:
        if not self._is_supported():
            logger.warning("System tray icon is unavailable because required dependencies are missing.")
            return

        assert pystray is not None  # noqa: S101 - guarded by _is_supported
        menu = pystray.Menu(
            MenuItem("Translate", self._on_translate),
            MenuItem("Settings", self._on_settings),
            MenuItem("Quit", self._on_quit),
        )
        self._icon = pystray.Icon("thirdspace", self._create_icon_image(), "ThirdSpace", menu=menu)
        self._icon.run_detached()

    def stop(self) -> None:
        if self._icon is not None:
            self._icon.stop()
            self._icon = None

    def _on_translate(self, _icon: "pystray.Icon", _: MenuItem) -> None:
        self._app.coordinator.handle_menu()

    def _on_settings(self, _icon: "pystray.Icon", _: MenuItem) -> None:
        self._app.open_settings()

    def _on_quit(self, icon: "pystray.Icon", _: MenuItem) -> None:
        self._app.stop()
        icon.stop()

    @staticmethod
    def _create_icon_image() -> "Image.Image":
        assert Image is not None and ImageDraw is not None  # noqa: S101 - guarded by _is_supported
        size = 64
        image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.ellipse((8, 8, size - 8, size - 8), fill=(26, 115, 232, 255))
        draw.rectangle((18, 18, size - 18, 26), fill=(255, 255, 255, 255))
        draw.rectangle((size // 2 - 4, 18, size // 2 + 4, size - 16), fill=(255, 255, 255, 255))
        return image


class ThirdSpaceApp:
    """Wires the coordinator to the clipboard, toast, tray and global hotkey."""

    def __init__(
        self,
        config: AppConfig,
        *,
        app_dir: Optional[Path] = None,
        client: Optional[OpenRouterClient] = None,
        clipboard=None,
        ui: Optional[UiManager] = None,
        keyboard_module=None,
        gate: Optional[HotkeyGate] = None,
    ) -> None:
        self._config = config
        self._app_dir = app_dir
        self.client = client if client is not None else OpenRouterClient()
        self.gate = gate if gate is not None else HotkeyGate()
        self.ui = ui if ui is not None else UiManager()
        self.coordinator = TranslationCoordinator(
            self.client,
            clipboard if clipboard is not None else PyperclipClipboard(),
            self.ui,
            lambda: self._config,
            gate=self.gate,
        )
        self._keyboard_module = keyboard_module
        self._hotkey_event_queue: "queue.Queue[Optional[HotkeyEvent]]" = queue.Queue()
        self._hotkey_service: Optional[KeyboardHotkeyService] = None
        self._hotkey_dispatcher: Optional[threading.Thread] = None
        self._tray_controller: Optional[SystemTrayController] = None
        self._stop_event = threading.Event()
        self._settings_lock = threading.Lock()

    @property
    def config(self) -> AppConfig:
        return self._config

    def start(self, *, tray_controller: Optional[SystemTrayController] = None) -> None:
        """Run until ``stop`` is called."""

        self._tray_controller = tray_controller
        self.ui.start()
        self.coordinator.start()
        self._start_hotkeys()
        if self._tray_controller is not None:
            self._tray_controller.start()
        logger.info("ThirdSpace started")

        try:
            self._stop_event.wait()
        except KeyboardInterrupt:  # pragma: no cover - manual console interruption
            self.stop()
        finally:
            if self._tray_controller is not None:
                self._tray_controller.stop()
            if self._hotkey_service is not None:
                self._hotkey_service.stop()
                self._hotkey_service = None
            self.coordinator.stop()
            self.ui.stop()
            logger.info("ThirdSpace stopped")

    def stop(self) -> None:
        self._stop_event.set()
        if self._hotkey_dispatcher is not None and self._hotkey_dispatcher.is_alive():
            self._hotkey_event_queue.put(None)

    def open_settings(self) -> None:
        self.ui.open_settings(self)

    def save_settings(self, new_config: AppConfig) -> Optional[str]:
        """Apply and persist settings; return an error message on failure."""

        with self._settings_lock:
            old_config = self._config
            if new_config.hotkey != old_config.hotkey:
                error = self._update_hotkey(new_config.hotkey, old_config.hotkey)
                if error is not None:
                    self.ui.notify(NotificationKind.ERROR, "Invalid hotkey")
                    return error

            try:
                save_config(new_config, self._app_dir)
            except ConfigError as exc:
                logger.error("Settings save failed: %s", exc)
                self.ui.notify(NotificationKind.ERROR, "Save failed")
                return str(exc)

            self._config = new_config

        logger.info(
            "Settings saved | model=%s target_language=%s reasoning=%s hotkey=%s",
            new_config.model,
            new_config.target_language,
            new_config.reasoning_enabled,
            new_config.hotkey,
        )
        self.ui.notify(NotificationKind.SUCCESS, "Saved")
        return None

    def _update_hotkey(self, hotkey: str, previous: str) -> Optional[str]:
        try:
            binding = parse_shortcut(hotkey)
        except ValueError as exc:
            logger.error("Invalid hotkey %r: %s", hotkey, exc)
            return str(exc)
        if self._hotkey_service is None:
            return None
        try:
            self._hotkey_service.rebind(binding)
        except RuntimeError as exc:
            try:
                self._hotkey_service.rebind(parse_shortcut(previous))
            except (RuntimeError, ValueError) as restore_exc:
                logger.error("Could not restore previous hotkey %r: %s", previous, restore_exc)
            return str(exc)
        return None

    def _start_hotkeys(self) -> None:
        if self._hotkey_dispatcher is None or not self._hotkey_dispatcher.is_alive():
            self._hotkey_dispatcher = threading.Thread(
                target=self._dispatch_hotkey_events,
                name="HotkeyDispatcher",
                daemon=True,
            )
            self._hotkey_dispatcher.start()

        try:
            binding = parse_shortcut(self._config.hotkey)
            service = KeyboardHotkeyService(
                [binding],
                self._hotkey_event_queue,
                logging.getLogger("thirdspace.hotkeys"),
                keyboard_module=self._keyboard_module,
            )
            service.start()
        except (ValueError, RuntimeError) as exc:
            logger.error("Global hotkey disabled: %s", exc)
            return
        self._hotkey_service = service
        logger.info("Hotkey service started with %s", service.describe_bindings())

    def _dispatch_hotkey_events(self) -> None:
        while True:
            event = self._hotkey_event_queue.get()
            if event is None:
                break
            try:
                self._process_hotkey_event(event)
            except Exception as exc:  # pragma: no cover - logging runtime issues
                logger.exception("Error while processing hotkey event: %s", exc)

    def _process_hotkey_event(self, event: HotkeyEvent) -> None:
        if event.name == TRANSLATE_HOTKEY:
            self.coordinator.handle_hotkey()
        else:
            logger.debug("Unknown hotkey event: %s", event.name)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Translate the clipboard with an LLM on a global hotkey.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=APP_DIR,
        help="Directory holding config.json and logs (default: ~/.thirdspace).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Logging level (default: ${LOG_ENV_VAR} or INFO).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="Seconds to wait for the OpenRouter response before giving up.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(logs_dir(args.config_dir), args.log_level)
    config = load_config(args.config_dir)
    app = ThirdSpaceApp(config, app_dir=args.config_dir, client=OpenRouterClient(timeout=args.timeout))
    app.start(tray_controller=SystemTrayController(app))


if __name__ == "__main__":
    main(sys.argv[1:])
