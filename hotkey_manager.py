"""Global hotkey registration based on the ``keyboard`` package."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

try:  # pragma: no cover - executed during module import
    import keyboard  # type: ignore
except ImportError:  # pragma: no cover - handled when the service is created
    keyboard = None  # type: ignore


TRANSLATE_HOTKEY = "translate"

_MODIFIERS = {
    "ctrl": ("Ctrl", "ctrl"),
    "control": ("Ctrl", "ctrl"),
    "alt": ("Alt", "alt"),
    "option": ("Alt", "alt"),
    "shift": ("Shift", "shift"),
    "win": ("Win", "windows"),
    "super": ("Win", "windows"),
    "meta": ("Win", "windows"),
    "cmd": ("Win", "windows"),
    "command": ("Win", "windows"),
}
_MODIFIER_ORDER = ("Ctrl", "Alt", "Shift", "Win")

# display name, keyboard package name
_SPECIAL_KEYS = {
    "space": ("Space", "space"),
    "spacebar": ("Space", "space"),
    "enter": ("Enter", "enter"),
    "return": ("Enter", "enter"),
    "tab": ("Tab", "tab"),
    "esc": ("Esc", "esc"),
    "escape": ("Esc", "esc"),
    "backspace": ("Backspace", "backspace"),
    "delete": ("Delete", "delete"),
    "del": ("Delete", "delete"),
    "insert": ("Insert", "insert"),
    "ins": ("Insert", "insert"),
    "home": ("Home", "home"),
    "end": ("End", "end"),
    "pageup": ("PageUp", "page up"),
    "pgup": ("PageUp", "page up"),
    "pagedown": ("PageDown", "page down"),
    "pgdn": ("PageDown", "page down"),
    "up": ("Up", "up"),
    "arrowup": ("Up", "up"),
    "down": ("Down", "down"),
    "arrowdown": ("Down", "down"),
    "left": ("Left", "left"),
    "arrowleft": ("Left", "left"),
    "right": ("Right", "right"),
    "arrowright": ("Right", "right"),
}


@dataclass(frozen=True)
class HotkeyBinding:
    """Represents a single hotkey registration."""

    name: str
    display: str
    keyboard_combo: str


@dataclass(frozen=True)
class HotkeyEvent:
    """Event generated when a registered hotkey is triggered."""

    name: str
    timestamp: float


def _parse_key(token: str) -> tuple[str, str]:
    if len(token) == 1 and (token.isascii() and token.isalnum()):
        return token.upper(), token
    if token.startswith("f") and token[1:].isdigit():
        number = int(token[1:])
        if 1 <= number <= 12:
            return f"F{number}", f"f{number}"
        raise ValueError(f"Unknown function key: {token}")
    try:
        return _SPECIAL_KEYS[token]
    except KeyError:
        raise ValueError(f"Unknown key: {token}") from None


def parse_shortcut(combo: str, name: str = TRANSLATE_HOTKEY) -> HotkeyBinding:
    """Create a :class:`HotkeyBinding` from text such as ``"Ctrl+Alt+T"``."""

    tokens = [part.strip().lower() for part in combo.split("+") if part.strip()]

    modifiers: dict[str, str] = {}
    key: Optional[tuple[str, str]] = None
    for token in tokens:
        if token in _MODIFIERS:
            display, combo_name = _MODIFIERS[token]
            modifiers[display] = combo_name
            continue
        if key is not None:
            raise ValueError("Multiple keys specified")
        key = _parse_key(token)

    if key is None:
        raise ValueError("No key specified")

    ordered = [mod for mod in _MODIFIER_ORDER if mod in modifiers]
    display = "+".join(ordered + [key[0]])
    keyboard_combo = "+".join([modifiers[mod] for mod in ordered] + [key[1]])
    return HotkeyBinding(name=name, display=display, keyboard_combo=keyboard_combo)


class KeyboardHotkeyService:
    """Registers bindings with the ``keyboard`` module and queues their events."""

    def __init__(
        self,
        bindings: Sequence[HotkeyBinding],
        event_queue: "queue.Queue[Optional[HotkeyEvent]]",
        logger: logging.Logger,
        *,
        keyboard_module: Any = None,
        time_provider: Callable[[], float] = time.perf_counter,
    ) -> None:
        if keyboard_module is None:
            keyboard_module = keyboard
        if keyboard_module is None:
            raise RuntimeError(
                "The 'keyboard' package is required. Install it with 'pip install keyboard'."
            )
        self._keyboard = keyboard_module
        self._bindings = {binding.name: binding for binding in bindings}
        self._event_queue = event_queue
        self._logger = logger
        self._time_provider = time_provider
        self._handles: dict[str, Any] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            for binding in self._bindings.values():
                if binding.name in self._handles:
                    continue
                self._register(binding)

    def stop(self) -> None:
        with self._lock:
            for name in list(self._handles):
                self._unregister(name)

    def describe_bindings(self) -> Sequence[str]:
        return [f"{binding.name}: {binding.display}" for binding in self._bindings.values()]

    def binding(self, name: str) -> Optional[HotkeyBinding]:
        return self._bindings.get(name)

    def rebind(self, binding: HotkeyBinding) -> None:
        """Replace the shortcut registered under ``binding.name``.

        The previous shortcut is removed first; if the new one cannot be
        registered the error propagates and the old shortcut stays removed.
        """

        with self._lock:
            if binding.name in self._handles:
                self._unregister(binding.name)
            self._bindings[binding.name] = binding
            self._register(binding)
        self._logger.info("Hotkey updated to %s", binding.display)

    def _register(self, binding: HotkeyBinding) -> None:
        def on_hotkey(name: str = binding.name) -> None:
            self._on_hotkey(name)

        try:
            handle = self._keyboard.add_hotkey(binding.keyboard_combo, on_hotkey, suppress=False)
        except Exception as exc:
            self._logger.error("Failed to register hotkey %s (%s): %s", binding.name, binding.display, exc)
            raise RuntimeError(f"Failed to register hotkey {binding.display}: {exc}") from exc
        self._handles[binding.name] = handle
        self._logger.info("Registered hotkey '%s' as %s", binding.name, binding.display)

    def _unregister(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is None:
            return
        try:
            self._keyboard.remove_hotkey(handle)
        except (KeyError, ValueError) as exc:
            self._logger.debug("Hotkey %s was already removed: %s", name, exc)

    def _on_hotkey(self, name: str) -> None:
        try:
            self._event_queue.put_nowait(HotkeyEvent(name, self._time_provider()))
        except queue.Full:
            self._logger.warning("Dropping hotkey event for %s (queue full)", name)


_MODIFIER_KEYSYMS = {
    "Control_L": "Ctrl",
    "Control_R": "Ctrl",
    "Alt_L": "Alt",
    "Alt_R": "Alt",
    "Meta_L": "Win",
    "Meta_R": "Win",
    "Shift_L": "Shift",
    "Shift_R": "Shift",
    "Super_L": "Win",
    "Super_R": "Win",
    "Win_L": "Win",
    "Win_R": "Win",
}

_KEYSYM_NAMES = {
    "space": "Space",
    "Return": "Enter",
    "KP_Enter": "Enter",
    "Escape": "Esc",
    "BackSpace": "Backspace",
    "Prior": "PageUp",
    "Next": "PageDown",
}


def modifier_for_keysym(keysym: str) -> Optional[str]:
    return _MODIFIER_KEYSYMS.get(keysym)


def format_recorded_shortcut(modifiers: Sequence[str], keysym: str) -> Optional[str]:
    """Render a key press captured by the settings window as ``Ctrl+Alt+T``.

    Returns ``None`` for a standalone modifier so recording continues.
    """

    if keysym in _MODIFIER_KEYSYMS:
        return None
    if len(keysym) == 1:
        key = keysym.upper()
    else:
        key = _KEYSYM_NAMES.get(keysym, keysym)
    ordered = [mod for mod in _MODIFIER_ORDER if mod in modifiers]
    return "+".join(ordered + [key])
