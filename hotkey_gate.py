"""Suspension flag for the global translate hotkey."""

from __future__ import annotations

import logging


logger = logging.getLogger("thirdspace.hotkeys")


class HotkeyGate:
    """Lets the settings window silence the hotkey while a new one is recorded.

    ``pause`` and ``resume`` are idempotent and the last call wins; there is
    no nesting count. Menu-originated translations never consult the gate.
    """

    def __init__(self) -> None:
        self._suspended = False

    @property
    def suspended(self) -> bool:
        return self._suspended

    def pause(self) -> None:
        if not self._suspended:
            logger.debug("Hotkey paused for recording")
        self._suspended = True

    def resume(self) -> None:
        if self._suspended:
            logger.debug("Hotkey resumed after recording")
        self._suspended = False
