"""The connected-window slot and its lifecycle."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .keys import Key, KeyEvent, encode
from .services.automation import AutomationError, WindowAutomation, WindowDescriptor

logger = logging.getLogger(__name__)


class InvalidWindowIndex(ValueError):
    def __init__(self, index: int, count: int) -> None:
        super().__init__(f"window {index} out of range (1-{count})")
        self.index = index
        self.count = count


class NotConnected(RuntimeError):
    pass


@dataclass
class Connection:
    connected: bool = False
    window_id: int = 0
    pid: int = 0
    owner: str = ""
    title: str = ""


class WindowSession:
    """Owns the single connection slot.

    Not thread-safe on its own: the dispatcher serializes every call.
    """

    def __init__(
        self,
        automation: WindowAutomation,
        *,
        screenshot_path: str = "/tmp/tgterm_screenshot.png",
        key_delay: float = 0.005,
        submit_delay: float = 0.05,
        redraw_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._automation = automation
        self._screenshot_path = screenshot_path
        self._key_delay = key_delay
        self._submit_delay = submit_delay
        self._redraw_delay = redraw_delay
        self._sleep = sleep
        self.connection = Connection()

    @property
    def connected(self) -> bool:
        return self.connection.connected

    def list_windows(self, danger_mode: bool) -> list[WindowDescriptor]:
        return self._automation.list_windows(danger_mode)

    def select(self, index: int, danger_mode: bool) -> WindowDescriptor:
        windows = self.list_windows(danger_mode)
        if index < 1 or index > len(windows):
            raise InvalidWindowIndex(index, len(windows))

        win = windows[index - 1]
        self.connection = Connection(
            connected=True,
            window_id=win.window_id,
            pid=win.pid,
            owner=win.owner,
            title=win.title,
        )
        logger.info("Connected to window %d (%s)", win.window_id, win.label)
        return win

    def disconnect(self) -> None:
        if self.connection.connected:
            logger.info("Disconnected from window %d", self.connection.window_id)
        self.connection = Connection()

    def verify_alive(self) -> bool:
        conn = self.connection
        if not conn.connected:
            return False

        found, window_id = self._automation.window_exists(conn.window_id, conn.pid)
        if not found:
            self.disconnect()
            return False
        if window_id != conn.window_id:
            logger.info(
                "Window %d replaced by %d (pid %d), rebinding",
                conn.window_id, window_id, conn.pid,
            )
            conn.window_id = window_id
        return True

    def raise_window(self) -> None:
        conn = self.connection
        if conn.connected:
            self._automation.raise_window(conn.pid, conn.window_id)

    def capture(self) -> str | None:
        """Screenshot the connected window; path on success, else ``None``."""
        conn = self.connection
        if not conn.connected:
            return None
        if not self._automation.capture(conn.window_id, self._screenshot_path):
            logger.warning("Screenshot of window %d failed", conn.window_id)
            return None
        return self._screenshot_path

    def send_keys(self, payload: str) -> int:
        """Type *payload* into the connected window. Returns keys delivered."""
        conn = self.connection
        if not conn.connected:
            raise NotConnected("no window connected")

        encoded = encode(payload)
        delivered = 0
        for i, event in enumerate(encoded.events):
            if i and self._key_delay:
                self._sleep(self._key_delay)
            delivered += self._send(event)

        if encoded.submit:
            self._sleep(self._submit_delay)
            delivered += self._send(KeyEvent(Key.RETURN))
        return delivered

    def _send(self, event: KeyEvent) -> int:
        try:
            self._automation.send_key(
                self.connection.pid, event.key, event.char, event.mods
            )
        except AutomationError:
            logger.warning("Key %r dropped", event, exc_info=True)
            return 0
        return 1

    def interact(self, payload: str) -> str | None:
        """Raise, type, wait for redraw, recheck and screenshot."""
        if not self.connection.connected:
            raise NotConnected("no window connected")

        self.raise_window()
        self.send_keys(payload)
        self._sleep(self._redraw_delay)
        if not self.verify_alive():
            return None
        return self.capture()
