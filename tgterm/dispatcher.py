"""Command dispatch: one serialized handler for every inbound chat event."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Protocol

from .auth import Verdict
from .window_session import InvalidWindowIndex

if TYPE_CHECKING:
    from .auth import SessionGuard
    from .events import InboundEvent
    from .services.automation import WindowDescriptor
    from .window_session import WindowSession

logger = logging.getLogger(__name__)

REFRESH_LABEL = "\U0001f504 Refresh"  # 🔄
REFRESH_DATA = "refresh"

HELP_TEXT = (
    "Commands:\n"
    ".list - Show terminal windows\n"
    ".1 .2 ... - Connect to window\n"
    ".help - This help\n\n"
    "Once connected, text is sent as keystrokes.\n"
    "Newline is auto-added; end with `\U0001f49c` to suppress it.\n\n"
    "Modifiers (tap to copy, then paste + key):\n"
    "`\u2764\ufe0f` Ctrl  "
    "`\U0001f499` Alt  "
    "`\U0001f49a` Cmd/Super  "
    "`\U0001f49b` ESC  "
    "`\U0001f9e1` Enter\n\n"
    "Escape sequences: \\n=Enter \\t=Tab\n\n"
    "`.otptimeout <seconds>` - Set OTP timeout (30-28800)"
)

_SELECT_RE = re.compile(r"\.([0-9]+)")
_INT_RE = re.compile(r"\s*([+-]?[0-9]+)")


class ChatTransport(Protocol):
    async def send_text(self, target: int, text: str, markdown: bool = False) -> None: ...

    async def send_image(
        self, target: int, path: str, button_label: str, button_data: str
    ) -> None: ...

    async def edit_image(
        self, target: int, message_id: int, path: str, button_label: str, button_data: str
    ) -> None: ...

    async def answer_callback(self, callback_id: str) -> None: ...


def _leading_int(text: str) -> int:
    """Leading integer of *text*, 0 when there is none."""
    m = _INT_RE.match(text)
    return int(m.group(1)) if m else 0


def format_window_list(windows: list[WindowDescriptor]) -> str:
    if not windows:
        return "No terminal windows found."
    lines = ["Terminal windows:"]
    for i, w in enumerate(windows, start=1):
        if w.title:
            lines.append(f".{i} [{w.window_id}] {w.owner} - {w.title}")
        else:
            lines.append(f".{i} [{w.window_id}] {w.owner}")
    return "\n".join(lines) + "\n"


class Dispatcher:
    def __init__(
        self,
        guard: SessionGuard,
        window: WindowSession,
        transport: ChatTransport,
        *,
        danger_mode: bool = False,
    ) -> None:
        self._guard = guard
        self._window = window
        self._transport = transport
        self._danger_mode = danger_mode
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def handle(self, event: InboundEvent) -> None:
        async with self._lock:
            verdict = self._guard.check(event)
            if verdict is Verdict.DROP:
                return
            if verdict is Verdict.ACK_CALLBACK:
                await self._transport.answer_callback(event.callback_id)
                return
            if verdict is Verdict.AUTHENTICATED:
                await self._transport.send_text(event.target, "Authenticated.")
                return
            if verdict is Verdict.PROMPT:
                await self._transport.send_text(event.target, "Enter OTP code.")
                return

            if event.is_callback:
                await self._handle_callback(event)
            else:
                await self._handle_text(event)

    async def housekeeping(self) -> None:
        """Periodic tick; holds the request lock like any event would."""
        async with self._lock:
            logger.debug("Housekeeping tick")

    # ── Callbacks ─────────────────────────────────────────────

    async def _handle_callback(self, event: InboundEvent) -> None:
        await self._transport.answer_callback(event.callback_id)
        if event.callback_data != REFRESH_DATA or not self._window.connected:
            return
        path = await asyncio.to_thread(self._window.capture)
        if path:
            await self._transport.edit_image(
                event.target, event.message_id, path, REFRESH_LABEL, REFRESH_DATA
            )

    # ── Text ──────────────────────────────────────────────────

    async def _handle_text(self, event: InboundEvent) -> None:
        text = event.text
        lowered = text.lower()

        if lowered == ".list":
            self._window.disconnect()
            await self._send_list(event.target)
            return

        if lowered == ".help":
            await self._transport.send_text(event.target, HELP_TEXT, markdown=True)
            return

        if lowered.startswith(".otptimeout"):
            secs = self._guard.set_timeout(_leading_int(text[len(".otptimeout"):]))
            await self._transport.send_text(
                event.target, f"OTP timeout set to {secs} seconds."
            )
            return

        m = _SELECT_RE.match(text)
        if m:
            await self._select(event.target, int(m.group(1)))
            return

        if not self._window.connected:
            await self._send_list(event.target)
            return

        alive = await asyncio.to_thread(self._window.verify_alive)
        if not alive:
            self._window.disconnect()
            listing = await self._window_list_text()
            await self._transport.send_text(event.target, "Window closed.\n\n" + listing)
            return

        path = await asyncio.to_thread(self._window.interact, text)
        if path:
            await self._send_screenshot(event.target, path)

    async def _select(self, target: int, index: int) -> None:
        try:
            win = await asyncio.to_thread(self._window.select, index, self._danger_mode)
        except InvalidWindowIndex:
            await self._transport.send_text(target, "Invalid window number.")
            return

        await self._transport.send_text(target, f"Connected to {win.label}")
        await asyncio.to_thread(self._window.raise_window)
        path = await asyncio.to_thread(self._window.capture)
        if path:
            await self._send_screenshot(target, path)

    async def _window_list_text(self) -> str:
        windows = await asyncio.to_thread(self._window.list_windows, self._danger_mode)
        return format_window_list(windows)

    async def _send_list(self, target: int) -> None:
        await self._transport.send_text(target, await self._window_list_text())

    async def _send_screenshot(self, target: int, path: str) -> None:
        await self._transport.send_image(target, path, REFRESH_LABEL, REFRESH_DATA)
