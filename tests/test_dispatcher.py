"""Tests for command dispatch behind the session guard."""

from __future__ import annotations

import asyncio
import time

from tgterm import totp
from tgterm.auth import SessionGuard
from tgterm.dispatcher import HELP_TEXT, REFRESH_DATA, Dispatcher, format_window_list
from tgterm.events import InboundEvent
from tgterm.keys import Key, Mod
from tgterm.store import OTP_TIMEOUT_KEY, SECRET_KEY
from tgterm.window_session import WindowSession

OWNER = 42
SECRET = b"\x07" * 20
SHOT = "/tmp/test-shot.png"

LISTING = (
    "Terminal windows:\n"
    ".1 [101] kitty - vim main.py\n"
    ".2 [202] Alacritty\n"
    ".3 [303] xterm - htop\n"
)


def _msg(text: str, sender: int = OWNER) -> InboundEvent:
    return InboundEvent.message(sender_id=sender, target=sender, text=text)


def _refresh(message_id: int = 77) -> InboundEvent:
    return InboundEvent.callback(
        sender_id=OWNER, target=OWNER, callback_id="cb", data=REFRESH_DATA,
        message_id=message_id,
    )


class _Harness:
    def __init__(self, store, automation, transport, clock, weak_security=True):
        self.store = store
        self.automation = automation
        self.transport = transport
        self.clock = clock
        store.set(SECRET_KEY, totp.secret_to_hex(SECRET))
        self.guard = SessionGuard(store, weak_security=weak_security, clock=clock)
        self.window = WindowSession(
            automation,
            screenshot_path=SHOT,
            key_delay=0,
            submit_delay=0,
            redraw_delay=0,
            sleep=lambda s: None,
        )
        self.dispatcher = Dispatcher(self.guard, self.window, transport)

    def send(self, event: InboundEvent) -> None:
        asyncio.run(self.dispatcher.handle(event))

    def otp(self) -> str:
        return totp.format_code(totp.code_at(SECRET, totp.time_step_for(self.clock.now)))


class TestFormatWindowList:
    def test_empty(self):
        assert format_window_list([]) == "No terminal windows found."

    def test_numbered(self, automation):
        assert format_window_list(automation.windows) == LISTING


class TestAuthGate:
    def _make(self, store, automation, transport, clock) -> _Harness:
        return _Harness(store, automation, transport, clock, weak_security=False)

    def test_locked_prompts_for_otp(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".list"))
        assert transport.texts == ["Enter OTP code."]
        assert automation.list_calls == []

    def test_valid_otp_authenticates(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(h.otp()))
        h.send(_msg(".list"))
        assert transport.texts == ["Authenticated.", LISTING]

    def test_stranger_gets_no_reply(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg("hello"))
        transport.calls.clear()
        h.send(_msg(h.otp(), sender=7))
        assert transport.calls == []

    def test_expired_session_prompts_instead_of_typing(
        self, store, automation, transport, clock
    ):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(h.otp()))
        h.send(_msg(".1"))
        transport.calls.clear()
        clock.advance(301)
        h.send(_msg("rm -rf build"))
        assert transport.texts == ["Enter OTP code."]
        assert automation.keys == []

    def test_locked_callback_only_acknowledged(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg("hello"))
        transport.calls.clear()
        h.send(_refresh())
        assert transport.calls == [("answer", "cb")]


class TestCommands:
    def _make(self, store, automation, transport, clock) -> _Harness:
        return _Harness(store, automation, transport, clock)

    def test_help(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".HELP"))
        assert transport.texts == [HELP_TEXT]

    def test_list_disconnects(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        h.send(_msg(".List"))
        assert h.window.connected is False
        assert transport.texts[-1] == LISTING

    def test_select_connects_and_sends_screenshot(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        assert transport.calls == [
            ("text", OWNER, "Connected to kitty - vim main.py"),
            ("image", OWNER, SHOT, REFRESH_DATA),
        ]
        assert automation.raised == [(11, 101)]

    def test_select_without_title(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".2"))
        assert transport.texts == ["Connected to Alacritty"]

    def test_select_out_of_range(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".5"))
        assert transport.texts == ["Invalid window number."]
        assert h.window.connected is False

    def test_select_failed_capture_sends_no_image(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        automation.capture_ok = False
        h.send(_msg(".3"))
        assert [c[0] for c in transport.calls] == ["text"]

    def test_non_ascii_digits_are_typed_not_selected(
        self, store, automation, transport, clock
    ):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        h.send(_msg(".١"))
        assert h.window.connection.window_id == 101
        assert automation.keys == [
            (Key.CHAR, ".", Mod.NONE),
            (Key.CHAR, "١", Mod.NONE),
            (Key.RETURN, "", Mod.NONE),
        ]

    def test_otptimeout_ignores_non_ascii_digits(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".otptimeout ٦٠٠"))
        assert transport.texts == ["OTP timeout set to 30 seconds."]

    def test_otptimeout_clamps(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".otptimeout 10"))
        h.send(_msg(".OTPTIMEOUT 99999"))
        h.send(_msg(".otptimeout 600"))
        h.send(_msg(".otptimeout"))
        assert transport.texts == [
            "OTP timeout set to 30 seconds.",
            "OTP timeout set to 28800 seconds.",
            "OTP timeout set to 600 seconds.",
            "OTP timeout set to 30 seconds.",
        ]
        assert store.get(OTP_TIMEOUT_KEY) == "30"

    def test_text_without_connection_lists(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg("ls"))
        assert transport.texts == [LISTING]
        assert automation.keys == []

    def test_text_is_typed_and_screenshot_returned(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        transport.calls.clear()
        h.send(_msg("ls"))
        assert automation.keys == [
            (Key.CHAR, "l", Mod.NONE),
            (Key.CHAR, "s", Mod.NONE),
            (Key.RETURN, "", Mod.NONE),
        ]
        assert transport.calls == [("image", OWNER, SHOT, REFRESH_DATA)]

    def test_commands_are_not_typed(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        h.send(_msg(".help"))
        assert automation.keys == []

    def test_closed_window_reports_and_lists(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        del automation.windows[0]
        transport.calls.clear()
        h.send(_msg("ls"))
        assert transport.texts == [
            "Window closed.\n\nTerminal windows:\n"
            ".1 [202] Alacritty\n"
            ".2 [303] xterm - htop\n"
        ]
        assert h.window.connected is False
        assert automation.keys == []

    def test_replaced_window_is_followed(self, store, automation, transport, clock):
        from tgterm.services.automation import WindowDescriptor

        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        automation.windows[0] = WindowDescriptor(window_id=111, pid=11, owner="kitty")
        h.send(_msg("ls"))
        assert h.window.connection.window_id == 111
        assert automation.captures[-1] == (111, SHOT)


class TestCallbacks:
    def _make(self, store, automation, transport, clock) -> _Harness:
        return _Harness(store, automation, transport, clock)

    def test_refresh_edits_screenshot(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        transport.calls.clear()
        h.send(_refresh(message_id=77))
        assert transport.calls == [
            ("answer", "cb"),
            ("edit", OWNER, 77, SHOT, REFRESH_DATA),
        ]

    def test_refresh_without_connection(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_refresh())
        assert transport.calls == [("answer", "cb")]

    def test_unknown_callback_data(self, store, automation, transport, clock):
        h = self._make(store, automation, transport, clock)
        h.send(_msg(".1"))
        transport.calls.clear()
        h.send(InboundEvent.callback(OWNER, OWNER, "cb2", "other", 9))
        assert transport.calls == [("answer", "cb2")]


class TestSerialization:
    def test_lock_released_after_each_event(self, store, automation, transport, clock):
        h = _Harness(store, automation, transport, clock)

        async def run():
            await h.dispatcher.handle(_msg(".5"))
            assert not h.dispatcher.lock.locked()
            await h.dispatcher.housekeeping()
            assert not h.dispatcher.lock.locked()

        asyncio.run(run())

    def test_events_never_overlap(self, store, automation, transport, clock):
        h = _Harness(store, automation, transport, clock)
        active = 0
        peak = 0
        real_list = automation.list_windows

        def slow_list(danger_mode):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                time.sleep(0.01)
                return real_list(danger_mode)
            finally:
                active -= 1

        automation.list_windows = slow_list

        async def run():
            await asyncio.gather(*(h.dispatcher.handle(_msg(".list")) for _ in range(5)))

        asyncio.run(run())
        assert peak == 1
        assert len(transport.texts) == 5
