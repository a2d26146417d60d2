"""Shared fakes for the store, automation backend, chat transport and clock."""

from __future__ import annotations

import pytest

from tgterm.services.automation import AutomationError, WindowDescriptor


class FakeStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class FakeAutomation:
    def __init__(self, windows: list[WindowDescriptor] | None = None) -> None:
        self.windows = list(windows or [])
        self.list_calls: list[bool] = []
        self.keys: list[tuple] = []
        self.raised: list[tuple[int, int]] = []
        self.captures: list[tuple[int, str]] = []
        self.capture_ok = True
        self.failing_chars: set[str] = set()

    def list_windows(self, danger_mode: bool) -> list[WindowDescriptor]:
        self.list_calls.append(danger_mode)
        return list(self.windows)

    def window_exists(self, window_id: int, pid: int) -> tuple[bool, int]:
        if any(w.window_id == window_id for w in self.windows):
            return True, window_id
        for w in self.windows:
            if w.pid == pid:
                return True, w.window_id
        return False, window_id

    def capture(self, window_id: int, output_path: str) -> bool:
        self.captures.append((window_id, output_path))
        return self.capture_ok

    def raise_window(self, pid: int, window_id: int) -> None:
        self.raised.append((pid, window_id))

    def send_key(self, pid, key, char, mods) -> None:
        if char in self.failing_chars:
            raise AutomationError(f"cannot type {char!r}")
        self.keys.append((key, char, mods))


class FakeTransport:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def send_text(self, target: int, text: str, markdown: bool = False) -> None:
        self.calls.append(("text", target, text))

    async def send_image(self, target, path, button_label, button_data) -> None:
        self.calls.append(("image", target, path, button_data))

    async def edit_image(self, target, message_id, path, button_label, button_data) -> None:
        self.calls.append(("edit", target, message_id, path, button_data))

    async def answer_callback(self, callback_id: str) -> None:
        self.calls.append(("answer", callback_id))

    @property
    def texts(self) -> list[str]:
        return [c[2] for c in self.calls if c[0] == "text"]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_windows() -> list[WindowDescriptor]:
    return [
        WindowDescriptor(window_id=101, pid=11, owner="kitty", title="vim main.py"),
        WindowDescriptor(window_id=202, pid=22, owner="Alacritty", title=""),
        WindowDescriptor(window_id=303, pid=33, owner="xterm", title="htop"),
    ]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def automation() -> FakeAutomation:
    return FakeAutomation(make_windows())


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
