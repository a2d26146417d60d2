"""Window automation interface shared by the OS backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..keys import Key, Mod

OWNER_MAX_BYTES = 127
TITLE_MAX_BYTES = 255


class AutomationError(RuntimeError):
    """An OS automation call failed."""


def truncate_utf8(text: str, max_bytes: int) -> str:
    """Bound *text* to *max_bytes* of UTF-8.

    The cut happens on a byte boundary; a character split by it is dropped
    rather than left as a partial sequence.
    """
    raw = text.encode("utf-8")
    if len(raw) <= max_bytes:
        return text
    return raw[:max_bytes].decode("utf-8", errors="ignore")


@dataclass(frozen=True)
class WindowDescriptor:
    window_id: int
    pid: int
    owner: str
    title: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "owner", truncate_utf8(self.owner, OWNER_MAX_BYTES))
        object.__setattr__(self, "title", truncate_utf8(self.title, TITLE_MAX_BYTES))

    @property
    def label(self) -> str:
        if self.title:
            return f"{self.owner} - {self.title}"
        return self.owner


class WindowAutomation(Protocol):
    def list_windows(self, danger_mode: bool) -> list[WindowDescriptor]:
        """Visible windows; only known terminal apps unless *danger_mode*."""
        ...

    def window_exists(self, window_id: int, pid: int) -> tuple[bool, int]:
        """Whether *window_id* is still on screen.

        If it is gone but *pid* owns another window, returns ``(True, other_id)``.
        """
        ...

    def capture(self, window_id: int, output_path: str) -> bool:
        ...

    def raise_window(self, pid: int, window_id: int) -> None:
        ...

    def send_key(self, pid: int, key: Key, char: str, mods: Mod) -> None:
        """Deliver one key press; raises ``AutomationError`` on failure."""
        ...
