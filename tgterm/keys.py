"""Keystroke encoding: plain text plus emoji modifiers -> ordered key events.

Marker glyphs (tap-to-copy friendly on a phone keyboard):

    ❤️  Ctrl       applies to the next key
    💙  Alt        applies to the next key
    💚  Cmd/Super  applies to the next key
    💛  Escape     sent immediately
    🧡  Enter      sent immediately, with any pending modifiers
    💜  (at the very end only) do not add the automatic Enter

Escapes ``\\n``, ``\\t`` and ``\\\\`` send Enter, Tab and a literal backslash.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class Mod(enum.IntFlag):
    NONE = 0
    CTRL = 1 << 0
    ALT = 1 << 1
    CMD = 1 << 2  # Cmd on macOS, Super on Linux


class Key(enum.IntEnum):
    CHAR = 0
    RETURN = 1
    TAB = 2
    ESCAPE = 3


CTRL_MARKER = b"\xe2\x9d\xa4"  # ❤
VARIATION_SELECTOR = b"\xef\xb8\x8f"  # U+FE0F, turns ❤ into ❤️
SUBMIT_MARKER = b"\xf0\x9f\xa7\xa1"  # 🧡
ALT_MARKER = b"\xf0\x9f\x92\x99"  # 💙
CMD_MARKER = b"\xf0\x9f\x92\x9a"  # 💚
ESCAPE_MARKER = b"\xf0\x9f\x92\x9b"  # 💛
SUPPRESS_MARKER = b"\xf0\x9f\x92\x9c"  # 💜

_ESCAPES = {
    ord("n"): (Key.RETURN, ""),
    ord("t"): (Key.TAB, ""),
    ord("\\"): (Key.CHAR, "\\"),
}


@dataclass(frozen=True)
class KeyEvent:
    key: Key
    char: str = ""
    mods: Mod = Mod.NONE

    @classmethod
    def of(cls, char: str, mods: Mod = Mod.NONE) -> KeyEvent:
        return cls(Key.CHAR, char, mods)

    @property
    def is_submit(self) -> bool:
        return self.key is Key.RETURN


@dataclass
class EncodedInput:
    events: list[KeyEvent] = field(default_factory=list)
    submit: bool = False  # append an implicit Enter after the events


def _utf8_length(lead: int) -> int:
    if lead < 0x80:
        return 1
    if lead >> 5 == 0b110:
        return 2
    if lead >> 4 == 0b1110:
        return 3
    if lead >> 3 == 0b11110:
        return 4
    return 1


def _literal_at(data: bytes, pos: int) -> tuple[str, int]:
    """Decode the character starting at *pos*; returns (char, bytes consumed)."""
    length = min(_utf8_length(data[pos]), len(data) - pos)
    try:
        return data[pos:pos + length].decode("utf-8"), length
    except UnicodeDecodeError:
        return chr(data[pos]), 1


def encode(payload: str | bytes) -> EncodedInput:
    data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)

    suppress = data.endswith(SUPPRESS_MARKER)
    if suppress:
        data = data[:-len(SUPPRESS_MARKER)]

    events: list[KeyEvent] = []
    mods = Mod.NONE
    self_contained = False  # some emitted key carried modifiers or was 💛
    last_was_submit = False
    pos = 0
    end = len(data)

    def emit(event: KeyEvent) -> None:
        nonlocal mods, self_contained, last_was_submit
        events.append(event)
        if event.mods:
            self_contained = True
        last_was_submit = event.is_submit
        mods = Mod.NONE

    while pos < end:
        if data.startswith(CTRL_MARKER, pos):
            pos += len(CTRL_MARKER)
            if data.startswith(VARIATION_SELECTOR, pos):
                pos += len(VARIATION_SELECTOR)
            mods |= Mod.CTRL
            continue

        if data.startswith(SUBMIT_MARKER, pos):
            emit(KeyEvent(Key.RETURN, "", mods))
            pos += len(SUBMIT_MARKER)
            continue

        if data.startswith(ALT_MARKER, pos):
            mods |= Mod.ALT
            pos += len(ALT_MARKER)
            continue
        if data.startswith(CMD_MARKER, pos):
            mods |= Mod.CMD
            pos += len(CMD_MARKER)
            continue
        if data.startswith(ESCAPE_MARKER, pos):
            emit(KeyEvent(Key.ESCAPE))
            self_contained = True
            pos += len(ESCAPE_MARKER)
            continue

        if data[pos] == ord("\\") and pos + 1 < end and data[pos + 1] in _ESCAPES:
            key, char = _ESCAPES[data[pos + 1]]
            emit(KeyEvent(key, char, mods))
            pos += 2
            continue

        char, consumed = _literal_at(data, pos)
        emit(KeyEvent.of(char, mods))
        pos += consumed

    submit = not (
        suppress
        or (len(events) == 1 and self_contained)
        or last_was_submit
    )
    return EncodedInput(events=events, submit=submit)
