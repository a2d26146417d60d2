"""macOS automation backend: Quartz window list and capture, CGEvent keys."""

from __future__ import annotations

import logging
import time

from AppKit import NSApplicationActivateIgnoringOtherApps, NSRunningApplication
from ApplicationServices import (
    AXIsProcessTrusted,
    AXUIElementCopyAttributeValue,
    AXUIElementCreateApplication,
    AXUIElementPerformAction,
    kAXErrorSuccess,
    kAXRaiseAction,
    kAXTitleAttribute,
    kAXWindowsAttribute,
)
from Foundation import NSURL
from Quartz import (
    CGEventCreateKeyboardEvent,
    CGEventKeyboardSetUnicodeString,
    CGEventPostToPid,
    CGEventSetFlags,
    CGImageDestinationAddImage,
    CGImageDestinationCreateWithURL,
    CGImageDestinationFinalize,
    CGRectNull,
    CGWindowListCopyWindowInfo,
    CGWindowListCreateImage,
    kCGEventFlagMaskAlternate,
    kCGEventFlagMaskCommand,
    kCGEventFlagMaskControl,
    kCGNullWindowID,
    kCGWindowImageBoundsIgnoreFraming,
    kCGWindowImageNominalResolution,
    kCGWindowListExcludeDesktopElements,
    kCGWindowListOptionIncludingWindow,
    kCGWindowListOptionOnScreenOnly,
)

from ..keys import Key, Mod
from .automation import AutomationError, WindowDescriptor

logger = logging.getLogger(__name__)

# Known terminal application names (matched case-insensitively as substrings)
TERMINAL_APPS = (
    "terminal", "iterm2", "iterm", "ghostty", "kitty", "alacritty",
    "hyper", "warp", "wezterm", "tabby",
)

MIN_WINDOW_SIZE = 50
RAISE_SETTLE_SECONDS = 0.1
KEY_HOLD_SECONDS = 0.001

_LIST_OPTIONS = kCGWindowListOptionOnScreenOnly | kCGWindowListExcludeDesktopElements

# Virtual keycodes, US layout
_SPECIAL_KEYCODES = {
    Key.RETURN: 0x24,
    Key.TAB: 0x30,
    Key.ESCAPE: 0x35,
}

_CONTROL_KEYCODES = {
    "\n": 0x24,
    "\t": 0x30,
}

_LETTER_KEYCODES = (
    0x00, 0x0B, 0x08, 0x02, 0x0E, 0x03, 0x05, 0x04, 0x22, 0x26,
    0x28, 0x25, 0x2E, 0x2D, 0x1F, 0x23, 0x0C, 0x0F, 0x01, 0x11,
    0x20, 0x09, 0x0D, 0x07, 0x10, 0x06,
)
_DIGIT_KEYCODES = (0x1D, 0x12, 0x13, 0x14, 0x15, 0x17, 0x16, 0x1A, 0x1C, 0x19)
_PUNCT_KEYCODES = {
    "-": 0x1B, "=": 0x18, "[": 0x21, "]": 0x1E, "\\": 0x2A, ";": 0x29,
    "'": 0x27, ",": 0x2B, ".": 0x2F, "/": 0x2C, "`": 0x32, " ": 0x31,
}

_MODIFIER_FLAGS = (
    (Mod.CTRL, kCGEventFlagMaskControl),
    (Mod.ALT, kCGEventFlagMaskAlternate),
    (Mod.CMD, kCGEventFlagMaskCommand),
)


def is_terminal(name: str) -> bool:
    lowered = name.lower()
    return any(app in lowered for app in TERMINAL_APPS)


def char_keycode(char: str) -> int | None:
    """US-layout virtual keycode for *char*, or ``None`` if it has none."""
    if len(char) != 1 or not char.isascii():
        return None
    if "a" <= char.lower() <= "z":
        return _LETTER_KEYCODES[ord(char.lower()) - ord("a")]
    if "0" <= char <= "9":
        return _DIGIT_KEYCODES[ord(char) - ord("0")]
    return _PUNCT_KEYCODES.get(char)


def modifier_flags(mods: Mod) -> int:
    flags = 0
    for flag, mask in _MODIFIER_FLAGS:
        if mods & flag:
            flags |= mask
    return flags


def _layer(info) -> int:
    return int(info.get("kCGWindowLayer", 0) or 0)


def descriptor_from_info(info, danger_mode: bool) -> WindowDescriptor | None:
    """Build a descriptor from one ``CGWindowListCopyWindowInfo`` entry.

    Returns ``None`` for entries that are filtered out: non-terminal owners
    (unless *danger_mode*), non-normal layers, tiny or unbounded windows.
    """
    owner = info.get("kCGWindowOwnerName")
    if not owner:
        return None
    owner = str(owner)
    if not danger_mode and not is_terminal(owner):
        return None

    wid = info.get("kCGWindowNumber")
    pid = info.get("kCGWindowOwnerPID")
    if wid is None or pid is None:
        return None
    if _layer(info) != 0:
        return None

    bounds = info.get("kCGWindowBounds")
    if not bounds:
        return None
    if bounds.get("Width", 0) <= MIN_WINDOW_SIZE or bounds.get("Height", 0) <= MIN_WINDOW_SIZE:
        return None

    # Titles are only visible with the screen recording permission
    title = info.get("kCGWindowName") or ""
    return WindowDescriptor(window_id=int(wid), pid=int(pid), owner=owner, title=str(title))


def _ax_value(element, attribute):
    err, value = AXUIElementCopyAttributeValue(element, attribute, None)
    if err == kAXErrorSuccess:
        return value
    return None


class MacAutomation:
    def __init__(self) -> None:
        if not AXIsProcessTrusted():
            logger.warning(
                "Accessibility access is not granted; raising windows may fail. "
                "Enable it in System Settings > Privacy & Security > Accessibility."
            )

    def _window_infos(self) -> list:
        infos = CGWindowListCopyWindowInfo(_LIST_OPTIONS, kCGNullWindowID)
        return list(infos or [])

    # ── WindowAutomation ──────────────────────────────────────

    def list_windows(self, danger_mode: bool) -> list[WindowDescriptor]:
        windows: list[WindowDescriptor] = []
        for info in self._window_infos():
            desc = descriptor_from_info(info, danger_mode)
            if desc is not None:
                windows.append(desc)
        return windows

    def window_exists(self, window_id: int, pid: int) -> tuple[bool, int]:
        fallback = 0
        for info in self._window_infos():
            wid = info.get("kCGWindowNumber")
            owner_pid = info.get("kCGWindowOwnerPID")
            if wid is None or owner_pid is None:
                continue
            if int(wid) == window_id:
                return True, window_id
            if not fallback and int(owner_pid) == pid and _layer(info) == 0:
                fallback = int(wid)
        if fallback:
            return True, fallback
        return False, window_id

    def capture(self, window_id: int, output_path: str) -> bool:
        image = CGWindowListCreateImage(
            CGRectNull,
            kCGWindowListOptionIncludingWindow,
            window_id,
            kCGWindowImageBoundsIgnoreFraming | kCGWindowImageNominalResolution,
        )
        if image is None:
            logger.warning("Cannot capture window %d", window_id)
            return False

        url = NSURL.fileURLWithPath_(output_path)
        dest = CGImageDestinationCreateWithURL(url, "public.png", 1, None)
        if dest is None:
            logger.warning("Cannot write screenshot to %s", output_path)
            return False
        CGImageDestinationAddImage(dest, image, None)
        return bool(CGImageDestinationFinalize(dest))

    def raise_window(self, pid: int, window_id: int) -> None:
        title = ""
        for info in self._window_infos():
            if int(info.get("kCGWindowNumber", 0)) == window_id:
                title = str(info.get("kCGWindowName") or "")
                break

        # AX elements carry no public window number; match on title instead
        app = AXUIElementCreateApplication(pid)
        for win in _ax_value(app, kAXWindowsAttribute) or []:
            if title and _ax_value(win, kAXTitleAttribute) == title:
                AXUIElementPerformAction(win, kAXRaiseAction)
                break

        running = NSRunningApplication.runningApplicationWithProcessIdentifier_(pid)
        if running is None:
            logger.warning("No running application for pid %d", pid)
            return
        running.activateWithOptions_(NSApplicationActivateIgnoringOtherApps)
        time.sleep(RAISE_SETTLE_SECONDS)

    def send_key(self, pid: int, key: Key, char: str, mods: Mod) -> None:
        unicode_text = ""
        if key is Key.CHAR:
            if not char:
                raise AutomationError("empty character")
            keycode = _CONTROL_KEYCODES.get(char)
            if keycode is None:
                mapped = char_keycode(char) if mods else None
                if mapped is not None:
                    keycode = mapped
                else:
                    # Keycode 0 with a unicode payload types the character as-is
                    keycode = 0
                    unicode_text = char
        else:
            keycode = _SPECIAL_KEYCODES[key]

        down = CGEventCreateKeyboardEvent(None, keycode, True)
        up = CGEventCreateKeyboardEvent(None, keycode, False)
        if down is None or up is None:
            raise AutomationError(f"Cannot create key event for {char or key.name!r}")

        flags = modifier_flags(mods)
        if flags:
            CGEventSetFlags(down, flags)
            CGEventSetFlags(up, flags)

        if unicode_text:
            units = len(unicode_text.encode("utf-16-le")) // 2
            CGEventKeyboardSetUnicodeString(down, units, unicode_text)
            CGEventKeyboardSetUnicodeString(up, units, unicode_text)

        CGEventPostToPid(pid, down)
        time.sleep(KEY_HOLD_SECONDS)
        CGEventPostToPid(pid, up)
