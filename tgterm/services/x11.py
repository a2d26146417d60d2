"""X11 automation backend: EWMH window listing, XTest keys, Pillow screenshots."""

from __future__ import annotations

import logging
import time

from PIL import ImageGrab
from Xlib import X, XK, Xatom, display, error
from Xlib.ext import xtest
from Xlib.protocol import event as xevent

from ..keys import Key, Mod
from .automation import AutomationError, WindowDescriptor

logger = logging.getLogger(__name__)

# Known terminal WM_CLASS names (matched case-insensitively as substrings)
TERMINAL_APPS = (
    "gnome-terminal", "xterm", "kitty", "alacritty", "ghostty", "terminator",
    "tilix", "konsole", "xfce4-terminal", "mate-terminal", "lxterminal", "st",
    "stterm", "urxvt", "foot", "wezterm", "hyper", "tabby", "sakura",
    "terminology", "guake", "tilda",
)

MIN_WINDOW_SIZE = 50  # skip tooltips, docks and other tiny clients
RAISE_SETTLE_SECONDS = 0.1

_SPECIAL_KEYSYMS = {
    Key.RETURN: XK.XK_Return,
    Key.TAB: XK.XK_Tab,
    Key.ESCAPE: XK.XK_Escape,
}

# Raw control characters from multi-line messages
_CONTROL_KEYSYMS = {
    "\n": XK.XK_Return,
    "\t": XK.XK_Tab,
}

_MODIFIER_KEYSYMS = (
    (Mod.CTRL, XK.XK_Control_L),
    (Mod.ALT, XK.XK_Alt_L),
    (Mod.CMD, XK.XK_Super_L),
)


def is_terminal(name: str) -> bool:
    lowered = name.lower()
    return any(app in lowered for app in TERMINAL_APPS)


def char_keysym(char: str) -> int:
    """Latin-1 keysyms equal their code point; the rest use the Unicode range."""
    if char in _CONTROL_KEYSYMS:
        return _CONTROL_KEYSYMS[char]
    code = ord(char)
    if code < 0x100:
        return code
    return 0x01000000 | code


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class X11Automation:
    def __init__(self, display_name: str | None = None) -> None:
        try:
            self._dpy = display.Display(display_name)
        except (error.DisplayError, error.DisplayNameError) as exc:
            raise AutomationError(f"Cannot open X display. Is DISPLAY set? ({exc})") from exc
        self._display_name = display_name
        self._root = self._dpy.screen().root

    def _atom(self, name: str) -> int:
        return self._dpy.intern_atom(name)

    def _window(self, window_id: int):
        return self._dpy.create_resource_object("window", window_id)

    def _client_list(self) -> list[int]:
        prop = self._root.get_full_property(self._atom("_NET_CLIENT_LIST"), Xatom.WINDOW)
        if prop is None:
            return []
        return [int(wid) for wid in prop.value]

    def _pid(self, win) -> int:
        try:
            prop = win.get_full_property(self._atom("_NET_WM_PID"), Xatom.CARDINAL)
        except error.XError:
            return 0
        if prop is None or not len(prop.value):
            return 0
        return int(prop.value[0])

    def _title(self, win) -> str:
        prop = win.get_full_property(self._atom("_NET_WM_NAME"), self._atom("UTF8_STRING"))
        if prop is not None and prop.value:
            return _text(prop.value)
        return _text(win.get_wm_name())

    # ── WindowAutomation ──────────────────────────────────────

    def list_windows(self, danger_mode: bool) -> list[WindowDescriptor]:
        windows: list[WindowDescriptor] = []
        for wid in self._client_list():
            win = self._window(wid)
            try:
                wm_class = win.get_wm_class()
                if not wm_class:
                    continue
                owner = _text(wm_class[1])
                if not danger_mode and not is_terminal(owner):
                    continue
                geom = win.get_geometry()
                if geom.width <= MIN_WINDOW_SIZE or geom.height <= MIN_WINDOW_SIZE:
                    continue
                windows.append(
                    WindowDescriptor(
                        window_id=wid, pid=self._pid(win), owner=owner, title=self._title(win)
                    )
                )
            except error.XError:
                # Window went away while we were inspecting it
                logger.debug("Skipping window %d", wid, exc_info=True)
        return windows

    def window_exists(self, window_id: int, pid: int) -> tuple[bool, int]:
        fallback = 0
        for wid in self._client_list():
            if wid == window_id:
                return True, window_id
            if not fallback and self._pid(self._window(wid)) == pid:
                fallback = wid
        if fallback:
            return True, fallback
        return False, window_id

    def capture(self, window_id: int, output_path: str) -> bool:
        win = self._window(window_id)
        try:
            geom = win.get_geometry()
            origin = self._root.translate_coords(win, 0, 0)
        except error.XError:
            logger.warning("Cannot capture window %d: gone", window_id)
            return False

        # Capture from root coordinates, clipped to the screen
        screen = self._dpy.screen()
        x = max(origin.x, 0)
        y = max(origin.y, 0)
        w = geom.width - (x - origin.x)
        h = geom.height - (y - origin.y)
        w = min(w, screen.width_in_pixels - x)
        h = min(h, screen.height_in_pixels - y)
        if w <= 0 or h <= 0:
            return False

        try:
            img = ImageGrab.grab(bbox=(x, y, x + w, y + h), xdisplay=self._display_name)
            img.save(output_path, format="PNG")
        except OSError:
            logger.exception("Failed to grab window %d", window_id)
            return False
        return True

    def raise_window(self, pid: int, window_id: int) -> None:
        win = self._window(window_id)
        ev = xevent.ClientMessage(
            window=win,
            client_type=self._atom("_NET_ACTIVE_WINDOW"),
            data=(32, [1, X.CurrentTime, 0, 0, 0]),  # source: application
        )
        try:
            self._root.send_event(
                ev, event_mask=X.SubstructureRedirectMask | X.SubstructureNotifyMask
            )
            win.map()
            win.configure(stack_mode=X.Above)
            self._dpy.flush()
        except error.XError:
            logger.warning("Failed to raise window %d", window_id, exc_info=True)
            return
        time.sleep(RAISE_SETTLE_SECONDS)

    def send_key(self, pid: int, key: Key, char: str, mods: Mod) -> None:
        # XTest delivers to the focused window; pid is unused here.
        if key is Key.CHAR:
            if not char:
                raise AutomationError("empty character")
            sym = char_keysym(char)
        else:
            sym = _SPECIAL_KEYSYMS[key]

        keycode = self._dpy.keysym_to_keycode(sym)
        if not keycode:
            raise AutomationError(f"No keycode for keysym {sym:#x}")

        held = [
            self._dpy.keysym_to_keycode(mod_sym)
            for flag, mod_sym in _MODIFIER_KEYSYMS
            if mods & flag
        ]
        if key is Key.CHAR and self._dpy.keycode_to_keysym(keycode, 0) != sym:
            held.append(self._dpy.keysym_to_keycode(XK.XK_Shift_L))

        try:
            for code in held:
                xtest.fake_input(self._dpy, X.KeyPress, code)
            xtest.fake_input(self._dpy, X.KeyPress, keycode)
            xtest.fake_input(self._dpy, X.KeyRelease, keycode)
            for code in reversed(held):
                xtest.fake_input(self._dpy, X.KeyRelease, code)
            self._dpy.flush()
        except error.XError as exc:
            raise AutomationError(f"XTest failed for keysym {sym:#x}") from exc
