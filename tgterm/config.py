"""Bot configuration from environment, .env file and CLI args."""

from __future__ import annotations

import argparse
from pathlib import Path

from pydantic_settings import BaseSettings

OTP_TIMEOUT_MIN = 30
OTP_TIMEOUT_MAX = 28800


class AppConfig(BaseSettings):
    telegram_bot_token: str = ""
    data_dir: str = "."
    db_file: str = "tgterm.json"  # relative to data_dir unless absolute

    danger_mode: bool = False  # list/connect to any window, not just terminals
    weak_security: bool = False  # skip OTP, still single-owner
    otp_timeout: int = 300

    screenshot_path: str = "/tmp/tgterm_screenshot.png"

    # Pacing between automation calls (seconds)
    key_delay: float = 0.005
    submit_delay: float = 0.05
    redraw_delay: float = 2.0

    housekeeping_interval: float = 60.0
    verbose: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def db_path(self) -> Path:
        path = Path(self.db_file)
        if path.is_absolute():
            return path
        return self.data_path / path


def clamp_otp_timeout(seconds: int) -> int:
    return max(OTP_TIMEOUT_MIN, min(OTP_TIMEOUT_MAX, seconds))


def parse_config(argv: list[str] | None = None) -> AppConfig:
    base = AppConfig()

    parser = argparse.ArgumentParser(
        prog="tgterm",
        description="tgterm — drive a terminal window from Telegram",
    )
    parser.add_argument(
        "--token", default=base.telegram_bot_token,
        help="Telegram bot token (or set TELEGRAM_BOT_TOKEN env var)",
    )
    parser.add_argument(
        "--dbfile", default=None,
        help=f"Path to the key-value store file (default: {base.db_path})",
    )
    parser.add_argument(
        "--dangerously-attach-to-any-window", action="store_true",
        help="List and connect to every window, not just known terminals",
    )
    parser.add_argument(
        "--use-weak-security", action="store_true",
        help="Disable OTP authentication (owner binding still applies)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    if not args.token:
        parser.error("--token is required (or set TELEGRAM_BOT_TOKEN env var)")

    updates: dict = {"telegram_bot_token": args.token}
    if args.dbfile:
        updates["db_file"] = str(Path(args.dbfile).resolve())
    if args.dangerously_attach_to_any_window:
        updates["danger_mode"] = True
    if args.use_weak_security:
        updates["weak_security"] = True
    updates["otp_timeout"] = clamp_otp_timeout(base.otp_timeout)

    if args.verbose:
        updates["verbose"] = True

    return base.model_copy(update=updates)
