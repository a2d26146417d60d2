"""CLI entry point: python -m tgterm"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys


def _create_automation():
    if sys.platform == "darwin":
        from .services.macos import MacAutomation

        return MacAutomation()

    from .services.x11 import X11Automation

    return X11Automation()


def main() -> None:
    from .config import parse_config

    config = parse_config()

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    from .auth import SessionGuard
    from .dispatcher import Dispatcher
    from .enrollment import ensure_secret
    from .services.automation import AutomationError
    from .services.telegram_bot import TelegramBot
    from .store import KVStore
    from .totp import SecretGenerationError
    from .window_session import WindowSession

    if config.danger_mode:
        logging.warning("DANGER MODE: All windows will be visible.")
    if config.weak_security:
        logging.warning("OTP authentication disabled.")

    store = KVStore(config.db_path)
    if not config.weak_security:
        try:
            ensure_secret(store)
        except SecretGenerationError:
            logging.critical(
                "Failed to generate TOTP secret, aborting: "
                "can't proceed without a secure random source."
            )
            sys.exit(1)

    try:
        automation = _create_automation()
    except AutomationError as exc:
        logging.critical("%s", exc)
        sys.exit(1)

    guard = SessionGuard(
        store, weak_security=config.weak_security, timeout=config.otp_timeout
    )
    window = WindowSession(
        automation,
        screenshot_path=config.screenshot_path,
        key_delay=config.key_delay,
        submit_delay=config.submit_delay,
        redraw_delay=config.redraw_delay,
    )
    bot = TelegramBot(config.telegram_bot_token, config.housekeeping_interval)
    bot.set_dispatcher(Dispatcher(guard, window, bot, danger_mode=config.danger_mode))

    async def _run():
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _on_signal():
            if stop_event.is_set():
                logging.warning("Forced shutdown")
                import os
                os._exit(1)
            logging.info("Shutting down...")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _on_signal)

        await bot.start()
        try:
            await stop_event.wait()
        finally:
            await bot.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
