"""Owner binding and OTP lock state for inbound chat events."""

from __future__ import annotations

import enum
import logging
import time
from typing import TYPE_CHECKING, Callable

from . import totp
from .config import OTP_TIMEOUT_MAX, OTP_TIMEOUT_MIN, clamp_otp_timeout
from .store import OTP_TIMEOUT_KEY, OWNER_KEY, SECRET_KEY

if TYPE_CHECKING:
    from .events import InboundEvent
    from .store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_OTP_TIMEOUT = 300


class Verdict(enum.Enum):
    PASS = "pass"  # dispatch the event
    DROP = "drop"  # ignore, no reply
    ACK_CALLBACK = "ack_callback"  # locked: answer the callback, nothing else
    AUTHENTICATED = "authenticated"  # OTP accepted, confirm and stop
    PROMPT = "prompt"  # locked: ask for the OTP and stop


class SessionGuard:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        weak_security: bool = False,
        timeout: int = DEFAULT_OTP_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._weak_security = weak_security
        self._clock = clock
        self.unlocked = False
        self.last_activity = 0.0
        self.timeout = clamp_otp_timeout(timeout)
        self._load_timeout()

    def _load_timeout(self) -> None:
        raw = self._store.get(OTP_TIMEOUT_KEY)
        if raw is None:
            return
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Ignoring invalid stored OTP timeout %r", raw)
            return
        if OTP_TIMEOUT_MIN <= value <= OTP_TIMEOUT_MAX:
            self.timeout = value

    @property
    def owner_id(self) -> int:
        raw = self._store.get(OWNER_KEY)
        if not raw:
            return 0
        try:
            return int(raw)
        except ValueError:
            return 0

    def _bind_owner(self, event: InboundEvent) -> None:
        self._store.set(OWNER_KEY, str(event.sender_id))
        logger.info("Registered owner: %d (%s)", event.sender_id, event.sender_name)

    def _secret(self) -> bytes | None:
        raw = self._store.get(SECRET_KEY)
        if raw is None:
            return None
        return totp.secret_from_hex(raw)

    def check(self, event: InboundEvent) -> Verdict:
        owner = self.owner_id
        if owner == 0:
            self._bind_owner(event)
            owner = event.sender_id

        if event.sender_id != owner:
            logger.info("Ignoring message from non-owner %d", event.sender_id)
            return Verdict.DROP

        if self._weak_security:
            return Verdict.PASS

        now = self._clock()
        if self.unlocked and now - self.last_activity <= self.timeout:
            self.last_activity = now
            return Verdict.PASS

        if self.unlocked:
            logger.info("Session locked after %d s of inactivity", self.timeout)
        self.unlocked = False

        if event.is_callback:
            return Verdict.ACK_CALLBACK

        secret = self._secret()
        if secret is not None and totp.verify(secret, event.text, now):
            self.unlocked = True
            self.last_activity = now
            logger.info("Owner authenticated")
            return Verdict.AUTHENTICATED

        if totp.is_code_format(event.text):
            logger.warning("Rejected OTP code from owner")
        return Verdict.PROMPT

    def set_timeout(self, seconds: int) -> int:
        self.timeout = clamp_otp_timeout(seconds)
        self._store.set(OTP_TIMEOUT_KEY, str(self.timeout))
        return self.timeout
