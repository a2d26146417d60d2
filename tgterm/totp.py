"""Time-based one-time passwords (RFC 4226 / RFC 6238, SHA-1, 6 digits)."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import secrets
import struct

SECRET_SIZE = 20
TIME_STEP_SECONDS = 30
DIGITS = 6
SKEW_STEPS = 1  # accept codes from the previous and next window too

ISSUER = "tgterm"

_CODE_RE = re.compile(r"[0-9]{6}")


class SecretGenerationError(RuntimeError):
    """The system random source could not provide a secret."""


def generate_secret() -> bytes:
    """Return ``SECRET_SIZE`` bytes from the OS CSPRNG.

    There is no fallback: callers must treat the error as fatal.
    """
    try:
        secret = secrets.token_bytes(SECRET_SIZE)
    except (OSError, NotImplementedError) as exc:
        raise SecretGenerationError("system random source unavailable") from exc
    if len(secret) != SECRET_SIZE:
        raise SecretGenerationError("short read from system random source")
    return secret


def code_at(secret: bytes, time_step: int) -> int:
    """HOTP value of *secret* for counter *time_step*."""
    msg = struct.pack(">Q", time_step)
    digest = hmac.new(secret, msg, hashlib.sha1).digest()
    offset = digest[19] & 0x0F
    value = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return value % 10**DIGITS


def format_code(code: int) -> str:
    return f"{code:0{DIGITS}d}"


def time_step_for(now: float) -> int:
    return int(now // TIME_STEP_SECONDS)


def is_code_format(text: str) -> bool:
    """True if *text* is exactly six ASCII digits."""
    return _CODE_RE.fullmatch(text) is not None


def verify(secret: bytes, input_code: str, now: float) -> bool:
    """Check *input_code* against the windows around *now*.

    Malformed input is rejected before any HMAC is computed.
    """
    if not is_code_format(input_code):
        return False
    step = time_step_for(now)
    matched = False
    for delta in range(-SKEW_STEPS, SKEW_STEPS + 1):
        expected = format_code(code_at(secret, step + delta))
        if hmac.compare_digest(expected, input_code):
            matched = True
    return matched


def base32_secret(secret: bytes) -> str:
    """RFC 4648 base32 without padding, as authenticator apps expect."""
    return base64.b32encode(secret).decode("ascii").rstrip("=")


def enrollment_uri(secret: bytes) -> str:
    return f"otpauth://totp/{ISSUER}?secret={base32_secret(secret)}&issuer={ISSUER}"


def secret_to_hex(secret: bytes) -> str:
    return secret.hex()


def secret_from_hex(value: str) -> bytes | None:
    """Decode a stored secret; ``None`` unless it is exactly ``SECRET_SIZE`` bytes."""
    try:
        secret = binascii.unhexlify(value.strip())
    except (binascii.Error, ValueError):
        return None
    if len(secret) != SECRET_SIZE:
        return None
    return secret
