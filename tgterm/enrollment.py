"""First-run TOTP enrollment: create the secret and show it as a QR code."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, TextIO

import qrcode

from . import totp
from .store import SECRET_KEY

if TYPE_CHECKING:
    from .store import KeyValueStore

logger = logging.getLogger(__name__)


def print_enrollment(secret: bytes, out: TextIO = sys.stdout) -> None:
    uri = totp.enrollment_uri(secret)
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_L, border=1)
    qr.add_data(uri)
    qr.make(fit=True)

    print("\n=== TOTP Setup ===", file=out)
    print("Scan this QR code with Google Authenticator:\n", file=out)
    qr.print_ascii(out=out, invert=True)
    print(f"\nOr enter this secret manually: {totp.base32_secret(secret)}", file=out)
    print("==================\n", file=out)
    out.flush()


def ensure_secret(store: KeyValueStore, out: TextIO = sys.stdout) -> bool:
    """Create and display the TOTP secret unless one is already stored.

    Returns True when a new secret was created. Raises
    ``totp.SecretGenerationError`` if no secure randomness is available.
    """
    if store.get(SECRET_KEY) is not None:
        return False

    secret = totp.generate_secret()
    store.set(SECRET_KEY, totp.secret_to_hex(secret))
    logger.info("Generated new TOTP secret")
    print_enrollment(secret, out=out)
    return True
