"""
auth/otp.py -- Time-based one-time passwords for password reset.

RFC 6238 TOTP from cryptography's twofactor module over the shared
OTP_SECRET (base32): 6 digits, 300-second step. The TOTP check alone is not
enough to reset a password -- every code in the current window is the same
for all users -- so AuthService also requires the code to match the value
cached under "{user_id}:otp".
"""

from __future__ import annotations

import time
from collections.abc import Callable

from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP

from core.config import Settings, decode_base32_secret


class OtpGenerator:
    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self._step = settings.otp_step
        self._valid_window = settings.otp_valid_window
        self._clock = clock
        self._totp = TOTP(
            decode_base32_secret(settings.otp_secret),
            settings.otp_digits,
            SHA1(),
            settings.otp_step,
        )

    def generate(self) -> str:
        return self._totp.generate(int(self._clock())).decode("ascii")

    def verify(self, code: str) -> bool:
        """True if code matches the current step or one within the valid window."""
        if not code or not (code.isascii() and code.isdigit()):
            return False
        now = int(self._clock())
        for offset in range(-self._valid_window, self._valid_window + 1):
            try:
                self._totp.verify(code.encode("ascii"), now + offset * self._step)
            except InvalidToken:
                continue
            return True
        return False
