"""
Trip OTP helpers.

OTPs are 6-digit codes drawn from `secrets`, stored encrypted at rest as a
compact JWE (direct key, A256GCM) keyed by sha256 of the configured secret.
"""

import hashlib
import hmac
import secrets

from jose import jwe
from jose.exceptions import JWEError

OTP_MIN = 100000
OTP_MAX = 1000000


def generate_otp() -> str:
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN))


class OtpCipher:
    def __init__(self, secret: str):
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()

    def encrypt(self, otp: str) -> str:
        token = jwe.encrypt(otp.encode("utf-8"), self._key, algorithm="dir", encryption="A256GCM")
        return token.decode("ascii") if isinstance(token, bytes) else token

    def decrypt(self, stored: str) -> str:
        return jwe.decrypt(stored, self._key).decode("utf-8")

    def matches(self, stored: str, candidate: str) -> bool:
        """Constant-time comparison of a candidate code against the stored OTP."""
        try:
            expected = self.decrypt(stored)
        except JWEError:
            return False
        return hmac.compare_digest(expected.encode("utf-8"), candidate.strip().encode("utf-8"))
