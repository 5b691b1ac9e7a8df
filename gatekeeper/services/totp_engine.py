"""
TOTP Engine

Time-stepped one-time codes (RFC 6238) on top of the secret codec, plus the
provisioning URI and QR code shown during setup.
"""

import base64
import logging
from io import BytesIO

import pyotp
import qrcode
from pyotp.utils import strings_equal

from gatekeeper.config import Settings
from gatekeeper.exceptions import InvalidSecretError
from gatekeeper.utils.secret_codec import get_digest, hotp, normalize_secret

logger = logging.getLogger(__name__)


class TOTPEngine:
    """Generates and verifies time-based codes with a drift tolerance window."""

    def __init__(
        self,
        digits: int = 6,
        period: int = 30,
        algorithm: str = "sha1",
        window: int = 1,
        issuer: str = "Gatekeeper",
    ):
        get_digest(algorithm)
        if period <= 0:
            raise ValueError("TOTP period must be positive")
        self.digits = digits
        self.period = period
        self.algorithm = algorithm.lower()
        self.window = window
        self.issuer = issuer

    @classmethod
    def from_settings(cls, settings: Settings) -> "TOTPEngine":
        return cls(
            digits=settings.totp_digits,
            period=settings.totp_period,
            algorithm=settings.totp_algorithm,
            window=settings.totp_valid_window,
            issuer=settings.totp_issuer,
        )

    def counter_at(self, unix_time: float) -> int:
        return int(unix_time // self.period)

    def generate(self, secret: str, unix_time: float) -> str:
        """Code for the time step containing `unix_time`."""
        return hotp(secret, self.counter_at(unix_time), digits=self.digits, algorithm=self.algorithm)

    def verify(self, secret: str, code: str, unix_time: float, window: int | None = None) -> bool:
        """
        Check a submitted code against the steps within +/- `window` of `unix_time`.

        Each candidate is compared in constant time; the first match wins.
        """
        window = self.window if window is None else window
        submitted = "".join((code or "").split())
        if len(submitted) != self.digits or not submitted.isdigit():
            return False

        try:
            normalize_secret(secret)
        except InvalidSecretError:
            logger.warning("TOTP verification attempted against a malformed secret")
            return False

        base_counter = self.counter_at(unix_time)
        for offset in range(-window, window + 1):
            counter = base_counter + offset
            if counter < 0:
                continue
            candidate = hotp(secret, counter, digits=self.digits, algorithm=self.algorithm)
            if strings_equal(candidate, submitted):
                return True

        return False

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """otpauth:// URI understood by authenticator apps."""
        totp = pyotp.TOTP(
            normalize_secret(secret),
            digits=self.digits,
            digest=get_digest(self.algorithm),
            interval=self.period,
        )
        return totp.provisioning_uri(name=account_name, issuer_name=self.issuer)

    def qr_code(self, provisioning_uri: str) -> str:
        """Render the provisioning URI as a base64 PNG."""
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        buffer.seek(0)

        return base64.b64encode(buffer.read()).decode("utf-8")
