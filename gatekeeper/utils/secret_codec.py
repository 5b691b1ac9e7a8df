"""
Secret Codec

Base32 handling for TOTP secrets and RFC 4226 HOTP code computation.
Everything here is pure: no I/O, no clock, no database.
"""

import hashlib
import secrets
from random import Random

import pyotp

from gatekeeper.exceptions import InvalidSecretError

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

# 16 symbols * 5 bits = 80 bits
DEFAULT_SECRET_LENGTH = 16
MIN_SECRET_LENGTH = 16

SUPPORTED_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}

_system_random = secrets.SystemRandom()


def generate_secret(length: int = DEFAULT_SECRET_LENGTH, rng: Random | None = None) -> str:
    """
    Generate a base32 secret.

    Args:
        length: Number of base32 symbols (at least 16)
        rng: Random source; defaults to the OS CSPRNG

    Returns:
        Upper-case base32 string without padding
    """
    if length < MIN_SECRET_LENGTH:
        raise ValueError(f"Secrets must be at least {MIN_SECRET_LENGTH} base32 symbols")
    rng = rng or _system_random
    return "".join(rng.choice(BASE32_ALPHABET) for _ in range(length))


def normalize_secret(text: str | None) -> str:
    """
    Canonicalize user- or storage-supplied base32 text.

    Whitespace and trailing `=` padding are removed and the result is
    upper-cased. Symbols outside the alphabet are rejected rather than
    silently decoded as zero.
    """
    if not text:
        raise InvalidSecretError("Secret is empty")

    cleaned = "".join(text.split()).rstrip("=").upper()
    if not cleaned:
        raise InvalidSecretError("Secret is empty")

    for symbol in cleaned:
        if symbol not in BASE32_ALPHABET:
            raise InvalidSecretError()

    return cleaned


def base32_decode(text: str) -> bytes:
    """Decode base32 by accumulating 5-bit groups; leftover bits are dropped."""
    buffer = 0
    bits = 0
    output = bytearray()

    for symbol in normalize_secret(text):
        buffer = (buffer << 5) | BASE32_ALPHABET.index(symbol)
        bits += 5
        if bits >= 8:
            bits -= 8
            output.append((buffer >> bits) & 0xFF)
            buffer &= (1 << bits) - 1

    return bytes(output)


def base32_encode(data: bytes) -> str:
    """Encode bytes as unpadded upper-case base32."""
    buffer = 0
    bits = 0
    output = []

    for byte in data:
        buffer = (buffer << 8) | byte
        bits += 8
        while bits >= 5:
            bits -= 5
            output.append(BASE32_ALPHABET[(buffer >> bits) & 0x1F])
        buffer &= (1 << bits) - 1

    if bits:
        output.append(BASE32_ALPHABET[(buffer << (5 - bits)) & 0x1F])

    return "".join(output)


def get_digest(algorithm: str):
    """Resolve an HMAC algorithm name to a hashlib constructor."""
    try:
        return SUPPORTED_ALGORITHMS[algorithm.lower()]
    except (KeyError, AttributeError):
        raise ValueError(f"Unsupported HMAC algorithm: {algorithm!r}") from None


def hotp(secret: str, counter: int, digits: int = 6, algorithm: str = "sha1") -> str:
    """
    Compute an HOTP code (HMAC + dynamic truncation, RFC 4226).

    The secret is re-encoded canonically before being handed to pyotp so the
    key bytes are exactly what `base32_decode` produces.

    Returns:
        Zero-padded code of `digits` characters
    """
    if counter < 0:
        raise ValueError("HOTP counter must be non-negative")

    canonical = base32_encode(base32_decode(secret))
    return pyotp.HOTP(canonical, digits=digits, digest=get_digest(algorithm)).at(counter)
