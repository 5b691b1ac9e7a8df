"""
Tests for base32 secret handling and HOTP computation.
"""

import random

import pytest

from gatekeeper.exceptions import InvalidSecretError
from gatekeeper.utils.secret_codec import (
    BASE32_ALPHABET,
    base32_decode,
    base32_encode,
    generate_secret,
    get_digest,
    hotp,
    normalize_secret,
)

RFC4226_SECRET = base32_encode(b"12345678901234567890")
RFC4226_CODES = ["755224", "287082", "359152", "969429", "338314", "254676", "287922", "162583", "399871", "520489"]


class TestGenerateSecret:
    def test_default_length_and_alphabet(self):
        """Test the default secret length and alphabet"""
        secret = generate_secret()

        assert len(secret) == 16
        assert all(symbol in BASE32_ALPHABET for symbol in secret)

    def test_secrets_differ(self):
        """Test that generated secrets differ"""
        assert generate_secret() != generate_secret()

    def test_injected_rng_is_deterministic(self):
        """Test that a seeded random source repeats secrets"""
        assert generate_secret(rng=random.Random(7)) == generate_secret(rng=random.Random(7))

    def test_longer_secret(self):
        """Test generating a longer secret"""
        assert len(generate_secret(32)) == 32

    def test_too_short_rejected(self):
        """Test that a too short secret is rejected"""
        with pytest.raises(ValueError):
            generate_secret(10)


class TestNormalizeSecret:
    def test_case_whitespace_and_padding(self):
        """Test that case, whitespace and padding are normalized"""
        assert normalize_secret(" jbsw y3dp ehpk 3pxp==") == "JBSWY3DPEHPK3PXP"

    @pytest.mark.parametrize("bad", ["JBSWY3DP1HPK3PXP", "JBSW-Y3DP", "ÄBC"])
    def test_symbols_outside_alphabet_rejected(self, bad):
        """Test that symbols outside the alphabet are rejected"""
        with pytest.raises(InvalidSecretError):
            normalize_secret(bad)

    @pytest.mark.parametrize("empty", ["", None, "  ", "===="])
    def test_empty_rejected(self, empty):
        """Test that an empty secret is rejected"""
        with pytest.raises(InvalidSecretError):
            normalize_secret(empty)


class TestBase32:
    def test_known_decoding(self):
        """Test decoding a known base32 string"""
        assert base32_decode("JBSWY3DPEHPK3PXP") == b"Hello!\xde\xad\xbe\xef"

    def test_decoding_is_case_insensitive(self):
        """Test that lowercase base32 decodes"""
        assert base32_decode("jbswy3dpehpk3pxp") == base32_decode("JBSWY3DPEHPK3PXP")

    def test_rfc_secret_encoding(self):
        """Test encoding the RFC test secret"""
        assert RFC4226_SECRET == "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"

    def test_generated_secret_survives_decode_encode(self):
        """Test that generated secrets re-encode unchanged"""
        secret = generate_secret()
        assert base32_encode(base32_decode(secret)) == secret

    def test_trailing_bits_dropped(self):
        """Test that leftover bits are dropped when decoding"""
        # 3 symbols = 15 bits -> one full byte
        assert len(base32_decode("MZX")) == 1


class TestHotp:
    @pytest.mark.parametrize("counter,expected", list(enumerate(RFC4226_CODES)))
    def test_rfc4226_vectors(self, counter, expected):
        """Test the RFC 4226 HOTP vectors"""
        assert hotp(RFC4226_SECRET, counter) == expected

    def test_zero_padding(self):
        """Test encoding with zero padding bits"""
        code = hotp(RFC4226_SECRET, 0, digits=8)
        assert len(code) == 8
        assert code.isdigit()

    def test_negative_counter_rejected(self):
        """Test that a negative HOTP counter is rejected"""
        with pytest.raises(ValueError):
            hotp(RFC4226_SECRET, -1)

    def test_unknown_algorithm_rejected(self):
        """Test that unknown digests are rejected"""
        with pytest.raises(ValueError):
            get_digest("md5")

    def test_algorithm_names_case_insensitive(self):
        """Test that digest names ignore case"""
        assert get_digest("SHA256") is get_digest("sha256")
