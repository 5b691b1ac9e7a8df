"""
Two-Factor Authentication Models

One registration per user plus the one-time material hanging off it:
hashed backup codes, hashed trusted-device tokens and hashed e-mail/SMS
verification challenges. Raw codes and tokens are never stored.
"""

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String

from gatekeeper.database import Base


class TwoFactorMethod(str, enum.Enum):
    """Second-factor methods a user can configure."""

    TOTP = "totp"
    EMAIL = "email"
    SMS = "sms"

    @property
    def uses_channel(self) -> bool:
        """Whether codes for this method are delivered out of band."""
        return self in (TwoFactorMethod.EMAIL, TwoFactorMethod.SMS)


def _method_column(**kwargs) -> Column:
    return Column(
        Enum(TwoFactorMethod, name="twofactormethod", values_callable=lambda e: [m.value for m in e]),
        **kwargs,
    )


class FactorRegistration(Base):
    """
    Per-user second-factor configuration.

    `is_enabled` implies `is_confirmed`; an unconfirmed row never gates login.
    """

    __tablename__ = "two_factor_registrations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    method = _method_column(nullable=False, default=TwoFactorMethod.TOTP)

    # Base32 TOTP secret, only for the totp method
    secret = Column(String(64), nullable=True)
    # Only for the sms method
    phone_number = Column(String(32), nullable=True)

    is_enabled = Column(Boolean, default=False, nullable=False)
    is_confirmed = Column(Boolean, default=False, nullable=False)

    enabled_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<FactorRegistration(user_id={self.user_id}, method={self.method}, "
            f"enabled={self.is_enabled}, confirmed={self.is_confirmed})>"
        )


class BackupCode(Base):
    """Single-use recovery code; only the sha256 of the normalized code is kept."""

    __tablename__ = "two_factor_backup_codes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("ix_two_factor_backup_codes_user_used", "user_id", "is_used"),)


class TrustedDevice(Base):
    """Device exempted from the login challenge until `trusted_until`."""

    __tablename__ = "two_factor_trusted_devices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False)

    # Informational only
    device_name = Column(String(200), nullable=True)
    browser = Column(String(100), nullable=True)
    os = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)

    trusted_until = Column(DateTime, nullable=False, index=True)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<TrustedDevice(id={self.id}, user_id={self.user_id}, until={self.trusted_until})>"


class VerificationChallenge(Base):
    """Short-lived numeric code sent by e-mail or SMS."""

    __tablename__ = "two_factor_challenges"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    method = _method_column(nullable=False, default=TwoFactorMethod.EMAIL)
    expires_at = Column(DateTime, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TwoFactorPolicy(Base):
    """Global 2FA policy managed by administrators. Single row, id = 1."""

    __tablename__ = "two_factor_settings"

    id = Column(Integer, primary_key=True)
    trust_days = Column(Integer, nullable=False, default=30)
    totp_enabled = Column(Boolean, nullable=False, default=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    sms_enabled = Column(Boolean, nullable=False, default=False)
    grace_period_days = Column(Integer, nullable=False, default=7)
    required_roles = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def allowed_methods(self) -> list[TwoFactorMethod]:
        flags = {
            TwoFactorMethod.TOTP: self.totp_enabled,
            TwoFactorMethod.EMAIL: self.email_enabled,
            TwoFactorMethod.SMS: self.sms_enabled,
        }
        return [method for method, allowed in flags.items() if allowed]
