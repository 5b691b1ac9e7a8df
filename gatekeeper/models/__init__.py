from .activity_log import ActivityLog
from .two_factor import (
    BackupCode,
    FactorRegistration,
    TrustedDevice,
    TwoFactorMethod,
    TwoFactorPolicy,
    VerificationChallenge,
)
from .user import Role, User

__all__ = [
    "ActivityLog",
    "BackupCode",
    "FactorRegistration",
    "Role",
    "TrustedDevice",
    "TwoFactorMethod",
    "TwoFactorPolicy",
    "User",
    "VerificationChallenge",
]
