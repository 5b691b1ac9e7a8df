from .two_factor import (
    BackupCodeRepository,
    ChallengeRepository,
    FactorRegistrationRepository,
    PolicyRepository,
    TrustedDeviceRepository,
)

__all__ = [
    "BackupCodeRepository",
    "ChallengeRepository",
    "FactorRegistrationRepository",
    "PolicyRepository",
    "TrustedDeviceRepository",
]
