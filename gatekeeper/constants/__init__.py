"""Constants package for Gatekeeper."""

from .auth import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from .roles import ADMIN_ROLES, RoleName

__all__ = [
    # Role constants
    "RoleName",
    "ADMIN_ROLES",
    # Auth constants
    "SECRET_KEY",
    "ALGORITHM",
    "ACCESS_TOKEN_EXPIRE_MINUTES",
]
