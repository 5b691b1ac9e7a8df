"""
Role Constants

Role names used for authorization checks.
"""

from enum import Enum


class RoleName(str, Enum):
    """Enumeration of role names in the system."""

    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


# Roles allowed to manage the global 2FA policy
ADMIN_ROLES = [RoleName.ADMIN, RoleName.SUPERADMIN]
