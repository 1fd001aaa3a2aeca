from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    DIRECTOR = "DIRECTOR"
    ADMIN = "ADMIN"
    MENTOR = "MENTOR"
    PARENT = "PARENT"


# Roles allowed to take, prune, export and restore backups.
BACKUP_ROLES = frozenset({UserRole.DIRECTOR, UserRole.ADMIN})
