"""
User roles enumeration.

Defines the role types for the trip sharing system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Reviews consolidations, join requests and overdue approvals
        EMPLOYEE: Submits trips and requests to join existing bookings (default role)
    """
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"
