"""
Board State Enums

Enum types shared by the store, the scheduler and the API.
Values must match exactly with database constraints.
"""

from enum import Enum


class ActionType(str, Enum):
    """Kind of change recorded in the per-project history."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"


class BackupKind(str, Enum):
    """What triggered a backup snapshot."""

    STARTUP = "startup"  # First snapshot when the backup table is empty
    HOURLY = "hourly"
    DAILY = "daily"
    MANUAL = "manual"  # On-demand, through the API
