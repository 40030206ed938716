"""Core infrastructure module.

This module exports core utilities used across features.
Never imports from features - only from external libraries.
"""

from .config import Settings, get_settings, get_global_settings
from .exceptions import (
    ServiceException,
    DataUnavailableError,
    ExternalStoreError,
    ExternalStoreUnreachableError,
    InvalidInputError,
    PlayerNotFoundError,
    SyncInconsistencyError,
    SyncAlreadyRunningError,
)
from .enums import SuspicionLevel, FlagPolarity, SyncState, SignalName
from .models import Base, as_utc

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "get_global_settings",
    # Exceptions
    "ServiceException",
    "DataUnavailableError",
    "ExternalStoreError",
    "ExternalStoreUnreachableError",
    "InvalidInputError",
    "PlayerNotFoundError",
    "SyncInconsistencyError",
    "SyncAlreadyRunningError",
    # Enums
    "SuspicionLevel",
    "FlagPolarity",
    "SyncState",
    "SignalName",
    # Models
    "Base",
    "as_utc",
]
