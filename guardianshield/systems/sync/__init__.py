"""
GuardianShield — Sync Protocol

Wire messages shared by client and server, and the client transport.
"""

from guardianshield.systems.sync.client import SyncClient
from guardianshield.systems.sync.types import (
    RegisterPlayerRequest,
    RegisterPlayerResponse,
    SyncRequest,
    SyncResult,
    SyncStatus,
    TamperingAck,
    TamperingReport,
)

__all__ = [
    "RegisterPlayerRequest",
    "RegisterPlayerResponse",
    "SyncClient",
    "SyncRequest",
    "SyncResult",
    "SyncStatus",
    "TamperingAck",
    "TamperingReport",
]
