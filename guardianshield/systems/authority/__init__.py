"""
GuardianShield — Authority (server side)

The source of truth for player state. Verifies reported values against
history, escalates repeated violations into suspension, and persists
everything through a PlayerRecordStore.
"""

from guardianshield.systems.authority.errors import (
    AuthorizationError,
    GuardianShieldError,
    InputValidationError,
    IntegrityViolation,
    PlayerNotFound,
    StoreUnavailable,
    SuspensionError,
)
from guardianshield.systems.authority.escalator import ViolationEscalator
from guardianshield.systems.authority.service import AuthorityService
from guardianshield.systems.authority.store import (
    InMemoryPlayerStore,
    PlayerRecordStore,
    RedisPlayerStore,
)
from guardianshield.systems.authority.types import (
    EscalationOutcome,
    PlayerRecord,
    SyncLogEntry,
    TamperingEvent,
    VerificationResult,
    ViolationEntry,
)
from guardianshield.systems.authority.verifier import ValueVerifier

__all__ = [
    "AuthorityService",
    "AuthorizationError",
    "EscalationOutcome",
    "GuardianShieldError",
    "InMemoryPlayerStore",
    "InputValidationError",
    "IntegrityViolation",
    "PlayerNotFound",
    "PlayerRecord",
    "PlayerRecordStore",
    "RedisPlayerStore",
    "StoreUnavailable",
    "SuspensionError",
    "SyncLogEntry",
    "TamperingEvent",
    "ValueVerifier",
    "VerificationResult",
    "ViolationEntry",
    "ViolationEscalator",
]
