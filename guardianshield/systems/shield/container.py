"""
GuardianShield — Integrity Container

Wraps a single protected game value. Game code reads and writes the value
only through ``get``/``set``; any mutation that bypasses them leaves the
stored checksum stale, which is observed on the next access and reported
by ``verify``.

The checksum is a cheap tamper signal, not a security boundary.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any, Generic, TypeVar

import structlog

from guardianshield.primitives.checksum import checksum
from guardianshield.primitives.common import utc_now

logger = structlog.get_logger().bind(system="shield", component="container")

T = TypeVar("T")

ValidationHook = Callable[[Any], bool]


class IntegrityContainer(Generic[T]):
    """
    A protected value with a stored checksum.

    Mismatches observed during ``get``/``set`` never raise: they are logged
    and latched so the next ``verify()`` returns False.
    """

    def __init__(
        self,
        key: str,
        initial_value: T,
        validation_hook: ValidationHook | None = None,
    ) -> None:
        self._key = key
        self._original: T = copy.deepcopy(initial_value)
        self._value: T = copy.deepcopy(initial_value)
        self._checksum = checksum(self._value)
        self._hook = validation_hook
        self._lock = threading.RLock()
        self._latched = False

        self.access_count: int = 0
        self.last_access: datetime = utc_now()
        self.mismatch_count: int = 0

    @property
    def key(self) -> str:
        return self._key

    @property
    def original_value(self) -> T:
        return copy.deepcopy(self._original)

    @property
    def checksum(self) -> str:
        return self._checksum

    @property
    def validation_hook(self) -> ValidationHook | None:
        return self._hook

    @validation_hook.setter
    def validation_hook(self, hook: ValidationHook | None) -> None:
        self._hook = hook

    # ─── Accessors ────────────────────────────────────────────────

    def get(self) -> T:
        with self._lock:
            self._observe()
            self._touch()
            return copy.deepcopy(self._value)

    def set(self, value: T) -> None:
        with self._lock:
            self._observe()
            new_value = copy.deepcopy(value)
            new_checksum = checksum(new_value)
            self._value = new_value
            self._checksum = new_checksum
            self._touch()

    def reset(self) -> None:
        """Restore the original value and recompute the checksum."""
        with self._lock:
            self._value = copy.deepcopy(self._original)
            self._checksum = checksum(self._value)
            self._touch()
        logger.info("container_reset", key=self._key)

    def verify(self) -> bool:
        """
        True when the checksum matches the current value, no mismatch was
        latched since the last call, and the validation hook (if any) agrees.
        """
        with self._lock:
            valid = self._checksum_valid()
            if not valid:
                self._record_mismatch()
            latched, self._latched = self._latched, False
            if not valid or latched:
                return False
            value = copy.deepcopy(self._value)

        if self._hook is None:
            return True
        try:
            return bool(self._hook(value))
        except Exception as exc:
            logger.warning("validation_hook_failed", key=self._key, error=str(exc))
            return False

    # ─── Internal ─────────────────────────────────────────────────

    def _checksum_valid(self) -> bool:
        return checksum(self._value) == self._checksum

    def _observe(self) -> None:
        if not self._checksum_valid():
            self._record_mismatch()
            self._latched = True

    def _record_mismatch(self) -> None:
        self.mismatch_count += 1
        logger.warning(
            "integrity_mismatch",
            key=self._key,
            mismatches=self.mismatch_count,
        )

    def _touch(self) -> None:
        self.access_count += 1
        self.last_access = utc_now()

    def __repr__(self) -> str:
        return f"IntegrityContainer(key={self._key!r}, checksum={self._checksum})"
