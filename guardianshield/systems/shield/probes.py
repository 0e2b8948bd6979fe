"""
GuardianShield — Detection Probes

Probes are the sensory organs of the shield. Each one answers a single
question about the runtime environment and returns a DetectionResult.
Probes never touch game state.

Four probe classes, in the order the LocalGuardian runs them:
  1. ToolProbe          known cheat tools installed or running
  2. MemoryRegionProbe  registered byte regions changed, clock jumps
  3. DebuggerProbe      a debugger or tracer is attached
  4. EmulatorProbe      running inside a known emulator

The signal sources are opaque boolean checks and are replaceable per
platform; the defaults below use psutil and plain filesystem checks.
"""

from __future__ import annotations

import os
import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from pathlib import Path

import psutil
import structlog

from guardianshield.primitives.checksum import checksum_bytes
from guardianshield.primitives.common import DetectionKind, Severity
from guardianshield.systems.shield.types import DetectionResult

logger = structlog.get_logger().bind(system="shield", component="probes")

BooleanCheck = Callable[[], bool]

KNOWN_CHEAT_PACKAGES: tuple[str, ...] = (
    "com.gameguardian.app",
    "org.cheatengine.cegui",
    "catch_.me_.if_.you_.can_",
    "com.zune.gamekiller",
    "com.lmzs.gamehacker",
    "com.leo.simulator",
    "com.cih.game_cih",
    "com.xmodgame",
    "com.zhangkun.gameplay",
    "org.sbtools.gamehack",
    "com.glt.ctrler",
    "com.finalshare.freecoin",
)

SUSPICIOUS_PROCESSES: tuple[str, ...] = (
    "gameguardian",
    "cheatengine",
    "gamekiller",
    "gamehacker",
    "xposed",
    "frida",
    "substrate",
    "memdump",
    "memmod",
)

EMULATOR_MARKER_FILES: tuple[str, ...] = (
    "/dev/socket/qemud",
    "/dev/qemu_pipe",
    "/system/lib/libc_malloc_debug_qemu.so",
    "/sys/qemu_trace",
    "/system/bin/qemu-props",
)


# ─── Strategy ABC ───────────────────────────────────────────────


class DetectionProbe(ABC):
    """
    Strategy base class for all detection probes.

    ``probe_name`` is a stable identifier used in logs and reports.
    ``run`` must be side-effect free with respect to game state.
    """

    @property
    @abstractmethod
    def probe_name(self) -> str:
        ...

    @abstractmethod
    def run(self) -> DetectionResult:
        ...


def _any_check(checks: Iterable[BooleanCheck], probe: str) -> str | None:
    """Name of the first check that fires, or None. Failing checks count as negative."""
    for check in checks:
        try:
            if check():
                return getattr(check, "__name__", repr(check))
        except Exception as exc:
            logger.debug("probe_check_failed", probe=probe, error=str(exc))
    return None


# ─── Tool Probe ─────────────────────────────────────────────────


def running_process_names() -> list[str]:
    """Lower-cased names and command lines of every visible process."""
    names: list[str] = []
    for p in psutil.process_iter(["name", "cmdline"]):
        try:
            name = (p.info.get("name") or "").lower()
            cmdline = " ".join(p.info.get("cmdline") or []).lower()
            names.append(f"{name} {cmdline}".strip())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return names


def no_installed_packages() -> list[str]:
    return []


class ToolProbe(DetectionProbe):
    """
    Matches installed packages and running processes against known
    cheat-tool lists.
    """

    def __init__(
        self,
        package_lister: Callable[[], Iterable[str]] = no_installed_packages,
        process_lister: Callable[[], Iterable[str]] = running_process_names,
        known_packages: Iterable[str] = KNOWN_CHEAT_PACKAGES,
        suspicious_processes: Iterable[str] = SUSPICIOUS_PROCESSES,
    ) -> None:
        self._list_packages = package_lister
        self._list_processes = process_lister
        self._packages = {p.lower() for p in known_packages}
        self._processes = [p.lower() for p in suspicious_processes]

    @property
    def probe_name(self) -> str:
        return "tool"

    def add_tool_package(self, package: str) -> None:
        self._packages.add(package.lower())

    def add_suspicious_process(self, name: str) -> None:
        needle = name.lower()
        if needle not in self._processes:
            self._processes.append(needle)

    def run(self) -> DetectionResult:
        installed = sorted({p.lower() for p in self._list_packages()} & self._packages)
        if installed:
            return DetectionResult(
                detected=True,
                kind=DetectionKind.TOOL_DETECTED,
                confidence=Severity.CRITICAL,
                details={"detection_type": "installed_package", "packages": installed},
            )

        matched: list[str] = []
        for process in self._list_processes():
            line = process.lower()
            for needle in self._processes:
                if needle in line and needle not in matched:
                    matched.append(needle)
        if matched:
            return DetectionResult(
                detected=True,
                kind=DetectionKind.TOOL_DETECTED,
                confidence=Severity.CRITICAL,
                details={"detection_type": "running_process", "processes": matched},
            )
        return DetectionResult.clean()


# ─── Memory Region Probe ────────────────────────────────────────


class MemoryRegionProbe(DetectionProbe):
    """
    Tracks checksums of registered byte regions and watches for clock jumps.

    Legitimate writes must go through ``update_region`` so the baseline
    follows. A gap between scans larger than ``max_clock_gap_ms`` (or a
    negative one) is treated as time manipulation. A scan that raises is
    reported as tampering.
    """

    def __init__(
        self,
        max_clock_gap_ms: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_gap_ms = max_clock_gap_ms
        self._clock = clock
        self._regions: dict[str, bytearray] = {}
        self._baselines: dict[str, str] = {}
        self._last_scan: float | None = None

    @property
    def probe_name(self) -> str:
        return "memory"

    @property
    def max_clock_gap_ms(self) -> int:
        return self._max_gap_ms

    @property
    def regions(self) -> list[str]:
        return list(self._regions)

    def rebase(self) -> None:
        """Forget the previous scan time so the next scan starts a fresh clock baseline."""
        self._last_scan = None

    def register_region(self, name: str, region: bytearray) -> None:
        self._regions[name] = region
        self._baselines[name] = checksum_bytes(region)

    def update_region(self, name: str, data: bytes) -> None:
        region = self._regions[name]
        region[:] = data
        self._baselines[name] = checksum_bytes(region)

    def unregister_region(self, name: str) -> None:
        self._regions.pop(name, None)
        self._baselines.pop(name, None)

    def run(self) -> DetectionResult:
        try:
            return self._scan()
        except Exception as exc:
            logger.warning("memory_scan_failed", error=str(exc))
            return DetectionResult(
                detected=True,
                kind=DetectionKind.MEMORY_TAMPERING,
                confidence=Severity.HIGH,
                details={"reason": "scan_error", "error": str(exc)},
            )

    def _scan(self) -> DetectionResult:
        now = self._clock()
        last, self._last_scan = self._last_scan, now
        if last is not None:
            gap_ms = (now - last) * 1000.0
            if gap_ms > self._max_gap_ms or gap_ms < 0:
                return DetectionResult(
                    detected=True,
                    kind=DetectionKind.MEMORY_TAMPERING,
                    confidence=Severity.HIGH,
                    details={
                        "reason": "time_manipulation",
                        "gap_ms": round(gap_ms, 1),
                        "expected_max_gap_ms": self._max_gap_ms,
                    },
                )

        changed = [
            name
            for name, region in self._regions.items()
            if checksum_bytes(region) != self._baselines[name]
        ]
        if changed:
            return DetectionResult(
                detected=True,
                kind=DetectionKind.MEMORY_TAMPERING,
                confidence=Severity.HIGH,
                details={"reason": "region_modified", "regions": changed},
            )
        return DetectionResult.clean()


# ─── Debugger Probe ─────────────────────────────────────────────


def python_trace_hook() -> bool:
    return sys.gettrace() is not None


def linux_tracer_attached() -> bool:
    status = Path("/proc/self/status")
    if not status.exists():
        return False
    for line in status.read_text().splitlines():
        if line.startswith("TracerPid:"):
            return line.split(":", 1)[1].strip() not in ("", "0")
    return False


class DebuggerProbe(DetectionProbe):
    """Fires when any of its checks reports an attached debugger."""

    def __init__(self, checks: Iterable[BooleanCheck] | None = None) -> None:
        self._checks = list(checks) if checks is not None else [
            python_trace_hook,
            linux_tracer_attached,
        ]

    @property
    def probe_name(self) -> str:
        return "debugger"

    def run(self) -> DetectionResult:
        fired = _any_check(self._checks, self.probe_name)
        if fired is None:
            return DetectionResult.clean()
        return DetectionResult(
            detected=True,
            kind=DetectionKind.DEBUGGER_DETECTED,
            confidence=Severity.CRITICAL,
            details={"check": fired},
        )


# ─── Emulator Probe ─────────────────────────────────────────────


def emulator_marker_present() -> bool:
    return any(os.path.exists(path) for path in EMULATOR_MARKER_FILES)


class EmulatorProbe(DetectionProbe):
    """Fires when the process appears to run inside a known emulator."""

    def __init__(
        self,
        checks: Iterable[BooleanCheck] | None = None,
        enabled: bool = True,
    ) -> None:
        self._checks = list(checks) if checks is not None else [emulator_marker_present]
        self._enabled = enabled

    @property
    def probe_name(self) -> str:
        return "emulator"

    def run(self) -> DetectionResult:
        if not self._enabled:
            return DetectionResult.clean()
        fired = _any_check(self._checks, self.probe_name)
        if fired is None:
            return DetectionResult.clean()
        return DetectionResult(
            detected=True,
            kind=DetectionKind.EMULATOR_DETECTED,
            confidence=Severity.MEDIUM,
            details={"check": fired},
        )


def default_probes(
    max_clock_gap_ms: int = 5000,
    allow_emulator: bool = False,
) -> list[DetectionProbe]:
    """Probes in priority order: tool, memory, debugger, emulator."""
    return [
        ToolProbe(),
        MemoryRegionProbe(max_clock_gap_ms=max_clock_gap_ms),
        DebuggerProbe(),
        EmulatorProbe(enabled=not allow_emulator),
    ]


def run_in_order(probes: Iterable[DetectionProbe]) -> tuple[DetectionProbe, DetectionResult] | None:
    """
    Run probes in order and stop at the first positive detection.
    A probe that raises is logged and counted as not detected.
    """
    for probe in probes:
        try:
            result = probe.run()
        except Exception as exc:
            logger.warning("probe_failed", probe=probe.probe_name, error=str(exc))
            continue
        if result.detected:
            return probe, result
    return None
