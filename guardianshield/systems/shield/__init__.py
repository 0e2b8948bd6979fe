"""
GuardianShield — Shield (client side)

Protected values, detection probes, and the LocalGuardian that checks
them on a fixed interval and reports positives to the authority.
"""

from guardianshield.systems.shield.container import IntegrityContainer
from guardianshield.systems.shield.guardian import CycleSection, LocalGuardian
from guardianshield.systems.shield.probes import (
    DebuggerProbe,
    DetectionProbe,
    EmulatorProbe,
    MemoryRegionProbe,
    ToolProbe,
    default_probes,
)
from guardianshield.systems.shield.types import CheatDetectionEvent, DetectionResult

__all__ = [
    "CheatDetectionEvent",
    "CycleSection",
    "DebuggerProbe",
    "DetectionProbe",
    "DetectionResult",
    "EmulatorProbe",
    "IntegrityContainer",
    "LocalGuardian",
    "MemoryRegionProbe",
    "ToolProbe",
    "default_probes",
]
