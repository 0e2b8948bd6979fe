"""
GuardianShield — tamper detection for protected game values.

Client side: ``systems.shield`` (containers, probes, guardian).
Server side: ``systems.authority`` (verifier, escalator, store) behind
the FastAPI app in ``main``.
"""

__version__ = "0.1.0"
