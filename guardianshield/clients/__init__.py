"""
GuardianShield — External Service Clients

Connection management for Redis.
"""

from guardianshield.clients.redis import RedisClient

__all__ = ["RedisClient"]
