"""
CronJob Controller - Leader Election

Redis-backed lease used so only one controller replica reconciles at a time.
"""

from services.locking.leader import LeaderElector
from services.locking.redis_lock import RedisLock, default_identity

__all__ = [
    "LeaderElector",
    "RedisLock",
    "default_identity",
]
