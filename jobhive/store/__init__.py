"""
Store module.
Contains the Redis connection and the key-value adapter everything else
is built on.
"""

from jobhive.store.adapter import RedisStore, Transaction, retry_with_backoff
from jobhive.store.connection import close_store, get_redis, init_store

__all__ = [
    "RedisStore",
    "Transaction",
    "retry_with_backoff",
    "get_redis",
    "init_store",
    "close_store",
]
