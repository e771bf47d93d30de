"""
Pytest configuration and shared fixtures.
"""

import os

import pytest
from prometheus_client import CollectorRegistry

from jobhive.jobs.queue import Queue
from jobhive.observability.metrics import MetricsCollector
from jobhive.store.adapter import RedisStore
from jobhive.worker.host import Host
from tests.fakes import DEAD_PID, TEST_HOSTNAME, TEST_NAMESPACE, InMemoryRedis


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    """In-memory Redis client."""
    return InMemoryRedis()


@pytest.fixture
def store(fake_redis: InMemoryRedis) -> RedisStore:
    """Store adapter over the in-memory client."""
    return RedisStore(fake_redis, namespace=TEST_NAMESPACE)


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def queue(store: RedisStore, metrics: MetricsCollector) -> Queue:
    """Queue client."""
    return Queue(store, expiry_seconds=3600, metrics=metrics)


@pytest.fixture
def host(store: RedisStore) -> Host:
    """Host registry named like this machine for the tests."""
    return Host(store, hostname=TEST_HOSTNAME, stale_after=30.0, idle_grace=60.0, worker_expiry=3600)


@pytest.fixture
def live_worker_id() -> str:
    """Worker id whose pid is this test process."""
    return f"{TEST_HOSTNAME}:{os.getpid()}"


@pytest.fixture
def dead_worker_id() -> str:
    """Worker id whose pid does not exist."""
    return f"{TEST_HOSTNAME}:{DEAD_PID}"

