"""
Unit tests for settings.
"""

from jobhive.config import Settings


class TestSettings:
    """Tests for derived settings."""

    def test_redis_url_without_password(self):
        settings = Settings(redis_host="cache", redis_port=6380, redis_db=2, redis_password=None)

        assert settings.redis_url == "redis://cache:6380/2"

    def test_redis_url_quotes_password(self):
        settings = Settings(redis_host="cache", redis_port=6379, redis_db=0, redis_password="p@ss:w/rd")

        assert settings.redis_url == "redis://:p%40ss%3Aw%2Frd@cache:6379/0"

    def test_queue_list_keeps_declared_order(self):
        settings = Settings(worker_queues="high, default,,low ")

        assert settings.queue_list == ["high", "default", "low"]
