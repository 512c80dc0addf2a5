"""
Settings Test Factory

Builds Settings instances without reading a local .env file.
"""


def make_settings(**overrides):
    """Settings with KV credentials, a near-zero retry delay and ``overrides`` applied."""
    from practice_cache.core.config.settings import Settings

    values = {
        "KV_URL": "redis://kv.test:6379",
        "KV_TOKEN": "test-token",
        "CACHE_RETRY_BASE_DELAY": 0.001,
        "ENVIRONMENT": "test",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
