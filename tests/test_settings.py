import os
import unittest
from unittest.mock import patch

from config.settings import EngineSettings, load_settings


class LoadSettingsTests(unittest.TestCase):
    def test_env_overrides(self) -> None:
        env = {
            "COINGECKO_BASE_URL": "https://pro-api.example/api/v3/",
            "COINGECKO_API_KEY": "demo",
            "CACHE_BACKEND": " Redis ",
            "REDIS_URL": "redis://cache:6379/1",
            "CACHE_VOLATILE_TTL_SEC": "60",
            "SEARCH_RESULT_LIMIT": "5",
        }
        with patch.dict(os.environ, env):
            s = load_settings()

        self.assertEqual(s.coingecko_base_url, "https://pro-api.example/api/v3")
        self.assertEqual(s.coingecko_api_key, "demo")
        self.assertEqual(s.cache_backend, "redis")
        self.assertEqual(s.redis_url, "redis://cache:6379/1")
        self.assertEqual(s.volatile_ttl_sec, 60)
        self.assertEqual(s.search_result_limit, 5)

    def test_bad_numbers_keep_defaults(self) -> None:
        with patch.dict(os.environ, {"CACHE_DURABLE_TTL_SEC": "an hour", "COINGECKO_TIMEOUT_SEC": ""}):
            s = load_settings()

        self.assertEqual(s.durable_ttl_sec, 3600)
        self.assertEqual(s.request_timeout_sec, 10.0)

    def test_defaults(self) -> None:
        s = EngineSettings()
        self.assertEqual(s.cache_namespace, "crypto_cache")
        self.assertEqual(s.volatile_ttl_sec, 300)
        self.assertEqual(s.cache_backend, "memory")


if __name__ == "__main__":
    unittest.main()
