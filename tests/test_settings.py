import os
import unittest
from unittest import mock

from config.settings import DEFAULT_USD_JPY, Settings


class SettingsTests(unittest.TestCase):
    def test_env_defaults_match_dataclass_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            from_env = Settings.from_env()
        self.assertEqual(from_env, Settings())
        self.assertEqual(from_env.cors_origins, ["http://localhost:5173", "http://localhost:3000"])
        self.assertTrue(from_env.refresh_on_startup)
        self.assertEqual(from_env.default_usd_jpy, DEFAULT_USD_JPY)

    def test_env_overrides(self):
        env = {
            "CORS_ORIGINS": "https://dash.example.com, ,http://localhost:8080",
            "REFRESH_ON_STARTUP": "0",
            "SEED_DEMO_PORTFOLIO": "false",
            "MOCK_PRICE_JITTER": "0",
            "HISTORY_MONTHS": "12",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.cors_origins, ["https://dash.example.com", "http://localhost:8080"])
        self.assertFalse(settings.refresh_on_startup)
        self.assertFalse(settings.seed_demo_portfolio)
        self.assertEqual(settings.price_jitter, 0.0)
        self.assertEqual(settings.history_months, 12)


if __name__ == "__main__":
    unittest.main()
