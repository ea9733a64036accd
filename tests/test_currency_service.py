import asyncio
import os
import time
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from services import currency_service
from services.currency_service import (
    DEFAULT_FALLBACK_RATE,
    clear_currency_cache,
    convert_amounts,
    convert_with_rate,
    get_usd_krw_rate,
    resolve_currency,
    summarize_by_currency,
)


class TestCurrencyConversion(unittest.TestCase):
    def test_round_trip_is_identity(self):
        for amount in (0.01, 1.0, 1234.56, 987654.321):
            krw = convert_with_rate(amount, "USD", "KRW", 1387.25)
            back = convert_with_rate(krw, "KRW", "USD", 1387.25)
            self.assertAlmostEqual(back, amount, places=9)

    def test_same_currency_and_bad_rate_pass_through(self):
        self.assertEqual(convert_with_rate(10, "KRW", "KRW", 1300), 10)
        self.assertEqual(convert_with_rate(10, "USD", "KRW", 0), 10)
        self.assertEqual(convert_with_rate(10, "USD", "KRW", float("nan")), 10)
        self.assertEqual(convert_with_rate(float("inf"), "USD", "KRW", 1300), 0.0)

    def test_convert_amounts_fills_both_currencies(self):
        self.assertEqual(convert_amounts(100.0, "USD", 1300.0), {"USD": 100.0, "KRW": 130000.0})
        self.assertEqual(convert_amounts(100.0, "USD", 1300.0, targets=["USD"]), {"USD": 100.0, "KRW": 0.0})

    def test_summarize_by_currency(self):
        items = [
            {"currency": "USD", "amount": 10.0},
            SimpleNamespace(currency="KRW", amount=5000),
            {"currency": "EUR", "amount": 99.0},
            {"currency": "USD", "amount": None},
        ]
        self.assertEqual(summarize_by_currency(items), {"USD": 10.0, "KRW": 5000.0})

    def test_resolve_currency(self):
        user = SimpleNamespace(currency="KRW")
        self.assertEqual(resolve_currency(user), "KRW")
        self.assertEqual(resolve_currency(user, "usd"), "USD")
        self.assertEqual(resolve_currency(user, "EUR"), "KRW")
        self.assertEqual(resolve_currency(SimpleNamespace(currency=None)), "USD")


class TestExchangeRateCache(unittest.TestCase):
    def setUp(self):
        clear_currency_cache()

    def tearDown(self):
        clear_currency_cache()

    def test_live_rate_then_cache(self):
        fetch = AsyncMock(return_value=1350.0)
        with patch("services.currency_service._fetch_live_rate", new=fetch):
            first = asyncio.run(get_usd_krw_rate())
            second = asyncio.run(get_usd_krw_rate())
        self.assertEqual(first, {"rate": 1350.0, "source": "live"})
        self.assertEqual(second, {"rate": 1350.0, "source": "cache"})
        self.assertEqual(fetch.await_count, 1)

    def test_force_refresh_bypasses_cache(self):
        fetch = AsyncMock(side_effect=[1350.0, 1360.0])
        with patch("services.currency_service._fetch_live_rate", new=fetch):
            asyncio.run(get_usd_krw_rate())
            refreshed = asyncio.run(get_usd_krw_rate(force_refresh=True))
        self.assertEqual(refreshed, {"rate": 1360.0, "source": "live"})

    def test_failure_without_cache_uses_default(self):
        fetch = AsyncMock(side_effect=httpx.ConnectError("down"))
        with patch("services.currency_service._fetch_live_rate", new=fetch):
            out = asyncio.run(get_usd_krw_rate())
        self.assertEqual(out, {"rate": DEFAULT_FALLBACK_RATE, "source": "fallback"})

    def test_failure_reuses_stale_cached_rate(self):
        currency_service._fx_cache["USD-KRW"] = (1299.5, time.time() - 10 * 3600)
        fetch = AsyncMock(side_effect=httpx.ConnectError("down"))
        with patch("services.currency_service._fetch_live_rate", new=fetch):
            out = asyncio.run(get_usd_krw_rate())
        self.assertEqual(out, {"rate": 1299.5, "source": "fallback"})

    def test_nonsense_live_rate_is_rejected(self):
        with patch("services.currency_service._fetch_live_rate", new=AsyncMock(return_value=-5.0)):
            out = asyncio.run(get_usd_krw_rate())
        self.assertEqual(out["source"], "fallback")


if __name__ == "__main__":
    unittest.main()
