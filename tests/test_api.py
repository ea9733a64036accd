import os
import time
import unittest
from unittest.mock import AsyncMock, patch

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from fastapi.testclient import TestClient
from jose import jwt

from database import Base, engine
from main import app
from models.user import User
from services import currency_service
from services.cache.cache_backend import cache_clear
from services.supabase_auth import get_current_supabase_user

CLAIMS = {"sub": "sub-api", "email": "api@example.com"}


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        cache_clear()
        currency_service._fx_cache["USD-KRW"] = (1300.0, time.time())
        app.dependency_overrides[get_current_supabase_user] = lambda: CLAIMS
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        currency_service.clear_currency_cache()


class TestEnvelope(ApiTestCase):
    def test_health(self):
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.json()["success"])

    def test_request_id_is_echoed(self):
        res = self.client.get("/health", headers={"X-Request-ID": "abc-123"})
        self.assertEqual(res.headers.get("X-Request-ID"), "abc-123")

    def test_missing_historical_price_params(self):
        res = self.client.get("/api/market/historical-price", params={"symbol": "AAPL"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json(), {"success": False, "error": "symbol and date are required"})

    def test_unknown_position_is_404(self):
        res = self.client.get("/api/positions/999")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["error"], "Position not found")

    def test_validation_error_is_400(self):
        res = self.client.post("/api/watchlists", json={})
        self.assertEqual(res.status_code, 400)
        body = res.json()
        self.assertFalse(body["success"])
        self.assertIn("name", body["error"])

    def test_exchange_rate_from_cache(self):
        res = self.client.get("/api/exchange-rate")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["data"]["rate"], 1300.0)


class TestPositionsApi(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.fx_patch = patch(
            "services.transaction_service.get_historical_usd_krw_rate",
            new=AsyncMock(return_value={"rate": 1300.0, "source": "historical"}),
        )
        self.fx_patch.start()

    def tearDown(self):
        self.fx_patch.stop()
        super().tearDown()

    def _create(self, shares=2, price=100.0):
        return self.client.post(
            "/api/positions",
            json={
                "stock": {"symbol": "aapl", "name": "Apple", "sector": "tech"},
                "purchase_method": "manual",
                "initial_purchase": {"date": "2024-01-10", "shares": shares, "price": price},
            },
        )

    def test_create_then_list(self):
        res = self._create()
        self.assertEqual(res.status_code, 201)
        body = res.json()
        self.assertFalse(body["merged"])
        self.assertEqual(body["data"]["symbol"], "AAPL")
        self.assertAlmostEqual(body["data"]["shares"], 2.0)

        listed = self.client.get("/api/positions").json()["data"]
        self.assertEqual(len(listed["positions"]), 1)
        self.assertAlmostEqual(listed["totals"]["combined"]["total_invested"], 200.0)

    def test_same_symbol_merges(self):
        self._create()
        res = self._create(shares=2, price=200.0)
        body = res.json()
        self.assertTrue(body["merged"])
        self.assertAlmostEqual(body["data"]["shares"], 4.0)
        self.assertAlmostEqual(body["data"]["average_price"], 150.0)

    def test_transaction_requires_position_or_symbol(self):
        res = self.client.post(
            "/api/transactions",
            json={"type": "buy", "date": "2024-01-10", "shares": 1, "price": 10},
        )
        self.assertEqual(res.status_code, 400)
        self.assertFalse(res.json()["success"])

    def test_sell_via_position_transactions(self):
        position_id = self._create().json()["data"]["id"]
        res = self.client.post(
            f"/api/positions/{position_id}/transactions",
            json={"type": "sell", "date": "2024-01-11", "shares": 1, "price": 120},
        )
        self.assertEqual(res.status_code, 201)
        data = res.json()["data"]
        self.assertAlmostEqual(data["position"]["shares"], 1.0)
        self.assertAlmostEqual(data["position"]["realized_gain"], 20.0)

    def test_sell_alert_needs_target_to_enable(self):
        position_id = self._create().json()["data"]["id"]
        res = self.client.put(f"/api/positions/{position_id}/sell-alert", json={"enabled": True})
        self.assertEqual(res.status_code, 400)

        res = self.client.put(
            f"/api/positions/{position_id}/sell-alert",
            json={"enabled": True, "target_return_rate": 15, "sell_ratio": 50},
        )
        self.assertEqual(res.status_code, 200)
        settings = self.client.get(f"/api/positions/{position_id}/sell-alert").json()["data"]
        self.assertTrue(settings["enabled"])
        self.assertEqual(settings["target_return_rate"], 15.0)

        pending = self.client.get("/api/alerts/sell").json()
        self.assertEqual(pending["data"], [])
        self.assertEqual(pending["count"], 0)

    def test_monthly_timeline(self):
        self._create()
        res = self.client.get(
            "/api/transactions/timeline", params={"granularity": "month", "start_date": "2024-01-01"}
        )
        self.assertEqual(res.status_code, 200)
        entries = res.json()["data"]["entries"]
        self.assertEqual([e["label"] for e in entries], ["2024-01"])
        self.assertEqual(entries[0]["buy_count"], 1)


class TestWatchlistAndSettingsApi(ApiTestCase):
    def test_duplicate_watchlist_is_409(self):
        first = self.client.post("/api/watchlists", json={"name": "Tech", "symbols": ["aapl"]})
        self.assertEqual(first.status_code, 201)
        self.assertTrue(first.json()["data"]["is_default"])
        res = self.client.post("/api/watchlists", json={"name": "Tech"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["error"], "Watchlist with this name already exists")

    def test_item_patch_and_delete(self):
        wl_id = self.client.post("/api/watchlists", json={"name": "Tech"}).json()["data"]["id"]
        self.client.post(f"/api/watchlists/{wl_id}/items", json={"symbol": "nvda", "target_price": 90})
        res = self.client.patch(f"/api/watchlists/{wl_id}/items/NVDA", json={"note": "watch"})
        item = res.json()["data"]["items"][0]
        self.assertEqual((item["note"], item["target_price"]), ("watch", 90.0))

        res = self.client.delete(f"/api/watchlists/{wl_id}/items/MSFT")
        self.assertEqual(res.status_code, 404)

    def test_personalization_roundtrip(self):
        self.assertEqual(self.client.get("/api/settings/personalization").json()["data"]["risk_profile"], "balanced")
        res = self.client.put("/api/settings/personalization", json={"risk_profile": "aggressive"})
        self.assertEqual(res.json()["data"]["focus_areas"], ["growth", "momentum", "allocation"])
        res = self.client.patch("/api/settings/personalization", json={})
        self.assertEqual(res.status_code, 400)


class TestAuth(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        app.dependency_overrides.clear()
        self.client = TestClient(app)

    def test_missing_token(self):
        res = self.client.get("/api/watchlists")
        self.assertEqual(res.status_code, 401)
        self.assertFalse(res.json()["success"])

    def test_valid_token_creates_user(self):
        secret = "test-secret"
        token = jwt.encode({**CLAIMS, "aud": "authenticated"}, secret, algorithm="HS256")
        with patch.dict(os.environ, {"SUPABASE_JWT_SECRET": secret}):
            res = self.client.get("/api/watchlists", headers={"Authorization": f"Bearer {token}"})
            bad = self.client.get("/api/watchlists", headers={"Authorization": "Bearer nope"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["data"], [])
        self.assertEqual(bad.status_code, 401)

        from database import SessionLocal

        db = SessionLocal()
        try:
            self.assertEqual(db.query(User).filter(User.supabase_user_id == "sub-api").count(), 1)
        finally:
            db.close()


class TestInternalApi(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        self.client = TestClient(app)

    def test_unconfigured_secret_is_503(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("CRON_SECRET", None)
            res = self.client.post("/api/internal/auto-invest/execute")
        self.assertEqual(res.status_code, 503)

    def test_secret_checked(self):
        with patch.dict(os.environ, {"CRON_SECRET": "s3cret"}):
            wrong = self.client.post("/api/internal/auto-invest/execute", headers={"X-Cron-Secret": "nope"})
            right = self.client.post(
                "/api/internal/auto-invest/execute",
                headers={"X-Cron-Secret": "s3cret"},
                json={"dry_run": True, "run_date": "2024-01-16"},
            )
            logs = self.client.get("/api/internal/auto-invest/logs", headers={"X-Cron-Secret": "s3cret"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(right.status_code, 200)
        self.assertEqual(right.json()["data"]["processed"], 0)
        self.assertTrue(right.json()["data"]["dry_run"])
        self.assertEqual(logs.json()["data"], [])


if __name__ == "__main__":
    unittest.main()
