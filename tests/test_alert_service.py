import asyncio
import os
import time
import unittest
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import models  # noqa: F401  registers tables
from database import Base, SessionLocal, engine
from models.position import Position
from models.sell_alert import SellAlert
from models.user import User
from schemas.alert import SellAlertSettings
from services import currency_service
from services.alert_service import (
    emergency_alerts,
    evaluate_sell_alerts,
    get_smart_alerts,
    important_alerts,
    info_alerts,
    list_pending_sell_alerts,
    merge_sell_alert_settings,
    resolve_sell_alert,
    should_trigger,
    sort_alerts,
    update_sell_alert_settings,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _settings(**overrides):
    base = {
        "enabled": True,
        "target_return_rate": 20.0,
        "sell_ratio": 50.0,
        "notify_email": None,
        "trigger_once": True,
        "last_triggered_at": None,
    }
    base.update(overrides)
    return base


class TestSellAlertSettings(unittest.TestCase):
    def test_enabling_requires_positive_target(self):
        with self.assertRaises(ValueError):
            merge_sell_alert_settings(None, SellAlertSettings(enabled=True))
        with self.assertRaises(ValueError):
            merge_sell_alert_settings(None, SellAlertSettings(enabled=True, target_return_rate=0))

    def test_sell_ratio_range(self):
        with self.assertRaises(ValueError):
            merge_sell_alert_settings(None, SellAlertSettings(enabled=True, target_return_rate=10, sell_ratio=120))

    def test_defaults_and_merge(self):
        merged = merge_sell_alert_settings(
            None, SellAlertSettings(enabled=True, target_return_rate=15, notify_email=" me@example.com ")
        )
        self.assertEqual(merged["sell_ratio"], 100.0)
        self.assertTrue(merged["trigger_once"])
        self.assertEqual(merged["notify_email"], "me@example.com")

        again = merge_sell_alert_settings(merged, SellAlertSettings(enabled=True, target_return_rate=25))
        self.assertEqual(again["target_return_rate"], 25.0)
        self.assertEqual(again["notify_email"], "me@example.com")

    def test_disabling_clears_trigger_history(self):
        existing = _settings(last_triggered_at=NOW.isoformat())
        kept = merge_sell_alert_settings(existing, SellAlertSettings(enabled=True, target_return_rate=20))
        self.assertEqual(kept["last_triggered_at"], NOW.isoformat())
        cleared = merge_sell_alert_settings(existing, SellAlertSettings(enabled=False))
        self.assertIsNone(cleared["last_triggered_at"])
        self.assertEqual(cleared["target_return_rate"], 20.0)


class TestShouldTrigger(unittest.TestCase):
    def test_below_target_or_disabled(self):
        self.assertFalse(should_trigger(_settings(), 19.9, NOW))
        self.assertFalse(should_trigger(_settings(enabled=False), 50.0, NOW))
        self.assertFalse(should_trigger(_settings(), float("nan"), NOW))
        self.assertTrue(should_trigger(_settings(), 20.0, NOW))

    def test_trigger_once_fires_a_single_time(self):
        fired = _settings(last_triggered_at=(NOW - timedelta(days=30)).isoformat())
        self.assertFalse(should_trigger(fired, 30.0, NOW))

    def test_repeating_alert_waits_out_cooldown(self):
        recent = _settings(trigger_once=False, last_triggered_at=(NOW - timedelta(hours=5)).isoformat())
        self.assertFalse(should_trigger(recent, 30.0, NOW))
        old = _settings(trigger_once=False, last_triggered_at=(NOW - timedelta(hours=6)).isoformat())
        self.assertTrue(should_trigger(old, 30.0, NOW))


class TestSellAlertLifecycle(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        self.db = SessionLocal()
        user = User(supabase_user_id="sub-1", email="a@example.com")
        self.db.add(user)
        self.db.flush()
        position = Position(
            user_id=user.id, symbol="AAPL", market="US", currency="USD",
            shares=10.0, current_price=130.0, total_value=1300.0, total_invested=1000.0, return_rate=30.0,
        )
        self.db.add(position)
        self.db.commit()
        self.user_id, self.position_id = user.id, position.id

    def tearDown(self):
        self.db.close()

    def test_fires_once_and_records_pending_alert(self):
        update_sell_alert_settings(
            self.db, self.user_id, self.position_id,
            SellAlertSettings(enabled=True, target_return_rate=25, sell_ratio=40),
        )
        position = self.db.get(Position, self.position_id)

        fired = evaluate_sell_alerts(self.db, self.user_id, [position], now=NOW)
        self.assertEqual(len(fired), 1)
        self.assertAlmostEqual(fired[0].shares_to_sell, 4.0)
        self.assertEqual(fired[0].status, "pending")
        self.assertEqual(position.sell_alert["last_triggered_at"], NOW.isoformat())

        again = evaluate_sell_alerts(self.db, self.user_id, [position], now=NOW + timedelta(days=1))
        self.assertEqual(again, [])
        self.assertEqual(self.db.query(SellAlert).count(), 1)

    def test_list_and_resolve(self):
        update_sell_alert_settings(
            self.db, self.user_id, self.position_id,
            SellAlertSettings(enabled=True, target_return_rate=25),
        )
        alert = evaluate_sell_alerts(self.db, self.user_id, [self.db.get(Position, self.position_id)], now=NOW)[0]
        self.assertEqual([a.id for a in list_pending_sell_alerts(self.db, self.user_id)], [alert.id])

        resolved = resolve_sell_alert(self.db, self.user_id, alert.id, "complete")
        self.assertEqual(resolved.status, "completed")
        self.assertIsNotNone(resolved.resolved_at)
        self.assertEqual(list_pending_sell_alerts(self.db, self.user_id), [])

    def test_resolve_unknown_alert(self):
        with self.assertRaises(ValueError):
            resolve_sell_alert(self.db, self.user_id, 999, "dismiss")


def _position(symbol, return_rate, sell_alert=None, value=100.0):
    return Position(symbol=symbol, return_rate=return_rate, total_value=value, sell_alert=sell_alert)


def _holding(symbol, value, return_rate=0.0):
    return {"symbol": symbol, "total_value": value, "return_rate": return_rate}


class TestSmartAlerts(unittest.TestCase):
    def test_price_moves_and_targets(self):
        alerts = emergency_alerts(
            [
                _position("DROP", -6.0),
                _position("FLAT", 1.0),
                _position("HIT", 12.0, sell_alert=_settings(target_return_rate=10.0)),
                _position("STOP", -12.0, sell_alert=_settings(target_return_rate=10.0)),
            ]
        )
        tags = [(a["symbol"], a["tags"][0]) for a in alerts]
        self.assertIn(("DROP", "price-drop"), tags)
        self.assertIn(("HIT", "price-surge"), tags)
        self.assertIn(("HIT", "target-hit"), tags)
        self.assertIn(("STOP", "stop-loss"), tags)
        self.assertNotIn("FLAT", [s for s, _ in tags])

    def test_concentration_volatility_and_rebalancing(self):
        holdings = [_holding("BIG", 800.0), _holding("A", 100.0), _holding("B", 100.0)]
        suggestions = [{"symbol": s} for s in ("BIG", "A", "B", "C")]
        alerts = important_alerts(holdings, suggestions, {"volatility": 30.0, "sharpe_ratio": 0.5})

        by_tag = {a["tags"][0]: a for a in alerts}
        self.assertEqual(len(by_tag["rebalancing"]["data"]["suggestions"]), 3)
        self.assertIn("risk", by_tag)
        self.assertEqual([c["symbol"] for c in by_tag["concentration"]["data"]["concentrated"]], ["BIG"])

    def test_ordering_puts_emergencies_first(self):
        alerts = sort_alerts(
            info_alerts(4.2, ["Trim tech", "Add bonds"], 7)
            + emergency_alerts([_position("DROP", -9.0)])
        )
        self.assertEqual([a["severity"] for a in alerts], ["emergency", "important", "info"])
        self.assertIn("+1 more", alerts[1]["description"])
        self.assertEqual(alerts[1]["data"]["insight_id"], 7)


class TestSmartAlertFeed(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        currency_service._fx_cache["USD-KRW"] = (1300.0, time.time())
        self.db = SessionLocal()
        user = User(supabase_user_id="sub-1", email="a@example.com")
        self.db.add(user)
        self.db.flush()
        self.db.add(
            Position(user_id=user.id, symbol="AAPL", market="US", currency="USD", sector="tech",
                     shares=1.0, total_value=120.0, total_invested=100.0, return_rate=20.0)
        )
        self.db.commit()
        self.user_id = user.id

    def tearDown(self):
        self.db.close()
        currency_service.clear_currency_cache()

    def test_counts_by_severity(self):
        feed = asyncio.run(get_smart_alerts(self.db, self.user_id))
        # surge + concentration + performance summary
        self.assertEqual(feed["counts"], {"emergency": 1, "important": 1, "info": 1})
        self.assertEqual(feed["alerts"][0]["tags"], ["price-surge"])


if __name__ == "__main__":
    unittest.main()
