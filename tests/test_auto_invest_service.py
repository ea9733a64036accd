import asyncio
import os
import time
import unittest
from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import models  # noqa: F401  registers tables
from database import Base, SessionLocal, engine
from models.auto_invest import AutoInvestSchedule, AutomationLog
from models.position import Position
from models.transaction import Transaction
from models.user import User
from schemas.auto_invest import ScheduleCreate
from services import currency_service
from services.auto_invest_service import (
    backfill_schedule,
    compute_next_due_date,
    compute_scheduled_trading_dates,
    create_schedule,
    execute_due_schedules,
    reapply_schedule,
)
from utils.trading_calendar import adjust_to_previous_trading_day, get_market_today


class TestScheduleDates(unittest.TestCase):
    def test_monthly_dates_do_not_drift_after_short_months(self):
        dates = compute_scheduled_trading_dates("2024-01-31", "monthly", "US", "2024-05-01")
        # Mar 31 2024 is a Sunday -> Apr 1
        self.assertEqual(dates, [date(2024, 1, 31), date(2024, 2, 29), date(2024, 4, 1), date(2024, 4, 30)])

    def test_weekend_start_rolls_forward(self):
        dates = compute_scheduled_trading_dates("2024-01-06", "weekly", "US", "2024-01-20")
        self.assertEqual(dates, [date(2024, 1, 8), date(2024, 1, 15)])

    def test_next_due_date(self):
        self.assertEqual(compute_next_due_date("2024-01-31", "monthly", "US"), date(2024, 1, 31))
        self.assertEqual(
            compute_next_due_date("2024-01-31", "monthly", "US", after="2024-02-29"),
            date(2024, 4, 1),
        )
        self.assertIsNone(
            compute_next_due_date("2024-01-31", "monthly", "US", after="2024-02-29", end_date="2024-03-15")
        )


class ScheduleFixture(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        currency_service._fx_cache["USD-KRW"] = (1300.0, time.time())
        self.db = SessionLocal()

        user = User(supabase_user_id="sub-1", email="a@example.com")
        self.db.add(user)
        self.db.flush()
        position = Position(
            user_id=user.id,
            symbol="VOO",
            name="Vanguard S&P 500",
            market="US",
            currency="USD",
            asset_type="etf",
            current_price=400.0,
            purchase_method="auto",
        )
        self.db.add(position)
        self.db.flush()
        schedule = AutoInvestSchedule(
            user_id=user.id,
            position_id=position.id,
            frequency="weekly",
            amount=100.0,
            currency="USD",
            effective_from=date(2024, 1, 1),
            is_active=True,
        )
        self.db.add(schedule)
        self.db.commit()
        self.user_id, self.position_id, self.schedule_id = user.id, position.id, schedule.id

        self.patches = [
            patch("services.auto_invest_service.get_price_on_date", new=AsyncMock(return_value=400.0)),
            patch(
                "services.transaction_service.get_historical_usd_krw_rate",
                new=AsyncMock(return_value={"rate": 1300.0, "source": "historical"}),
            ),
        ]
        for p in self.patches:
            p.start()

    def tearDown(self):
        for p in self.patches:
            p.stop()
        self.db.close()
        currency_service.clear_currency_cache()

    def _record_auto_buy(self, on):
        self.db.add(
            Transaction(
                user_id=self.user_id,
                position_id=self.position_id,
                symbol="VOO",
                type="buy",
                date=on,
                shares=0.25,
                price=400.0,
                amount=100.0,
                total_amount=100.0,
                currency="USD",
                purchase_method="auto",
            )
        )
        self.db.commit()


class TestExecuteDueSchedules(ScheduleFixture):
    def test_catches_up_on_every_missed_date(self):
        result = asyncio.run(execute_due_schedules(self.db, run_date=date(2024, 1, 16)))
        self.assertEqual(result["success"], 3)
        self.assertEqual(result["error"], 0)

        txs = self.db.query(Transaction).order_by(Transaction.date).all()
        self.assertEqual([t.date for t in txs], [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)])
        self.assertTrue(all(t.purchase_method == "auto" and t.schedule_id == self.schedule_id for t in txs))
        self.assertAlmostEqual(txs[0].shares, 0.25)

        position = self.db.get(Position, self.position_id)
        self.assertAlmostEqual(position.shares, 0.75)
        self.assertAlmostEqual(position.total_invested, 300.0)

        schedule = self.db.get(AutoInvestSchedule, self.schedule_id)
        self.assertEqual(schedule.last_executed, date(2024, 1, 15))
        self.assertEqual(schedule.next_due_date, date(2024, 1, 22))
        self.assertEqual(self.db.query(AutomationLog).filter(AutomationLog.status == "success").count(), 3)

    def test_second_run_is_idempotent(self):
        asyncio.run(execute_due_schedules(self.db, run_date=date(2024, 1, 16)))
        again = asyncio.run(execute_due_schedules(self.db, run_date=date(2024, 1, 16)))
        self.assertEqual(again["success"], 0)
        self.assertEqual(again["skipped"], 1)
        self.assertEqual(self.db.query(Transaction).count(), 3)

    def test_already_recorded_date_is_skipped(self):
        self._record_auto_buy(date(2024, 1, 8))
        result = asyncio.run(execute_due_schedules(self.db, run_date=date(2024, 1, 16)))
        self.assertEqual(result["success"], 2)
        self.assertEqual(result["skipped"], 1)
        self.assertEqual(self.db.query(Transaction).count(), 3)

    def test_dry_run_previews_without_writing(self):
        result = asyncio.run(execute_due_schedules(self.db, run_date=date(2024, 1, 16), dry_run=True))
        self.assertEqual(result["preview"], 3)
        self.assertEqual(self.db.query(Transaction).count(), 0)
        self.assertIsNone(self.db.get(AutoInvestSchedule, self.schedule_id).next_due_date)
        logs = self.db.query(AutomationLog).all()
        self.assertTrue(all(log.dry_run for log in logs))

    def test_before_effective_date_is_skipped(self):
        result = asyncio.run(execute_due_schedules(self.db, run_date=date(2023, 12, 29)))
        self.assertEqual(result["skipped"], 1)
        self.assertEqual(result["logs"][0]["message"], "Before the schedule's effective date")

    def test_future_run_date_never_buys_past_market_today(self):
        today = get_market_today("US")
        start = adjust_to_previous_trading_day(today, "US")
        schedule = self.db.get(AutoInvestSchedule, self.schedule_id)
        schedule.effective_from = start
        self.db.commit()

        result = asyncio.run(execute_due_schedules(self.db, run_date=today + timedelta(days=14)))
        self.assertEqual(result["success"], 1)

        dates = [t.date for t in self.db.query(Transaction).all()]
        self.assertEqual(dates, [start])


class TestScheduleLifecycle(ScheduleFixture):
    def test_new_schedule_closes_the_previous_one(self):
        payload = ScheduleCreate(frequency="monthly", amount=200.0, effective_from=date(2024, 3, 1))
        new = asyncio.run(create_schedule(self.db, self.user_id, self.position_id, payload))

        previous = self.db.get(AutoInvestSchedule, self.schedule_id)
        self.assertEqual(previous.effective_to, date(2024, 2, 29))
        self.assertIsNone(new.effective_to)
        self.assertEqual(new.currency, "USD")
        self.assertEqual(new.next_due_date, date(2024, 3, 1))

    def test_backfill_skips_dates_already_recorded(self):
        schedule = self.db.get(AutoInvestSchedule, self.schedule_id)
        schedule.effective_to = date(2024, 1, 31)
        self.db.commit()
        self._record_auto_buy(date(2024, 1, 8))

        result = asyncio.run(backfill_schedule(self.db, schedule, fallback_price=400.0))
        # Jan 1, 15, 22, 29 are new; Jan 8 was recorded already
        self.assertEqual(result["count"], 4)
        dates = sorted(t.date for t in self.db.query(Transaction).all())
        self.assertEqual(len(dates), len(set(dates)))
        self.assertEqual(dates[0], date(2024, 1, 1))
        self.assertEqual(dates[-1], date(2024, 1, 29))

        position = self.db.get(Position, self.position_id)
        self.assertAlmostEqual(position.shares, 1.25)
        self.assertEqual(schedule.last_executed, date(2024, 1, 29))

    def test_reapply_rebuilds_purchases_from_the_chosen_date(self):
        for day in (date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22)):
            self._record_auto_buy(day)

        result = asyncio.run(
            reapply_schedule(
                self.db, self.user_id, self.position_id, self.schedule_id,
                effective_from=date(2024, 1, 15), price_per_share=400.0,
            )
        )

        self.assertEqual(result["removed"], 2)
        self.assertNotEqual(result["new_schedule_id"], self.schedule_id)
        self.assertEqual(self.db.get(AutoInvestSchedule, self.schedule_id).effective_to, date(2024, 1, 14))

        rebuilt = (
            self.db.query(Transaction)
            .filter(Transaction.schedule_id == result["new_schedule_id"])
            .order_by(Transaction.date)
            .all()
        )
        self.assertEqual(len(rebuilt), result["created"])
        self.assertEqual(rebuilt[0].date, date(2024, 1, 15))

        dates = [t.date for t in self.db.query(Transaction).all()]
        self.assertEqual(len(dates), len(set(dates)))
        self.assertEqual(sorted(dates)[:2], [date(2024, 1, 1), date(2024, 1, 8)])


if __name__ == "__main__":
    unittest.main()
