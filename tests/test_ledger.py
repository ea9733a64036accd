import itertools
import os
import unittest
from datetime import date
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from services.ledger import (
    aggregate_position_metrics,
    calculate_average_price,
    calculate_return_rate,
    compute_total_amount,
    sort_transactions,
)


def _tx(type_, d, shares=0.0, price=0.0, amount=None, fee=0.0, tax=0.0):
    return {
        "type": type_,
        "date": d,
        "shares": shares,
        "price": price,
        "amount": amount if amount is not None else shares * price,
        "fee": fee,
        "tax": tax,
    }


class TestLedger(unittest.TestCase):
    def test_weighted_average_cost_of_buys(self):
        m = aggregate_position_metrics(
            [_tx("buy", "2024-01-02", 10, 100), _tx("buy", "2024-01-03", 10, 200)]
        )
        self.assertAlmostEqual(m.shares, 20)
        self.assertAlmostEqual(m.average_price, 150)
        self.assertAlmostEqual(m.total_invested, 3000)
        self.assertAlmostEqual(m.total_invested, m.average_price * m.shares)
        self.assertEqual(m.first_purchase_date, date(2024, 1, 2))
        self.assertEqual(m.last_transaction_date, date(2024, 1, 3))
        self.assertEqual(m.transaction_count, 2)

    def test_sell_books_realized_gain_and_keeps_average(self):
        m = aggregate_position_metrics(
            [
                _tx("buy", "2024-01-02", 10, 100),
                _tx("buy", "2024-01-03", 10, 200),
                _tx("sell", "2024-01-04", 5, 180, fee=1.0),
            ]
        )
        self.assertAlmostEqual(m.shares, 15)
        self.assertAlmostEqual(m.average_price, 150)
        self.assertAlmostEqual(m.total_invested, 2250)
        self.assertAlmostEqual(m.realized_gain, 5 * 180 - 1.0 - 5 * 150)

    def test_oversell_is_clamped_and_resets_position(self):
        m = aggregate_position_metrics(
            [_tx("buy", "2024-01-02", 3, 50), _tx("sell", "2024-01-05", 10, 60)]
        )
        self.assertEqual(m.shares, 0.0)
        self.assertEqual(m.total_invested, 0.0)
        self.assertEqual(m.average_price, 0.0)
        self.assertAlmostEqual(m.realized_gain, 3 * 60 - 3 * 50)

    def test_dividend_adds_income_without_touching_cost(self):
        m = aggregate_position_metrics(
            [_tx("buy", "2024-01-02", 4, 25), _tx("dividend", "2024-02-01", amount=3.5)]
        )
        self.assertAlmostEqual(m.dividend_income, 3.5)
        self.assertAlmostEqual(m.total_invested, 100)
        self.assertAlmostEqual(m.shares, 4)

    def test_average_cost_is_order_independent_for_same_day_buys(self):
        buys = [
            _tx("buy", "2024-03-01", 1.5, 101.25),
            _tx("buy", "2024-03-01", 7, 98.0),
            _tx("buy", "2024-03-01", 0.333333, 105.5),
            _tx("buy", "2024-03-01", 12, 99.75),
        ]
        results = [aggregate_position_metrics(list(p)) for p in itertools.permutations(buys)]
        first = results[0]
        for m in results[1:]:
            self.assertAlmostEqual(m.average_price, first.average_price, places=9)
            self.assertAlmostEqual(m.total_invested, first.total_invested, places=9)
            self.assertAlmostEqual(m.shares, first.shares, places=9)

    def test_same_day_buy_is_applied_before_sell(self):
        ordered = sort_transactions(
            [_tx("sell", "2024-01-02", 1, 10), _tx("dividend", "2024-01-02", amount=1), _tx("buy", "2024-01-02", 1, 10)]
        )
        self.assertEqual([t["type"] for t in ordered], ["buy", "dividend", "sell"])

    def test_price_priority_live_then_stored_then_last_trade(self):
        txs = [_tx("buy", "2024-01-02", 2, 10), _tx("buy", "2024-01-03", 2, 12)]
        previous = SimpleNamespace(current_price=15.0, first_purchase_date=None, last_transaction_date=None)

        self.assertEqual(aggregate_position_metrics(txs, current_price=20.0, previous=previous).current_price, 20.0)
        self.assertEqual(aggregate_position_metrics(txs, previous=previous).current_price, 15.0)
        m = aggregate_position_metrics(txs)
        self.assertEqual(m.current_price, 12.0)
        self.assertAlmostEqual(m.total_value, 48.0)
        self.assertAlmostEqual(m.profit_loss, 4.0)
        self.assertAlmostEqual(m.return_rate, 4.0 / 44.0 * 100)

    def test_empty_history_keeps_previous_price_and_dates(self):
        previous = SimpleNamespace(
            current_price=33.0,
            first_purchase_date=date(2023, 5, 1),
            last_transaction_date=date(2023, 6, 1),
        )
        m = aggregate_position_metrics([], previous=previous)
        self.assertEqual(m.shares, 0.0)
        self.assertEqual(m.current_price, 33.0)
        self.assertEqual(m.first_purchase_date, date(2023, 5, 1))
        self.assertEqual(m.last_transaction_date, date(2023, 6, 1))

    def test_helpers(self):
        self.assertEqual(calculate_return_rate(110, 100), 10.0)
        self.assertEqual(calculate_return_rate(50, 0), 0.0)
        self.assertEqual(calculate_average_price(0, 0, 0, 10), 0.0)
        self.assertAlmostEqual(calculate_average_price(10, 100, 10, 200), 150)
        self.assertEqual(compute_total_amount("buy", 100, 1, 2), 103)
        self.assertEqual(compute_total_amount("sell", 100, 1, 2), 97)
        self.assertEqual(compute_total_amount("dividend", 1, 2, 0), 0.0)


if __name__ == "__main__":
    unittest.main()
