import asyncio
import os
import time
import unittest
from datetime import date
from unittest.mock import AsyncMock, patch

import pandas as pd

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from models.position import Position
from services.portfolio.analysis_service import (
    build_analysis,
    calculate_diversification_score,
    calculate_risk_metrics,
    calculate_sector_allocation,
    generate_rebalancing_suggestions,
    to_holdings,
)
from services.portfolio.backtest_service import (
    apply_strategy,
    build_value_series,
    calculate_annualized_return,
    calculate_daily_returns,
    calculate_volatility,
    run_backtest_on_series,
)
from services.portfolio.benchmark_service import get_benchmark_comparisons, resolve_window, series_return
from services.portfolio.contribution_service import calculate_contribution_entries, rank_contribution
from services.portfolio.correlation_service import correlation_matrix, pearson
from services.portfolio.scenario_service import apply_preset, project_position, run_scenario
from services.portfolio.tax_service import build_tax_plan, normalize_tax_config


def _holding(symbol, value, invested, sector="tech", market="US", asset_type="stock", return_rate=None):
    if return_rate is None:
        return_rate = (value - invested) / invested * 100 if invested else 0.0
    return {
        "id": 1,
        "symbol": symbol,
        "name": symbol,
        "sector": sector,
        "market": market,
        "asset_type": asset_type,
        "currency": "USD",
        "shares": 1.0,
        "total_value": value,
        "total_invested": invested,
        "profit_loss": value - invested,
        "return_rate": return_rate,
    }


class TestAnalysis(unittest.TestCase):
    def test_to_holdings_converts_krw_positions(self):
        krw = Position(
            id=1, symbol="005930", name="Samsung", market="KR", currency="KRW",
            shares=10.0, total_value=1_300_000.0, total_invested=1_040_000.0, return_rate=25.0,
        )
        usd = Position(
            id=2, symbol="AAPL", name="Apple", market="US", currency="USD",
            shares=5.0, total_value=1000.0, total_invested=800.0, return_rate=25.0,
        )
        holdings = to_holdings([krw, usd], "USD", 1300.0)
        self.assertAlmostEqual(holdings[0]["total_value"], 1000.0)
        self.assertAlmostEqual(holdings[0]["total_invested"], 800.0)
        self.assertEqual(holdings[0]["sector"], "unknown")
        self.assertAlmostEqual(holdings[1]["profit_loss"], 200.0)

    def test_sector_allocation_sorted_by_value(self):
        rows = calculate_sector_allocation(
            [_holding("A", 300, 200, "tech"), _holding("B", 100, 100, "energy"), _holding("C", 600, 500, "tech")]
        )
        self.assertEqual([r["sector"] for r in rows], ["tech", "energy"])
        self.assertAlmostEqual(rows[0]["percentage"], 90.0)
        self.assertAlmostEqual(rows[0]["return_rate"], 100 * (900 - 700) / 700)
        self.assertEqual(rows[0]["count"], 2)

    def test_risk_metrics(self):
        metrics = calculate_risk_metrics(
            [_holding("A", 500, 500, return_rate=10.0), _holding("B", 500, 500, return_rate=-20.0)]
        )
        self.assertAlmostEqual(metrics["volatility"], 15.0)
        self.assertAlmostEqual(metrics["sharpe_ratio"], -5.0 / 15.0)
        self.assertAlmostEqual(metrics["max_drawdown"], 20.0)
        self.assertAlmostEqual(metrics["concentration"], 5000.0)

    def test_risk_metrics_empty(self):
        self.assertEqual(calculate_risk_metrics([])["concentration"], 0.0)

    def test_rebalancing_equal_weight_default(self):
        suggestions = generate_rebalancing_suggestions([_holding("A", 700, 700), _holding("B", 300, 300)])
        self.assertEqual([(s["symbol"], s["action"]) for s in suggestions], [("A", "sell"), ("B", "buy")])
        self.assertAlmostEqual(suggestions[0]["amount"], 200.0)

    def test_rebalancing_hold_band_and_explicit_zero(self):
        holdings = [_holding("A", 510, 500), _holding("B", 490, 500)]
        self.assertEqual(generate_rebalancing_suggestions(holdings), [])

        suggestions = {s["symbol"]: s for s in generate_rebalancing_suggestions(holdings, {"a": 100, "b": 0})}
        self.assertEqual(suggestions["B"]["action"], "sell")
        self.assertAlmostEqual(suggestions["B"]["target_weight"], 0.0)
        self.assertEqual(suggestions["A"]["action"], "buy")

    def test_diversification_score_bounds(self):
        self.assertEqual(calculate_diversification_score([], [], [], 0), 0)
        sectors = [{"percentage": 10.0}] * 10
        regions = [{"percentage": 40.0}, {"percentage": 30.0}, {"percentage": 30.0}]
        assets = [{"percentage": 50.0}, {"percentage": 30.0}, {"percentage": 20.0}]
        self.assertEqual(calculate_diversification_score(sectors, regions, assets, 25), 100)

    def test_build_analysis_shape(self):
        result = build_analysis([_holding("A", 1200, 1000)], "USD")
        self.assertAlmostEqual(result["overall_return_rate"], 20.0)
        self.assertEqual(result["rebalancing_suggestions"], [])
        self.assertEqual(result["top_contributors"][0]["symbol"], "A")


class TestCorrelation(unittest.TestCase):
    def test_pearson(self):
        self.assertAlmostEqual(pearson([1, 2, 3, 4], [2, 4, 6, 8]), 1.0)
        self.assertAlmostEqual(pearson([1, 2, 3], [3, 2, 1]), -1.0)
        self.assertIsNone(pearson([1, 1, 1], [1, 2, 3]))
        self.assertIsNone(pearson([1, None], [2, 3]))

    def test_pearson_skips_missing_pairs(self):
        self.assertAlmostEqual(pearson([1, None, 2, 3], [1, 5, 2, 3]), 1.0)

    def test_matrix_is_symmetric_with_unit_diagonal(self):
        idx = pd.to_datetime(["2024-01-01", "2024-01-02", "2024-01-03", "2024-01-04", "2024-01-05"])
        closes = pd.DataFrame(
            {"A": [10, 11, 12, 11, 13], "B": [20, 22, 24, 22, 26], "C": [5, 4.5, 4, 4.5, 3.5]},
            index=idx,
        )
        m = correlation_matrix(closes)
        self.assertEqual(len(m), 3)
        for i in range(3):
            self.assertEqual(m[i][i], 1.0)
            for j in range(3):
                self.assertEqual(m[i][j], m[j][i])
        self.assertGreater(m[0][1], 0.9)
        self.assertLess(m[0][2], 0)

    def test_empty_frame(self):
        self.assertEqual(correlation_matrix(pd.DataFrame()), [])


class TestScenario(unittest.TestCase):
    def test_preset_defaults_and_overrides(self):
        config = apply_preset("bullish")
        self.assertEqual(config["market_shift_pct"], 5.0)
        self.assertEqual(config["usd_shift_pct"], 1.5)
        config = apply_preset("bullish", market_shift_pct=-10)
        self.assertEqual(config["market_shift_pct"], -10.0)
        with self.assertRaises(ValueError):
            apply_preset("moon")

    def test_usd_shift_only_applies_to_usd_positions(self):
        usd = project_position("AAPL", "USD", 2, 100.0, 10.0, 5.0)
        krw = project_position("005930", "KRW", 2, 70000.0, 10.0, 5.0)
        self.assertAlmostEqual(usd["projected_price"], 115.5)
        self.assertAlmostEqual(krw["projected_price"], 77000.0)
        self.assertAlmostEqual(krw["projected_return_rate"], 10.0)

    def test_totals_in_base_currency_with_contribution(self):
        positions = [
            Position(symbol="AAPL", currency="USD", market="US", shares=1.0, current_price=100.0),
            Position(symbol="005930", currency="KRW", market="KR", shares=1.0, current_price=130000.0),
        ]
        config = apply_preset("custom", market_shift_pct=10.0, usd_shift_pct=0.0, additional_contribution=50.0)
        result = run_scenario(positions, config, base_currency="USD", rate=1300.0)["result"]
        self.assertAlmostEqual(result["current_total_value"], 200.0)
        self.assertAlmostEqual(result["projected_total_value"], 270.0)
        self.assertAlmostEqual(result["projected_return_rate"], 35.0)


class TestBacktest(unittest.TestCase):
    def _entries(self, values):
        return [(f"2024-01-{i + 1:02d}", v) for i, v in enumerate(values)]

    def test_daily_returns(self):
        returns = calculate_daily_returns(self._entries([100, 110, 0, 50]))
        self.assertAlmostEqual(returns[0][1], 0.1)
        self.assertAlmostEqual(returns[1][1], -1.0)
        self.assertEqual(returns[2][1], 0.0)

    def test_strategies(self):
        self.assertAlmostEqual(apply_strategy("growth", 0.01), 0.0112)
        self.assertAlmostEqual(apply_strategy("defensive", 0.01), 0.0075)
        self.assertAlmostEqual(apply_strategy("baseline", 0.01), 0.01)

    def test_short_series_is_zeroed(self):
        result = run_backtest_on_series(self._entries([100] * 9), "growth", "2024-01-01", "2024-01-09", 9)
        self.assertEqual(result["series"], [])
        self.assertEqual(result["baseline"]["total_return"], 0.0)

    def test_unknown_strategy(self):
        with self.assertRaises(ValueError):
            run_backtest_on_series(self._entries([100] * 12), "yolo")

    def test_baseline_matches_series(self):
        values = [100, 102, 101, 105, 103, 108, 110, 107, 111, 115]
        result = run_backtest_on_series(self._entries(values), "defensive")
        self.assertEqual(result["period"]["start_date"], "2024-01-01")
        self.assertEqual(result["period"]["days"], 9)
        self.assertAlmostEqual(result["baseline"]["total_return"], 15.0)
        self.assertLess(result["scenario"]["total_return"], result["baseline"]["total_return"])
        self.assertLess(result["baseline"]["max_drawdown"], 0)
        self.assertEqual(len(result["series"]), 9)

    def test_annualized_return_guards(self):
        self.assertEqual(calculate_annualized_return(0.1, 0), 0.0)
        self.assertEqual(calculate_annualized_return(-2.0, 10), 0.0)

    def test_value_series_forward_fills_and_converts(self):
        idx = pd.to_datetime(["2024-01-02", "2024-01-03", "2024-01-04"])
        closes = pd.DataFrame({"AAPL": [100.0, None, 110.0], "005930": [65000.0, 66300.0, None]}, index=idx)
        series = build_value_series(closes, {"AAPL": 2, "005930": 10}, {"AAPL": "USD", "005930": "KRW"}, "USD", 1300.0)
        self.assertEqual([d for d, _ in series], ["2024-01-02", "2024-01-03", "2024-01-04"])
        self.assertAlmostEqual(series[0][1], 200.0 + 500.0)
        self.assertAlmostEqual(series[1][1], 200.0 + 510.0)
        self.assertAlmostEqual(series[2][1], 220.0 + 510.0)

    def test_value_series_starts_when_every_holding_is_quoted(self):
        days = pd.date_range("2024-01-01", periods=15, freq="D")
        kr = [None] + [130000.0] * 14
        closes = pd.DataFrame({"AAPL": [100.0] * 15, "005930": kr}, index=days)
        series = build_value_series(closes, {"AAPL": 1, "005930": 1}, {"AAPL": "USD", "005930": "KRW"}, "USD", 1300.0)
        self.assertEqual(series[0][0], "2024-01-02")
        self.assertEqual(len(series), 14)

        result = run_backtest_on_series(series)
        self.assertAlmostEqual(result["baseline"]["total_return"], 0.0)
        self.assertAlmostEqual(result["baseline"]["volatility"], 0.0)
        self.assertAlmostEqual(result["baseline"]["max_drawdown"], 0.0)

    def test_symbol_without_any_history_is_ignored(self):
        idx = pd.to_datetime(["2024-01-02", "2024-01-03"])
        closes = pd.DataFrame({"AAPL": [100.0, 110.0], "DEAD": [None, None]}, index=idx)
        series = build_value_series(closes, {"AAPL": 1, "DEAD": 5}, {"AAPL": "USD", "DEAD": "USD"}, "USD", 1300.0)
        self.assertEqual(series, [("2024-01-02", 100.0), ("2024-01-03", 110.0)])

    def test_volatility_is_annualized_population_std(self):
        self.assertEqual(calculate_volatility([]), 0.0)
        # population std of [0.01, -0.01] is 0.01
        self.assertAlmostEqual(calculate_volatility([0.01, -0.01]), 0.01 * 252 ** 0.5)


class TestContribution(unittest.TestCase):
    def test_tags_follow_impact_and_weight(self):
        holdings = [
            _holding("P1", 200, 100),
            _holding("P2", 180, 100),
            _holding("P3", 160, 100),
            _holding("LOSS", 50, 100),
            _holding("P4", 140, 100),
            _holding("P5", 120, 100),
            _holding("P6", 110, 100),
            _holding("TINY", 10, 9.5),
        ]
        entries = rank_contribution(calculate_contribution_entries(holdings))
        tags = {e["symbol"]: e["tag"] for e in entries}

        self.assertEqual({s for s, t in tags.items() if t == "core"}, {"P1", "P2", "P3", "P4"})
        self.assertEqual(tags["LOSS"], "reducing")
        self.assertEqual(tags["P5"], "supporting")
        self.assertEqual(tags["P6"], "supporting")
        self.assertEqual(tags["TINY"], "watch")

        p1 = entries[0]
        self.assertAlmostEqual(p1["contribution_value"], 100.0)
        self.assertAlmostEqual(p1["contribution_pct"], 100.0 / 970.0 * 100.0)
        self.assertTrue(p1["is_top_contributor"])

    def test_empty_portfolio(self):
        self.assertEqual(calculate_contribution_entries([]), [])
        self.assertEqual(rank_contribution([]), [])


class TestTaxPlan(unittest.TestCase):
    def test_harvests_largest_losses_up_to_target(self):
        holdings = [
            _holding("L1", 700, 1000),
            _holding("L2", 600, 1000),
            _holding("L3", 950, 1000),
            _holding("G", 1500, 1000),
        ]
        plan = build_tax_plan(holdings, target=600.0, tax_rate=22.0)

        actions = [(c["symbol"], c["action"], c["harvest_amount"]) for c in plan["candidates"]]
        self.assertEqual(
            actions,
            [("L2", "harvest-loss", 400.0), ("L1", "harvest-loss", 200.0), ("G", "offset-gain", 0.0), ("L3", "monitor", 0.0)],
        )
        summary = plan["summary"]
        self.assertAlmostEqual(summary["harvest_achieved"], 600.0)
        self.assertAlmostEqual(summary["estimated_tax_savings"], 132.0)
        self.assertAlmostEqual(summary["total_unrealized_loss"], -750.0)
        self.assertAlmostEqual(summary["net_unrealized"], -250.0)

    def test_config_is_clamped(self):
        self.assertEqual(normalize_tax_config(None, 80.0), {"target_harvest_amount": 500_000.0, "estimated_tax_rate": 60.0})
        self.assertEqual(normalize_tax_config(-5.0, None)["target_harvest_amount"], 0.0)
        self.assertEqual(normalize_tax_config(100.0, -1.0)["estimated_tax_rate"], 0.0)


class TestBenchmarks(unittest.TestCase):
    def test_window_defaults_to_trailing_year(self):
        self.assertEqual(resolve_window(today=date(2024, 6, 30)), (date(2023, 6, 30), date(2024, 6, 30)))
        self.assertEqual(resolve_window("2024-06-15", "2024-06-30"), (date(2023, 6, 30), date(2024, 6, 30)))
        self.assertEqual(resolve_window("2024-01-01", "2024-06-30"), (date(2024, 1, 1), date(2024, 6, 30)))

    def test_series_return_starts_on_or_after_window(self):
        points = [("2024-01-02", 100.0), ("2024-01-03", 110.0), ("2024-02-01", 121.0)]
        result = series_return(points, date(2024, 1, 3))
        self.assertAlmostEqual(result["return_rate"], 10.0)
        self.assertEqual(result["since"], "2024-01-03")
        self.assertEqual(result["last_price"], 121.0)
        self.assertIsNone(series_return([], date(2024, 1, 3))["return_rate"])

    def test_blend_counts_missing_leg_as_flat(self):
        history = {
            "^GSPC": [("2024-01-02", 100.0), ("2024-06-28", 110.0)],
            "^KS11": [("2024-01-02", 2500.0), ("2024-06-28", 2750.0)],
        }
        with patch(
            "services.portfolio.benchmark_service.get_close_history", new=AsyncMock(return_value=history)
        ):
            results = asyncio.run(get_benchmark_comparisons("2024-01-01", "2024-06-30"))

        by_id = {r["id"]: r for r in results}
        self.assertAlmostEqual(by_id["KOSPI"]["return_rate"], 10.0)
        self.assertAlmostEqual(by_id["SNP_500"]["return_rate"], 10.0)
        blend = by_id["GLOBAL_60_40"]
        self.assertAlmostEqual(blend["return_rate"], 6.0)
        self.assertEqual(blend["source"], "fallback")
        self.assertIn("BND", blend["note"])


class TestAnalyzePortfolioService(unittest.TestCase):
    def setUp(self):
        import models  # noqa: F401
        from database import Base, SessionLocal, engine
        from models.user import User
        from services import currency_service

        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        currency_service._fx_cache["USD-KRW"] = (1300.0, time.time())
        self.db = SessionLocal()
        user = User(supabase_user_id="sub-a", email="a@example.com")
        self.db.add(user)
        self.db.flush()
        self.db.add_all(
            [
                Position(user_id=user.id, symbol="AAPL", currency="USD", market="US", sector="tech",
                         shares=2.0, current_price=150.0, total_value=300.0, total_invested=200.0, return_rate=50.0),
                Position(user_id=user.id, symbol="GONE", currency="USD", market="US", shares=0.0),
            ]
        )
        self.db.commit()
        self.user_id = user.id

    def tearDown(self):
        from services import currency_service

        self.db.close()
        currency_service.clear_currency_cache()

    def test_analyze_skips_closed_positions(self):
        from services.portfolio.analysis_service import analyze_portfolio

        result = asyncio.run(analyze_portfolio(self.db, self.user_id, "KRW"))
        self.assertAlmostEqual(result["total_value"], 390000.0)
        self.assertEqual(len(result["sector_allocation"]), 1)
        self.assertEqual(result["exchange_rate"]["rate"], 1300.0)

    def test_backtest_without_history(self):
        from services.portfolio.backtest_service import run_backtest

        with patch("services.portfolio.backtest_service.get_close_history", new=AsyncMock(return_value={})):
            result = asyncio.run(run_backtest(self.db, self.user_id, period_days=90))
        self.assertEqual(result["series"], [])
        self.assertEqual(result["period"]["days"], 90)


if __name__ == "__main__":
    unittest.main()
