# services/portfolio/correlation_service.py
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sqlalchemy.orm import Session

from services.market_data_service import get_close_frame
from services.position_service import list_positions, position_currency

logger = logging.getLogger(__name__)

PERIODS = ("1m", "3m", "6m", "1y")
DEFAULT_PERIOD = "3m"
DEFAULT_LIMIT = 12

BENCHMARKS = [
    {"symbol": "^GSPC", "name": "S&P 500", "currency": "USD"},
    {"symbol": "^KS11", "name": "KOSPI", "currency": "KRW"},
]


def pearson(a: Sequence[Optional[float]], b: Sequence[Optional[float]]) -> Optional[float]:
    """Pairwise-complete Pearson r; None with < 2 shared points or a flat series."""
    xs: List[float] = []
    ys: List[float] = []
    for x, y in zip(a, b):
        if x is None or y is None:
            continue
        if not (math.isfinite(x) and math.isfinite(y)):
            continue
        xs.append(float(x))
        ys.append(float(y))

    if len(xs) < 2:
        return None

    x = np.array(xs)
    y = np.array(ys)
    dx = x - x.mean()
    dy = y - y.mean()
    var_x = float((dx * dx).sum())
    var_y = float((dy * dy).sum())
    if var_x <= 0 or var_y <= 0:
        return None
    return float((dx * dy).sum() / (math.sqrt(var_x) * math.sqrt(var_y)))


def return_series(closes: pd.DataFrame) -> pd.DataFrame:
    """Daily simple returns per column, each against that column's previous quoted close."""
    out = {}
    for col in closes.columns:
        s = closes[col].dropna()
        s = s[s > 0]
        out[col] = s.pct_change().reindex(closes.index)
    return pd.DataFrame(out, index=closes.index)


def correlation_matrix(closes: pd.DataFrame) -> List[List[Optional[float]]]:
    if closes.empty:
        return []
    returns = return_series(closes)
    cols = list(returns.columns)
    series = {
        c: [None if pd.isna(v) else float(v) for v in returns[c].tolist()]
        for c in cols
    }
    n = len(cols)
    matrix: List[List[Optional[float]]] = [[None] * n for _ in range(n)]
    for i in range(n):
        matrix[i][i] = 1.0
        for j in range(i + 1, n):
            r = pearson(series[cols[i]], series[cols[j]])
            matrix[i][j] = r
            matrix[j][i] = r
    return matrix


async def get_correlation_matrix(
    db: Session,
    user_id: int,
    period: str = DEFAULT_PERIOD,
    include_benchmarks: bool = False,
    limit: int = DEFAULT_LIMIT,
) -> Dict[str, Any]:
    if period not in PERIODS:
        raise ValueError(f"period must be one of {', '.join(PERIODS)}")

    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]
    positions = sorted(positions, key=lambda p: p.total_value or 0.0, reverse=True)[: max(1, limit)]

    targets = [
        {"symbol": p.symbol, "name": p.name, "currency": position_currency(p), "is_benchmark": False}
        for p in positions
    ]
    if include_benchmarks:
        for bench in BENCHMARKS:
            if not any(t["symbol"] == bench["symbol"] for t in targets):
                targets.append({**bench, "is_benchmark": True})

    closes = await get_close_frame([t["symbol"] for t in targets], period=period) if targets else pd.DataFrame()

    # keep only symbols that actually have history, in target order
    available = [t for t in targets if t["symbol"] in closes.columns]
    if len(available) < len(targets):
        logger.info("Correlation: %d of %d symbols without history", len(targets) - len(available), len(targets))
    closes = closes[[t["symbol"] for t in available]] if available else pd.DataFrame()

    return {
        "period": period,
        "symbols": available,
        "matrix": correlation_matrix(closes),
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "meta": {
            "date_count": int(len(closes.index)),
            "include_benchmarks": include_benchmarks,
            "total_series": len(available),
        },
    }
