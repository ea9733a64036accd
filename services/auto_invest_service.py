# services/auto_invest_service.py
"""
Recurring purchases.

A schedule buys a fixed amount of one position at a fixed frequency. Scheduled
dates are derived from `effective_from` (the k-th occurrence, rolled forward to
a trading day) so monthly schedules do not drift after short months.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from models.auto_invest import AutoInvestSchedule, AutomationLog
from models.position import Position
from models.transaction import Transaction
from schemas.auto_invest import ScheduleCreate, ScheduleUpdate
from schemas.transaction import TransactionCreate
from services.errors import NotFoundError
from services.market_data_service import get_price_on_date
from services.position_service import position_currency, recalculate_position, require_position
from utils.trading_calendar import (
    adjust_to_next_trading_day,
    advance_by_frequency,
    determine_market_from_context,
    get_market_today,
    to_date,
)

logger = logging.getLogger(__name__)

MAX_OCCURRENCES = 5000


def compute_scheduled_trading_dates(
    start_date: Any,
    frequency: str,
    market: Optional[str],
    end_boundary: Any,
) -> List[date]:
    """Trading dates on which the schedule buys, from start through end_boundary inclusive."""
    start = to_date(start_date)
    end = to_date(end_boundary)
    out: List[date] = []
    seen: Set[date] = set()
    for k in range(MAX_OCCURRENCES):
        pointer = advance_by_frequency(start, frequency, k)
        if pointer > end:
            break
        trading = adjust_to_next_trading_day(pointer, market)
        if trading > end:
            break
        if trading not in seen:
            seen.add(trading)
            out.append(trading)
    return out


def compute_next_due_date(
    start_date: Any,
    frequency: str,
    market: Optional[str],
    after: Optional[Any] = None,
    end_date: Optional[Any] = None,
) -> Optional[date]:
    """First scheduled trading date strictly after `after` (or the first one at all)."""
    start = to_date(start_date)
    after_d = to_date(after) if after else None
    end = to_date(end_date) if end_date else None
    for k in range(MAX_OCCURRENCES):
        candidate = adjust_to_next_trading_day(advance_by_frequency(start, frequency, k), market)
        if end is not None and candidate > end:
            return None
        if after_d is None or candidate > after_d:
            return candidate
    return None


def _market_for(position: Position, schedule: Optional[AutoInvestSchedule] = None) -> str:
    currency = schedule.currency if schedule is not None else position.currency
    return determine_market_from_context(position.market, currency, position.symbol)


def _auto_dates(db: Session, position_id: int) -> Set[date]:
    rows = (
        db.query(Transaction.date)
        .filter(Transaction.position_id == position_id, Transaction.purchase_method == "auto")
        .all()
    )
    return {r[0] for r in rows}


async def _resolve_price(symbol: str, on: date, fallback: Optional[float]) -> Optional[float]:
    price = await get_price_on_date(symbol, on)
    if price is not None and price > 0:
        return price
    if fallback is not None and fallback > 0:
        return fallback
    return None


# ---------------------------
# Schedules
# ---------------------------
def list_schedules(db: Session, user_id: int, position_id: int) -> List[AutoInvestSchedule]:
    require_position(db, user_id, position_id)
    return (
        db.query(AutoInvestSchedule)
        .filter(AutoInvestSchedule.user_id == user_id, AutoInvestSchedule.position_id == position_id)
        .order_by(AutoInvestSchedule.effective_from.desc(), AutoInvestSchedule.id.desc())
        .all()
    )


def get_schedule(db: Session, user_id: int, position_id: int, schedule_id: int) -> AutoInvestSchedule:
    schedule = (
        db.query(AutoInvestSchedule)
        .filter(
            AutoInvestSchedule.user_id == user_id,
            AutoInvestSchedule.position_id == position_id,
            AutoInvestSchedule.id == schedule_id,
        )
        .first()
    )
    if not schedule:
        raise NotFoundError("Schedule not found")
    return schedule


def _close_previous(db: Session, position_id: int, new_from: date, exclude_id: Optional[int] = None) -> None:
    query = db.query(AutoInvestSchedule).filter(
        AutoInvestSchedule.position_id == position_id,
        AutoInvestSchedule.effective_from < new_from,
    )
    if exclude_id is not None:
        query = query.filter(AutoInvestSchedule.id != exclude_id)
    previous = query.order_by(AutoInvestSchedule.effective_from.desc()).first()
    if previous is None:
        return
    if previous.effective_to is None or previous.effective_to >= new_from:
        previous.effective_to = new_from - timedelta(days=1)
        logger.info("Closed schedule %s at %s", previous.id, previous.effective_to)


async def create_schedule(
    db: Session,
    user_id: int,
    position_id: int,
    payload: ScheduleCreate,
    fallback_price: Optional[float] = None,
) -> AutoInvestSchedule:
    """New schedule; the previous one ends the day before it starts."""
    position = require_position(db, user_id, position_id)
    _close_previous(db, position.id, payload.effective_from)

    currency = payload.currency or position_currency(position)
    market = determine_market_from_context(position.market, currency, position.symbol)
    schedule = AutoInvestSchedule(
        user_id=user_id,
        position_id=position.id,
        frequency=payload.frequency,
        amount=payload.amount,
        currency=currency,
        effective_from=payload.effective_from,
        next_due_date=compute_next_due_date(payload.effective_from, payload.frequency, market),
        is_active=True,
        note=payload.note,
    )
    db.add(schedule)
    position.purchase_method = "auto"
    db.commit()
    db.refresh(schedule)

    if payload.backfill:
        await backfill_schedule(db, schedule, fallback_price=fallback_price)
    return schedule


def update_schedule(
    db: Session,
    user_id: int,
    position_id: int,
    schedule_id: int,
    payload: ScheduleUpdate,
) -> AutoInvestSchedule:
    schedule = get_schedule(db, user_id, position_id, schedule_id)

    if payload.effective_from is not None and payload.effective_from != schedule.effective_from:
        _close_previous(db, position_id, payload.effective_from, exclude_id=schedule.id)
        schedule.effective_from = payload.effective_from
    if payload.frequency is not None:
        schedule.frequency = payload.frequency
    if payload.amount is not None:
        schedule.amount = payload.amount
    if payload.is_active is not None:
        schedule.is_active = payload.is_active
    if payload.note is not None:
        schedule.note = payload.note

    market = _market_for(schedule.position, schedule)
    schedule.next_due_date = compute_next_due_date(
        schedule.effective_from,
        schedule.frequency,
        market,
        after=schedule.last_executed,
        end_date=schedule.effective_to,
    )
    db.commit()
    db.refresh(schedule)
    return schedule


def delete_schedule(
    db: Session,
    user_id: int,
    position_id: int,
    schedule_id: int,
    delete_transactions: bool = False,
) -> Dict[str, int]:
    schedule = get_schedule(db, user_id, position_id, schedule_id)
    position = schedule.position
    deleted = 0

    if delete_transactions:
        query = db.query(Transaction).filter(
            Transaction.position_id == position_id,
            Transaction.purchase_method == "auto",
            Transaction.date >= schedule.effective_from,
        )
        if schedule.effective_to is not None:
            query = query.filter(Transaction.date <= schedule.effective_to)
        for tx in query.all():
            db.delete(tx)
            deleted += 1

    db.delete(schedule)
    db.flush()
    recalculate_position(db, position)
    return {"deleted_transactions": deleted}


async def reapply_schedule(
    db: Session,
    user_id: int,
    position_id: int,
    schedule_id: int,
    effective_from: date,
    price_per_share: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Make an older schedule current again from `effective_from`: a copy of it
    becomes the active schedule, auto purchases from that date on are dropped
    and rebuilt from the copy.
    """
    source = get_schedule(db, user_id, position_id, schedule_id)
    position = source.position

    later = (
        db.query(AutoInvestSchedule)
        .filter(
            AutoInvestSchedule.position_id == position_id,
            AutoInvestSchedule.effective_from >= effective_from,
            AutoInvestSchedule.is_active.is_(True),
        )
        .all()
    )
    for schedule in later:
        schedule.is_active = False

    removed = 0
    stale = db.query(Transaction).filter(
        Transaction.position_id == position_id,
        Transaction.purchase_method == "auto",
        Transaction.date >= effective_from,
    )
    for tx in stale.all():
        db.delete(tx)
        removed += 1
    db.flush()

    new_schedule = await create_schedule(
        db,
        user_id,
        position_id,
        ScheduleCreate(
            frequency=source.frequency,
            amount=source.amount,
            currency=source.currency or position_currency(position),
            effective_from=effective_from,
            note=f"Reapplied from schedule {source.id}",
        ),
    )
    result = await backfill_schedule(db, new_schedule, fallback_price=price_per_share)
    logger.info(
        "Reapplied schedule %s as %s: removed=%d created=%d",
        source.id, new_schedule.id, removed, result["count"],
    )
    return {"removed": removed, "created": result["count"], "new_schedule_id": new_schedule.id}


async def backfill_schedule(
    db: Session,
    schedule: AutoInvestSchedule,
    fallback_price: Optional[float] = None,
) -> Dict[str, Any]:
    """Record every scheduled purchase from effective_from up to today that is not recorded yet."""
    from services.transaction_service import create_transaction

    position = schedule.position
    market = _market_for(position, schedule)
    boundary = get_market_today(market)
    if schedule.effective_to is not None and schedule.effective_to < boundary:
        boundary = schedule.effective_to

    dates = compute_scheduled_trading_dates(schedule.effective_from, schedule.frequency, market, boundary)
    existing = _auto_dates(db, position.id)

    count = 0
    total_shares = 0.0
    total_amount = 0.0
    for target in dates:
        if target in existing:
            continue
        price = await _resolve_price(position.symbol, target, fallback_price)
        if price is None:
            logger.warning("No price for %s on %s, skipping auto purchase", position.symbol, target)
            continue

        shares = round(schedule.amount / price, 6)
        await create_transaction(
            db,
            schedule.user_id,
            TransactionCreate(
                position_id=position.id,
                type="buy",
                date=target,
                shares=shares,
                price=price,
                amount=schedule.amount,
                currency=schedule.currency,
                purchase_unit="amount",
                memo=schedule.note or f"Auto invest ({schedule.frequency})",
            ),
            purchase_method="auto",
            schedule_id=schedule.id,
            recalculate=False,
        )
        existing.add(target)
        count += 1
        total_shares += shares
        total_amount += schedule.amount
        schedule.last_executed = target

    schedule.next_due_date = compute_next_due_date(
        schedule.effective_from,
        schedule.frequency,
        market,
        after=schedule.last_executed,
        end_date=schedule.effective_to,
    )
    recalculate_position(db, position)
    logger.info("Backfilled %d/%d auto purchases for position %s", count, len(dates), position.id)
    return {"count": count, "total_shares": total_shares, "total_amount": total_amount}


# ---------------------------
# Executor
# ---------------------------
def _log_entry(
    schedule: AutoInvestSchedule,
    status: str,
    message: str,
    scheduled: Optional[date] = None,
    **details: Any,
) -> Dict[str, Any]:
    position = schedule.position
    return {
        "user_id": schedule.user_id,
        "position_id": schedule.position_id,
        "schedule_id": schedule.id,
        "symbol": position.symbol if position is not None else None,
        "scheduled_date": scheduled,
        "amount": schedule.amount,
        "currency": schedule.currency,
        "status": status,
        "message": message,
        "details": details or None,
    }


async def _execute_schedule(
    db: Session,
    schedule: AutoInvestSchedule,
    run_date: Optional[date],
    dry_run: bool,
) -> List[Dict[str, Any]]:
    from services.transaction_service import create_transaction, normalize_trade_date

    position = schedule.position
    market = _market_for(position, schedule)
    # never buy ahead of the market calendar, whatever run date was asked for
    market_today = get_market_today(market)
    today = min(run_date, market_today) if run_date else market_today

    if schedule.amount is None or schedule.amount <= 0:
        return [_log_entry(schedule, "skipped", "Schedule amount is not positive")]
    if today < schedule.effective_from:
        return [_log_entry(schedule, "skipped", "Before the schedule's effective date", today)]

    boundary = today
    if schedule.effective_to is not None and schedule.effective_to < boundary:
        boundary = schedule.effective_to

    due = schedule.next_due_date or compute_next_due_date(
        schedule.effective_from, schedule.frequency, market, after=schedule.last_executed
    )
    if due is None or due > boundary:
        if schedule.effective_to is not None and today > schedule.effective_to:
            return [_log_entry(schedule, "skipped", "Schedule has ended", today)]
        return [_log_entry(schedule, "skipped", "Nothing due", today, next_due_date=due.isoformat() if due else None)]

    logs: List[Dict[str, Any]] = []
    existing = _auto_dates(db, position.id)
    for _ in range(MAX_OCCURRENCES):
        if due is None or due > boundary:
            break

        trade_date = normalize_trade_date(due, market)
        if trade_date in existing:
            logs.append(_log_entry(schedule, "skipped", "Auto purchase already recorded", due))
        else:
            price = await _resolve_price(position.symbol, due, position.current_price)
            if price is None:
                logs.append(_log_entry(schedule, "error", "No price available for the due date", due))
                break
            shares = round(schedule.amount / price, 6)
            if shares <= 0:
                logs.append(_log_entry(schedule, "error", "Computed share count is not positive", due, price=price))
                break

            if dry_run:
                logs.append(_log_entry(schedule, "preview", "Would buy", due, shares=shares, price=price))
            else:
                tx = await create_transaction(
                    db,
                    schedule.user_id,
                    TransactionCreate(
                        position_id=position.id,
                        type="buy",
                        date=due,
                        shares=shares,
                        price=price,
                        amount=schedule.amount,
                        currency=schedule.currency,
                        purchase_unit="amount",
                        memo=schedule.note or f"Auto invest ({schedule.frequency})",
                    ),
                    purchase_method="auto",
                    schedule_id=schedule.id,
                )
                existing.add(tx.date)
                schedule.last_executed = due
                logs.append(
                    _log_entry(schedule, "success", "Auto purchase recorded", due, shares=shares, price=price, transaction_id=tx.id)
                )

        due = compute_next_due_date(schedule.effective_from, schedule.frequency, market, after=due)

    if not dry_run:
        schedule.next_due_date = due
        db.commit()
    return logs


async def execute_due_schedules(
    db: Session,
    run_date: Optional[date] = None,
    dry_run: bool = False,
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Run every active schedule whose next due date has arrived.
    Catches up on missed dates; each decision becomes one AutomationLog row.
    """
    query = db.query(AutoInvestSchedule).filter(AutoInvestSchedule.is_active.is_(True))
    if user_id is not None:
        query = query.filter(AutoInvestSchedule.user_id == user_id)
    schedules = query.order_by(AutoInvestSchedule.id.asc()).all()

    triggered_at = datetime.now(timezone.utc)
    entries: List[Dict[str, Any]] = []
    for schedule in schedules:
        try:
            entries.extend(await _execute_schedule(db, schedule, run_date, dry_run))
        except Exception as exc:
            # one broken schedule must not stop the batch
            logger.exception("Auto invest failed for schedule %s", schedule.id)
            db.rollback()
            entries.append(_log_entry(schedule, "error", str(exc) or exc.__class__.__name__))

    for entry in entries:
        db.add(AutomationLog(**entry, dry_run=dry_run, triggered_at=triggered_at))
    db.commit()

    counts = {status: 0 for status in ("success", "skipped", "preview", "error")}
    for entry in entries:
        counts[entry["status"]] += 1

    logger.info(
        "Auto invest run: schedules=%d success=%d skipped=%d preview=%d error=%d dry_run=%s",
        len(schedules), counts["success"], counts["skipped"], counts["preview"], counts["error"], dry_run,
    )
    return {
        "run_date": run_date.isoformat() if run_date else None,
        "dry_run": dry_run,
        "processed": len(schedules),
        **counts,
        "logs": [
            {**e, "scheduled_date": e["scheduled_date"].isoformat() if e["scheduled_date"] else None}
            for e in entries
        ],
    }


def list_automation_logs(db: Session, user_id: Optional[int] = None, limit: int = 50) -> List[AutomationLog]:
    query = db.query(AutomationLog)
    if user_id is not None:
        query = query.filter(AutomationLog.user_id == user_id)
    return query.order_by(AutomationLog.triggered_at.desc(), AutomationLog.id.desc()).limit(limit).all()
