from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, TypeVar

from ricemill.dues import customers_with_dues, total_dues
from ricemill.engine import worker_status, worker_totals
from ricemill.errors import ValidationError
from ricemill.models import MillState

R = TypeVar("R")


def format_money(x: float) -> str:
    return f"₹{x:,.2f}"


def _record_date(record: object) -> Optional[date]:
    try:
        return date.fromisoformat(str(getattr(record, "date", "") or ""))
    except ValueError:
        return None


def filter_by_date(records: Iterable[R], day: date) -> List[R]:
    target = day.isoformat()
    return [r for r in records if getattr(r, "date", "") == target]


def filter_by_date_range(records: Iterable[R], start: Optional[date], end: Optional[date]) -> List[R]:
    """Records dated within [start, end]; without both bounds every record is kept."""

    if start is None or end is None:
        return list(records)
    out = []
    for r in records:
        d = _record_date(r)
        if d is not None and start <= d <= end:
            out.append(r)
    return out


@dataclass
class MonthRow:
    month: str
    revenue: float = 0.0
    transactions: int = 0


@dataclass
class ServiceRow:
    name: str
    value: float = 0.0
    count: int = 0


@dataclass
class Summary:
    period: str
    revenue: float
    dues: float
    billing_count: int
    stock_count: int
    queue_count: int
    monthly: List[MonthRow] = field(default_factory=list)
    services: List[ServiceRow] = field(default_factory=list)


def monthly_data(state: MillState) -> List[MonthRow]:
    months: Dict[str, MonthRow] = {}
    records: Sequence[object] = [*state.transactions, *state.stock_transactions]
    for r in records:
        d = _record_date(r)
        if d is None:
            continue
        key = f"{d.year}-{d.month:02d}"
        row = months.setdefault(key, MonthRow(month=key))
        row.revenue += float(getattr(r, "total_amount", 0.0))
        row.transactions += 1
    return [months[k] for k in sorted(months)]


def service_distribution(transactions: Iterable) -> List[ServiceRow]:
    services: Dict[str, ServiceRow] = {}
    for t in transactions:
        for it in t.items:
            row = services.setdefault(it.name, ServiceRow(name=it.name))
            row.value += it.total
            row.count += it.quantity
    return list(services.values())


def summarize(
    state: MillState,
    day: Optional[date] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Summary:
    """Revenue and dues for a day (default today) or an inclusive date range.

    A range needs both bounds; a single bound is rejected rather than guessed.
    """

    if (start is None) != (end is None):
        raise ValidationError("a date range needs both a start and an end date")
    if start is not None and end is not None:
        if start > end:
            raise ValidationError("start date must not be after end date")
        txns = filter_by_date_range(state.transactions, start, end)
        sales = filter_by_date_range(state.stock_transactions, start, end)
        queue = filter_by_date_range(state.queue, start, end)
        period = f"{start.isoformat()}..{end.isoformat()}"
    else:
        d = day or date.today()
        txns = filter_by_date(state.transactions, d)
        sales = filter_by_date(state.stock_transactions, d)
        queue = filter_by_date(state.queue, d)
        period = d.isoformat()

    revenue = sum(t.total_amount for t in txns) + sum(s.total_amount for s in sales)
    dues = sum(t.due_amount for t in txns) + sum(s.due_amount for s in sales)
    return Summary(
        period=period,
        revenue=revenue,
        dues=dues,
        billing_count=len(txns),
        stock_count=len(sales),
        queue_count=len(queue),
        monthly=monthly_data(state),
        services=service_distribution(txns),
    )


def print_summary(summary: Summary) -> None:
    print(f"\n=== Analytics ({summary.period}) ===")
    print(f"Revenue: {format_money(summary.revenue)}  Dues: {format_money(summary.dues)}")
    print(f"Transactions: {summary.billing_count} billing + {summary.stock_count} stock  Queue: {summary.queue_count}")
    if summary.services:
        total = sum(s.value for s in summary.services) or 1.0
        print("Services:")
        for s in summary.services:
            print(f"- {s.name}: {format_money(s.value)} ({s.count} units, {s.value / total:.0%})")
    if summary.monthly:
        print("Monthly:")
        for m in summary.monthly:
            print(f"- {m.month}: {format_money(m.revenue)} over {m.transactions} transactions")


def print_dues_overview(state: MillState) -> None:
    print("\n=== Dues ===")
    owing = customers_with_dues(state)
    if not owing:
        print("No billing dues outstanding.")
    for row in owing:
        print(f"- {row['name']} ({row['phone']}, {row['village'] or '-'}): {format_money(row['total_due'])} over {row['transaction_count']} bill(s)")
    if state.dues:
        print(f"Due records: {len(state.dues)} totalling {format_money(total_dues(state.dues))}")


def print_workers(state: MillState) -> None:
    print("\n=== Workers ===")
    if not state.workers:
        print("No workers recorded.")
        return
    for w in state.workers:
        print(
            f"- {w.id}: {w.name}  borrowed {format_money(w.borrowed_amount)}  paid {format_money(w.salary)}  "
            f"{worker_status(w)} {format_money(abs(w.total_due))}"
        )
    borrowed, paid, due = worker_totals(state.workers)
    print(f"Total borrowed {format_money(borrowed)}  paid {format_money(paid)}  due {format_money(due)}")
