from __future__ import annotations

from datetime import date, datetime

from ricemill.engine import BillDraft, add_queue_customer, quick_add_item, record_stock_sale, save_transaction
from ricemill.errors import ValidationError
from ricemill.presets import default_state
from ricemill.reporting import filter_by_date, filter_by_date_range, format_money, summarize


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _mill():
    s = default_state()
    s.find_stock("HMT Rice").kg25 = 4

    d = BillDraft(customer_name="Ravi", phone_number="9876543210", village="Kothapalli", paid_amount=12)
    quick_add_item(s, d, "Nukalu")
    save_transaction(s, d, now=datetime(2026, 2, 10, 11, 0, 0))

    d = BillDraft(customer_name="Sita", phone_number="9123456780", village="Peddapur", paid_amount=100)
    quick_add_item(s, d, "Milling")
    d.update_item_quantity("Milling", 40)
    save_transaction(s, d, now=datetime(2026, 3, 1, 9, 30, 0))

    d = BillDraft(customer_name="Gopal", phone_number="9000000001", village="Peddapur", paid_amount=40)
    quick_add_item(s, d, "Powder")
    quick_add_item(s, d, "Loading")
    save_transaction(s, d, now=datetime(2026, 3, 4, 14, 0, 0))

    record_stock_sale(s, "Anil", "9000000002", "Kothapalli", "HMT Rice", kg25_bags=1, paid_amount=1125, now=datetime(2026, 3, 4, 15, 0, 0))
    add_queue_customer(s, "Mohan", "9000000003", 30, now=datetime(2026, 3, 4, 16, 0, 0))
    return s


def test_date_filters() -> None:
    s = _mill()
    _assert([t.name for t in filter_by_date(s.transactions, date(2026, 3, 4))] == ["Gopal"], "single day")
    rows = filter_by_date_range(s.transactions, date(2026, 3, 1), date(2026, 3, 4))
    _assert({t.name for t in rows} == {"Sita", "Gopal"}, "inclusive range")
    _assert(len(filter_by_date_range(s.transactions, None, date(2026, 3, 4))) == 3, "missing bound keeps all")


def test_summarize_day() -> None:
    s = _mill()
    sm = summarize(s, day=date(2026, 3, 4))
    _assert(sm.period == "2026-03-04", "period label")
    _assert(sm.revenue == 115.0 + 1125.0, "billing plus stock revenue")
    _assert(sm.dues == 75.0, "billing and stock dues")
    _assert((sm.billing_count, sm.stock_count, sm.queue_count) == (1, 1, 1), "counts for the day")
    services = {r.name: (r.value, r.count) for r in sm.services}
    _assert(services == {"Powder": (100.0, 1), "Loading": (15.0, 1)}, "service distribution for the day")


def test_summarize_range_and_monthly() -> None:
    s = _mill()
    sm = summarize(s, start=date(2026, 3, 1), end=date(2026, 3, 31))
    _assert(sm.period == "2026-03-01..2026-03-31", "range label")
    _assert(sm.billing_count == 2 and sm.revenue == 100.0 + 115.0 + 1125.0, "range totals")
    milling = next(r for r in sm.services if r.name == "Milling")
    _assert(milling.count == 40 and milling.value == 100.0, "milling quantity summed")

    months = [(m.month, m.revenue, m.transactions) for m in sm.monthly]
    _assert(months == [("2026-02", 12.0, 1), ("2026-03", 1340.0, 3)], "monthly data is all time, ascending")


def test_summarize_needs_both_bounds() -> None:
    s = _mill()
    for kwargs in ({"start": date(2026, 3, 1)}, {"end": date(2026, 3, 4)}, {"start": date(2026, 3, 4), "end": date(2026, 3, 1)}):
        try:
            summarize(s, **kwargs)
        except ValidationError:
            continue
        raise AssertionError(f"summarize({kwargs}) should be rejected")
    _assert(summarize(s, start=date(2026, 3, 4), end=date(2026, 3, 4)).billing_count == 1, "one-day range")


def test_format_money() -> None:
    _assert(format_money(1234.5) == "₹1,234.50", "grouped with two decimals")


def main() -> None:
    tests = [
        test_date_filters,
        test_summarize_day,
        test_summarize_range_and_monthly,
        test_summarize_needs_both_bounds,
        test_format_money,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
