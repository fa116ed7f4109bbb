from __future__ import annotations

import builtins
import os
import tempfile
from datetime import datetime

from ricemill import cli
from ricemill.engine import BillDraft, add_worker, quick_add_item, save_transaction
from ricemill.presets import default_state
from ricemill.storage import INVENTORY, load_state, save_state, slot_path

NOW = datetime(2026, 3, 5, 9, 0, 0)


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _fresh_data_dir() -> None:
    os.environ["RICEMILL_DATA_DIR"] = tempfile.mkdtemp(prefix="ricemill_cli_")


def _run_cli(answers) -> int:
    feed = iter(answers)
    original = builtins.input
    builtins.input = lambda prompt="": next(feed)
    try:
        return cli.main()
    finally:
        builtins.input = original


def test_start_keeps_saved_slots_without_inventory() -> None:
    _fresh_data_dir()
    s = default_state()
    d = BillDraft(customer_name="Ravi", phone_number="9876543210", paid_amount=0)
    quick_add_item(s, d, "Loading")
    save_transaction(s, d, now=NOW)
    add_worker(s, "Raju", borrowed_amount=1000, now=NOW)
    save_state(s)
    slot_path(INVENTORY).unlink()

    _assert(_run_cli(["0"]) == 0, "clean exit")
    after = load_state()
    _assert(len(after.transactions) == 1 and after.transactions[0].name == "Ravi", "bills survive the autosave")
    _assert([w.name for w in after.workers] == ["Raju"], "workers survive the autosave")
    _assert(after.find_inventory("Powders") is not None, "inventory line defaults restored")


def test_stock_sale_aborts_on_bad_numbers() -> None:
    sale = ["6", "3", "Ravi", "9876543210", "Kothapalli", "HMT Rice"]
    for tail in (["abc"], ["2", "x"], ["2", "0", "y"], ["2", "0", "", "rate"], ["2", "0", "", "", "paid"]):
        _fresh_data_dir()
        _run_cli(sale + tail + ["0"])
        after = load_state()
        _assert(after.stock_transactions == [], f"no sale recorded for answers {tail}")
        _assert(after.dues == [], f"no due recorded for answers {tail}")


def test_stock_sale_with_defaults() -> None:
    _fresh_data_dir()
    _run_cli(["6", "3", "Ravi", "9876543210", "Kothapalli", "HMT Rice", "2", "", "", "", "", "0"])
    after = load_state()
    _assert(len(after.stock_transactions) == 1, "sale recorded")
    sale = after.stock_transactions[0]
    _assert(sale.quantity == 50.0 and sale.rate == 45.0 and sale.due_amount == 2250.0, "default rate and zero paid")


def main() -> None:
    tests = [
        test_start_keeps_saved_slots_without_inventory,
        test_stock_sale_aborts_on_bad_numbers,
        test_stock_sale_with_defaults,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
