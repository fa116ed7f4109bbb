from __future__ import annotations

import csv
import json
import os
import tempfile
from datetime import datetime
from pathlib import Path

from ricemill.dues import add_due
from ricemill.engine import BillDraft, add_queue_customer, add_worker, quick_add_item, record_stock_sale, save_transaction
from ricemill.presets import DEFAULT_INVENTORY_NAMES, DEFAULT_STOCK_RATES, default_state
from ricemill.storage import (
    INVENTORY,
    QUEUE,
    RATES,
    SLOTS,
    TRANSACTIONS,
    export_state,
    get_from_slot,
    import_state,
    load_state,
    reset_data_files,
    save_state,
    save_to_slot,
    slot_path,
    write_transactions_csv,
)

NOW = datetime(2026, 3, 5, 9, 0, 0)


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _fresh_data_dir() -> Path:
    d = Path(tempfile.mkdtemp(prefix="ricemill_"))
    os.environ["RICEMILL_DATA_DIR"] = str(d)
    return d


def _busy_state():
    s = default_state()
    s.find_inventory("Powders").count = 20
    s.find_stock("HMT Rice").kg25 = 10
    add_queue_customer(s, "Ravi", "9876543210", 8, village="Kothapalli", now=NOW)
    d = BillDraft(customer_name="Sita", phone_number="9123456780", village="Peddapur", paid_amount=50)
    quick_add_item(s, d, "Powder")
    quick_add_item(s, d, "Loading")
    save_transaction(s, d, now=NOW)
    record_stock_sale(s, "Gopal", "9000000001", "Kothapalli", "HMT Rice", kg25_bags=2, paid_amount=1000, now=NOW)
    add_due(s, "Lakshmi", 300, description="Old balance", now=NOW)
    add_worker(s, "Raju", borrowed_amount=2000, salary=500, now=NOW)
    return s


def test_slot_round_trip_and_defaults() -> None:
    _fresh_data_dir()
    _assert(get_from_slot(QUEUE, []) == [], "missing slot returns the default")
    save_to_slot(QUEUE, [{"id": "q1"}])
    _assert(get_from_slot(QUEUE, []) == [{"id": "q1"}], "slot round trip")

    slot_path(RATES).write_text("{not json", encoding="utf-8")
    _assert(get_from_slot(RATES, {"milling": 1}) == {"milling": 1}, "corrupt slot falls back to default")


def test_fresh_load_has_standard_lines() -> None:
    _fresh_data_dir()
    s = load_state()
    _assert([i.name for i in s.inventory] == DEFAULT_INVENTORY_NAMES, "default inventory lines")
    _assert([x.name for x in s.stock] == list(DEFAULT_STOCK_RATES), "default stock lines")
    _assert(s.rates.milling == 2.5 and s.rates.milling_secondary == 0.5, "default milling rates")
    _assert(s.stock_rates["JSR Rice"] == 50.0, "default stock rates")


def test_save_and_load_state() -> None:
    _fresh_data_dir()
    s = _busy_state()
    save_state(s)
    for key in SLOTS:
        _assert(slot_path(key).exists(), f"slot {key} written")

    loaded = load_state()
    _assert(len(loaded.queue) == 1 and loaded.queue[0].village == "Kothapalli", "queue persisted")
    t = loaded.transactions[0]
    _assert(t.name == "Sita" and [it.name for it in t.items] == ["Powder", "Loading"], "bill items persisted")
    _assert(t.due_amount == 65.0, "bill due persisted")
    _assert(loaded.find_inventory("Powders").count == 19, "inventory persisted")
    _assert(loaded.find_stock("HMT Rice").kg25 == 8, "stock persisted")
    _assert(loaded.stock_transactions[0].quantity == 50.0, "stock sale persisted")
    _assert({d.type for d in loaded.dues} == {"rice", "custom"}, "due records persisted")
    rice = next(d for d in loaded.dues if d.type == "rice")
    _assert(rice.sale_id == loaded.stock_transactions[0].id, "sale link persisted")
    _assert(loaded.workers[0].total_due == 1500.0, "worker persisted")


def test_loose_json_is_coerced() -> None:
    _fresh_data_dir()
    save_to_slot(TRANSACTIONS, [{"id": "t1", "name": "Ravi", "total_amount": "120", "items": [{"name": "Milling", "rate": 2.5, "quantity": "4"}]}, "junk"])
    save_to_slot(INVENTORY, [{"name": "Powders", "count": None}])
    s = load_state()
    _assert(len(s.transactions) == 1, "non-object entries are dropped")
    t = s.transactions[0]
    _assert(t.total_amount == 120.0 and t.due_amount == 0.0 and t.phone == "", "missing fields take defaults")
    _assert(t.items[0].quantity == 4 and t.items[0].total == 10.0, "item total derived when absent")
    _assert([(i.name, i.count) for i in s.inventory] == [("Powders", 0)], "stored inventory replaces defaults")


def test_missing_slot_keeps_the_rest() -> None:
    _fresh_data_dir()
    save_state(_busy_state())
    slot_path(INVENTORY).unlink()
    s = load_state()
    _assert(len(s.transactions) == 1 and len(s.workers) == 1 and len(s.dues) == 2, "other slots still load")
    _assert([i.name for i in s.inventory] == DEFAULT_INVENTORY_NAMES, "missing inventory slot falls back to defaults")


def test_export_import() -> None:
    _fresh_data_dir()
    s = _busy_state()
    doc = json.loads(json.dumps(export_state(s)))
    _assert("version" in doc and TRANSACTIONS in doc["state"], "versioned document with every slot")
    back = import_state(doc)
    _assert(back.transactions[0].total_amount == s.transactions[0].total_amount, "import restores bills")
    _assert(back.rates == s.rates, "import restores rates")

    for bad in (None, [], {"version": "x"}, {"state": []}):
        try:
            import_state(bad)
        except ValueError:
            continue
        raise AssertionError(f"payload {bad!r} should be rejected")


def test_transactions_csv() -> None:
    d = _fresh_data_dir()
    s = _busy_state()
    p = write_transactions_csv(s, d / "ledger.csv")
    with p.open("r", encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    _assert([r["kind"] for r in rows] == ["billing", "stock"], "billing rows then stock rows")
    _assert(rows[0]["detail"] == "Powder x1, Loading x1", "bill detail lists items")
    _assert(json.loads(rows[0]["items_json"])[0]["name"] == "Powder", "items serialized")
    _assert(rows[1]["detail"].startswith("50kg HMT Rice"), "stock detail lists weight and stock")


def test_reset_data_files() -> None:
    _fresh_data_dir()
    save_state(_busy_state())
    reset_data_files()
    _assert(not any(slot_path(k).exists() for k in SLOTS), "every slot removed")
    _assert(load_state().transactions == [], "reset state is empty")


def main() -> None:
    tests = [
        test_slot_round_trip_and_defaults,
        test_fresh_load_has_standard_lines,
        test_save_and_load_state,
        test_loose_json_is_coerced,
        test_missing_slot_keeps_the_rest,
        test_export_import,
        test_transactions_csv,
        test_reset_data_files,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
