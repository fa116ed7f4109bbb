from __future__ import annotations

import csv
import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from ricemill.config import STATE_VERSION, data_dir_setting
from ricemill.models import (
    BillingItem,
    BinItem,
    DueRecord,
    InventoryCheckpoint,
    InventoryItem,
    MillState,
    QueueCustomer,
    Rates,
    StockCheckpoint,
    StockItem,
    StockTransaction,
    Transaction,
    WorkerRecord,
)
from ricemill.presets import DEFAULT_STOCK_RATES, default_inventory, default_stock

logger = logging.getLogger("ricemill.storage")

# Storage slots
QUEUE = "rice_mill_queue"
TRANSACTIONS = "rice_mill_transactions"
INVENTORY = "rice_mill_inventory"
STOCK = "rice_mill_stock"
STOCK_TRANSACTIONS = "rice_mill_stock_transactions"
DUES = "rice_mill_dues"
WORKERS = "rice_mill_workers"
BIN = "rice_mill_bin"
RATES = "rice_mill_rates"
STOCK_RATES = "rice_mill_stock_rates"
STOCK_CHECKPOINTS = "stock_checkpoints"
INVENTORY_CHECKPOINTS = "inventory_checkpoints"

SLOTS = [
    QUEUE,
    TRANSACTIONS,
    INVENTORY,
    STOCK,
    STOCK_TRANSACTIONS,
    DUES,
    WORKERS,
    BIN,
    RATES,
    STOCK_RATES,
    STOCK_CHECKPOINTS,
    INVENTORY_CHECKPOINTS,
]


def data_dir() -> Path:
    p = data_dir_setting()
    p.mkdir(parents=True, exist_ok=True)
    return p


def slot_path(key: str) -> Path:
    return data_dir() / f"{key}.json"


def exports_dir() -> Path:
    p = data_dir() / "exports"
    p.mkdir(parents=True, exist_ok=True)
    return p


def transactions_csv_path() -> Path:
    return exports_dir() / "transactions.csv"


def save_to_slot(key: str, data: Any) -> None:
    p = slot_path(key)
    try:
        p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    except (OSError, TypeError, ValueError):
        logger.exception("Error saving slot %s", key)
        raise


def get_from_slot(key: str, default: Any) -> Any:
    p = slot_path(key)
    if not p.exists():
        return default
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("Error reading slot %s, using default", key, exc_info=True)
        return default


def reset_data_files() -> None:
    """Delete every slot file."""

    for key in SLOTS:
        try:
            slot_path(key).unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not delete slot %s", key, exc_info=True)


def _list(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [x for x in raw if isinstance(x, dict)]


def _float(d: Dict[str, Any], key: str, default: float = 0.0) -> float:
    try:
        return float(d.get(key, default) or 0.0)
    except (TypeError, ValueError):
        return default


def _int(d: Dict[str, Any], key: str, default: int = 0) -> int:
    try:
        return int(d.get(key, default) or 0)
    except (TypeError, ValueError):
        return default


def _str(d: Dict[str, Any], key: str, default: str = "") -> str:
    v = d.get(key)
    return default if v is None else str(v)


def _load_items(raw: Any) -> List[BillingItem]:
    items = []
    for it in _list(raw):
        item = BillingItem(name=_str(it, "name"), rate=_float(it, "rate"), quantity=_int(it, "quantity", 1))
        item.total = _float(it, "total", item.rate * item.quantity)
        items.append(item)
    return items


def transaction_from_dict(d: Dict[str, Any]) -> Transaction:
    return Transaction(
        id=_str(d, "id"),
        name=_str(d, "name"),
        village=_str(d, "village"),
        phone=_str(d, "phone"),
        items=_load_items(d.get("items")),
        total_amount=_float(d, "total_amount"),
        paid_amount=_float(d, "paid_amount"),
        due_amount=_float(d, "due_amount"),
        date=_str(d, "date"),
        time=_str(d, "time"),
    )


def inventory_item_from_dict(d: Dict[str, Any]) -> InventoryItem:
    return InventoryItem(name=_str(d, "name"), count=_int(d, "count"))


def _load_rates(raw: Any) -> Rates:
    if not isinstance(raw, dict):
        return Rates()
    base = Rates()
    return Rates(**{k: _float(raw, k, getattr(base, k)) for k in asdict(base)})


def _load_stock_rates(raw: Any) -> Dict[str, float]:
    if not isinstance(raw, dict):
        return dict(DEFAULT_STOCK_RATES)
    out = {}
    for k, v in raw.items():
        try:
            out[str(k)] = max(0.0, float(v or 0.0))
        except (TypeError, ValueError):
            continue
    return out


def state_from_dict(d: Dict[str, Any]) -> MillState:
    state = MillState()

    for q in _list(d.get(QUEUE)):
        state.queue.append(
            QueueCustomer(
                id=_str(q, "id"),
                name=_str(q, "name"),
                phone_number=_str(q, "phone_number"),
                load_brought=_int(q, "load_brought"),
                arrival_time=_str(q, "arrival_time"),
                date=_str(q, "date"),
                driver_name=_str(q, "driver_name"),
                driver_phone=_str(q, "driver_phone"),
                village=_str(q, "village"),
            )
        )

    state.transactions = [transaction_from_dict(t) for t in _list(d.get(TRANSACTIONS))]

    if INVENTORY in d:
        state.inventory = [inventory_item_from_dict(i) for i in _list(d.get(INVENTORY))]
    else:
        state.inventory = default_inventory()

    if STOCK in d:
        state.stock = [
            StockItem(name=_str(s, "name"), kg25=_int(s, "kg25"), kg50=_int(s, "kg50")) for s in _list(d.get(STOCK))
        ]
    else:
        state.stock = default_stock()

    for s in _list(d.get(STOCK_TRANSACTIONS)):
        state.stock_transactions.append(
            StockTransaction(
                id=_str(s, "id"),
                customer_name=_str(s, "customer_name"),
                phone_number=_str(s, "phone_number"),
                village=_str(s, "village"),
                stock_bought=_str(s, "stock_bought"),
                quantity=_float(s, "quantity"),
                rate=_float(s, "rate"),
                total_amount=_float(s, "total_amount"),
                paid_amount=_float(s, "paid_amount"),
                due_amount=_float(s, "due_amount"),
                date=_str(s, "date"),
                time=_str(s, "time"),
            )
        )

    for r in _list(d.get(DUES)):
        state.dues.append(
            DueRecord(
                id=_str(r, "id"),
                customer_name=_str(r, "customer_name"),
                amount=_float(r, "amount"),
                type=_str(r, "type", "custom") or "custom",
                stock_type=_str(r, "stock_type"),
                description=_str(r, "description"),
                date=_str(r, "date"),
                phone_number=_str(r, "phone_number"),
                sale_id=_str(r, "sale_id"),
            )
        )

    for w in _list(d.get(WORKERS)):
        state.workers.append(
            WorkerRecord(
                id=_str(w, "id"),
                name=_str(w, "name"),
                borrowed_amount=_float(w, "borrowed_amount"),
                salary=_float(w, "salary"),
                total_due=_float(w, "total_due"),
                date=_str(w, "date"),
            )
        )

    for b in _list(d.get(BIN)):
        data = b.get("data")
        state.bin.append(
            BinItem(
                id=_str(b, "id"),
                type=_str(b, "type", "transaction"),
                data=data if isinstance(data, dict) else {},
                deleted_date=_str(b, "deleted_date"),
                restore_deadline=_str(b, "restore_deadline"),
            )
        )

    state.rates = _load_rates(d.get(RATES))
    state.stock_rates = _load_stock_rates(d.get(STOCK_RATES))

    for c in _list(d.get(STOCK_CHECKPOINTS)):
        state.stock_checkpoints.append(
            StockCheckpoint(
                id=_str(c, "id"),
                stock_name=_str(c, "stock_name"),
                kg25_count=_int(c, "kg25_count"),
                kg50_count=_int(c, "kg50_count"),
                timestamp=_str(c, "timestamp"),
                date=_str(c, "date"),
            )
        )
    for c in _list(d.get(INVENTORY_CHECKPOINTS)):
        state.inventory_checkpoints.append(
            InventoryCheckpoint(
                id=_str(c, "id"),
                item_name=_str(c, "item_name"),
                count=_int(c, "count"),
                timestamp=_str(c, "timestamp"),
                date=_str(c, "date"),
            )
        )
    return state


def state_to_dict(state: MillState) -> Dict[str, Any]:
    d = asdict(state)
    return {
        QUEUE: d["queue"],
        TRANSACTIONS: d["transactions"],
        INVENTORY: d["inventory"],
        STOCK: d["stock"],
        STOCK_TRANSACTIONS: d["stock_transactions"],
        DUES: d["dues"],
        WORKERS: d["workers"],
        BIN: d["bin"],
        RATES: d["rates"],
        STOCK_RATES: d["stock_rates"],
        STOCK_CHECKPOINTS: d["stock_checkpoints"],
        INVENTORY_CHECKPOINTS: d["inventory_checkpoints"],
    }


def load_state() -> MillState:
    raw: Dict[str, Any] = {}
    for key in SLOTS:
        value = get_from_slot(key, None)
        if value is not None:
            raw[key] = value
    return state_from_dict(raw)


def save_state(state: MillState) -> None:
    for key, value in state_to_dict(state).items():
        save_to_slot(key, value)


def export_state(state: MillState) -> Dict[str, Any]:
    return {"version": STATE_VERSION, "state": state_to_dict(state)}


def import_state(payload: Any) -> MillState:
    """Parse an exported document. Raises ValueError on a malformed payload."""

    if not isinstance(payload, dict) or not isinstance(payload.get("state"), dict):
        raise ValueError("payload must be an object with a 'state' field")
    return state_from_dict(payload["state"])


def backup_state(state: MillState, prefix: str = "state_backup") -> Path:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    p = exports_dir() / f"{prefix}_{ts}.json"
    p.write_text(json.dumps(export_state(state), ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("State backed up to %s", p)
    return p


LEDGER_COLUMNS = [
    "kind",
    "id",
    "date",
    "time",
    "customer",
    "phone",
    "village",
    "detail",
    "total_amount",
    "paid_amount",
    "due_amount",
    "items_json",
]


def write_transactions_csv(state: MillState, path: Path | None = None) -> Path:
    """Flatten billing and stock transactions into one CSV ledger."""

    p = path or transactions_csv_path()
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(LEDGER_COLUMNS)
        for t in state.transactions:
            w.writerow(
                [
                    "billing",
                    t.id,
                    t.date,
                    t.time,
                    t.name,
                    t.phone,
                    t.village,
                    ", ".join(f"{it.name} x{it.quantity}" for it in t.items),
                    t.total_amount,
                    t.paid_amount,
                    t.due_amount,
                    json.dumps([asdict(it) for it in t.items], ensure_ascii=False),
                ]
            )
        for s in state.stock_transactions:
            w.writerow(
                [
                    "stock",
                    s.id,
                    s.date,
                    s.time,
                    s.customer_name,
                    s.phone_number,
                    s.village,
                    f"{s.quantity:g}kg {s.stock_bought} @ {s.rate:g}",
                    s.total_amount,
                    s.paid_amount,
                    s.due_amount,
                    "[]",
                ]
            )
    return p
