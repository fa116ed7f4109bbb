from __future__ import annotations

import logging
import math
import re
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from ricemill.config import bin_retention_days
from ricemill.errors import NotFoundError, ValidationError
from ricemill.models import (
    BillingItem,
    BinItem,
    DueRecord,
    InventoryCheckpoint,
    InventoryItem,
    MillState,
    QueueCustomer,
    StockCheckpoint,
    StockItem,
    StockTransaction,
    Transaction,
    WorkerRecord,
)
from ricemill.presets import (
    BILLING_ITEM_RATE_KEYS,
    BILLING_TO_INVENTORY,
    FALLBACK_STOCK_RATE,
    HAMALI_ITEMS,
)
from ricemill.storage import inventory_item_from_dict, transaction_from_dict

logger = logging.getLogger("ricemill.engine")

LOAD_FILTERS = {"all", "low", "medium", "high"}
BIN_TYPES = {"transaction", "inventory"}


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def resolve_now(now: Optional[datetime]) -> datetime:
    return now or datetime.now()


def date_str(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def time_str(now: datetime) -> str:
    return now.strftime("%H:%M:%S")


def _parse_iso(s: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(str(s))
    except ValueError:
        return None


def format_phone_number(phone: str) -> str:
    cleaned = re.sub(r"\D", "", str(phone or ""))
    m = re.fullmatch(r"(\d{3})(\d{3})(\d{4})", cleaned)
    if m:
        return f"({m.group(1)}) {m.group(2)}-{m.group(3)}"
    return phone


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


def add_queue_customer(
    state: MillState,
    name: str,
    phone_number: str,
    load_brought: int,
    driver_name: str = "",
    driver_phone: str = "",
    village: str = "",
    now: Optional[datetime] = None,
) -> QueueCustomer:
    name = str(name or "").strip()
    phone_number = str(phone_number or "").strip()
    if not name or not phone_number:
        raise ValidationError("customer name and phone number are required")
    try:
        load = int(load_brought)
    except (TypeError, ValueError):
        raise ValidationError("load brought must be a whole number of bags") from None
    if load < 1:
        raise ValidationError("load brought must be at least 1")

    ts = resolve_now(now)
    customer = QueueCustomer(
        id=new_id(),
        name=name,
        phone_number=phone_number,
        load_brought=load,
        arrival_time=time_str(ts),
        date=date_str(ts),
        driver_name=str(driver_name or "").strip(),
        driver_phone=str(driver_phone or "").strip(),
        village=str(village or "").strip(),
    )
    state.queue.append(customer)
    return customer


def remove_queue_customer(state: MillState, customer_id: str) -> QueueCustomer:
    for i, c in enumerate(state.queue):
        if c.id == customer_id:
            return state.queue.pop(i)
    raise NotFoundError(f"queue customer {customer_id} not found")


def load_category(load: int) -> str:
    if load <= 10:
        return "low"
    if load <= 50:
        return "medium"
    return "high"


def filter_queue(
    customers: Iterable[QueueCustomer],
    search: str = "",
    load_filter: str = "all",
    sort_order: str = "desc",
) -> List[QueueCustomer]:
    term = str(search or "").lower()
    lf = load_filter if load_filter in LOAD_FILTERS else "all"
    out = []
    for c in customers:
        if term and term not in c.name.lower() and term not in c.phone_number:
            continue
        if lf != "all" and load_category(c.load_brought) != lf:
            continue
        out.append(c)
    out.sort(key=lambda c: c.load_brought, reverse=(sort_order != "asc"))
    return out


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


@dataclass
class BillDraft:
    """An unsaved bill. Totals are derived from the items on every read."""

    customer_name: str = ""
    village: str = ""
    phone_number: str = ""
    load_brought: int = 0
    items: List[BillingItem] = field(default_factory=list)
    paid_amount: float = 0.0

    def _find(self, name: str) -> Optional[BillingItem]:
        for it in self.items:
            if it.name == name:
                return it
        return None

    def add_item(self, name: str, rate: float) -> BillingItem:
        existing = self._find(name)
        if existing is not None:
            self.update_item_quantity(name, existing.quantity + 1)
            return existing
        item = BillingItem(name=name, rate=float(rate), quantity=1, total=float(rate))
        self.items.append(item)
        return item

    def update_item_quantity(self, name: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_item(name)
            return
        item = self._find(name)
        if item is None:
            raise NotFoundError(f"item {name} is not on the bill")
        item.quantity = int(quantity)
        item.recompute()

    def update_item_rate(self, name: str, rate: float) -> None:
        item = self._find(name)
        if item is None:
            raise NotFoundError(f"item {name} is not on the bill")
        item.rate = float(rate or 0.0)
        item.recompute()

    def remove_item(self, name: str) -> None:
        self.items = [it for it in self.items if it.name != name]

    @property
    def total_amount(self) -> float:
        return sum(it.total for it in self.items)

    @property
    def due_amount(self) -> float:
        return max(0.0, self.total_amount - float(self.paid_amount))


def quick_add_item(state: MillState, draft: BillDraft, name: str) -> BillingItem:
    key = BILLING_ITEM_RATE_KEYS.get(name)
    if key is None:
        raise ValidationError(f"unknown billing item {name}")
    return draft.add_item(name, getattr(state.rates, key))


def update_rate(state: MillState, key: str, value: float) -> None:
    if not hasattr(state.rates, key):
        raise ValidationError(f"unknown rate {key}")
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"rate {key} must be a number") from None
    if math.isnan(v) or v < 0:
        raise ValidationError(f"rate {key} must be a non-negative number")
    setattr(state.rates, key, v)


def update_milling_rate(state: MillState, value: float) -> None:
    update_rate(state, "milling", value)


def inventory_name_for(item_name: str) -> str:
    return BILLING_TO_INVENTORY.get(item_name, item_name)


@dataclass
class SaleResult:
    record: object
    dues_alert: Optional[dict] = None


def save_transaction(
    state: MillState,
    draft: BillDraft,
    now: Optional[datetime] = None,
    queue_id: Optional[str] = None,
) -> SaleResult:
    if not draft.customer_name.strip() or not draft.phone_number.strip() or not draft.items:
        raise ValidationError("please fill in customer details and add at least one item")
    if float(draft.paid_amount) < 0:
        raise ValidationError("paid amount cannot be negative")

    for it in draft.items:
        inv = state.find_inventory(inventory_name_for(it.name))
        if inv is not None:
            inv.count = max(0, inv.count - int(it.quantity))

    ts = resolve_now(now)
    txn = Transaction(
        id=new_id(),
        name=draft.customer_name.strip(),
        village=draft.village.strip(),
        phone=draft.phone_number.strip(),
        items=[BillingItem(name=it.name, rate=it.rate, quantity=it.quantity, total=it.total) for it in draft.items],
        total_amount=draft.total_amount,
        paid_amount=float(draft.paid_amount),
        due_amount=draft.due_amount,
        date=date_str(ts),
        time=time_str(ts),
    )
    state.transactions.insert(0, txn)

    if queue_id:
        try:
            remove_queue_customer(state, queue_id)
        except NotFoundError:
            logger.info("Billed customer %s was no longer in the queue", queue_id)

    from ricemill.dues import due_alert

    return SaleResult(record=txn, dues_alert=due_alert(state, txn.name, txn.phone))


# ---------------------------------------------------------------------------
# Transactions & bin
# ---------------------------------------------------------------------------


def search_transactions(transactions: Iterable[Transaction], search: str = "", due_only: bool = False) -> List[Transaction]:
    term = str(search or "").lower()
    out = []
    for t in transactions:
        matches = (not term) or term in t.name.lower() or term in t.village.lower() or term in t.phone
        if not matches:
            continue
        if due_only and t.due_amount <= 0:
            continue
        out.append(t)
    return out


def group_by_date(transactions: Iterable[Transaction]) -> "OrderedDict[str, List[Transaction]]":
    groups: Dict[str, List[Transaction]] = {}
    for t in transactions:
        groups.setdefault(t.date, []).append(t)
    return OrderedDict((d, groups[d]) for d in sorted(groups, reverse=True))


def calculate_hamali(transactions: Iterable[Transaction], ids: Iterable[str]) -> float:
    selected = set(ids)
    total = 0.0
    for t in transactions:
        if t.id not in selected:
            continue
        for name in HAMALI_ITEMS:
            item = next((it for it in t.items if it.name == name), None)
            if item is not None:
                total += item.total
    return total


def calculate_selected_total(transactions: Iterable[Transaction], ids: Iterable[str]) -> float:
    selected = set(ids)
    return sum(t.total_amount for t in transactions if t.id in selected)


def restore_inventory_for(state: MillState, txn: Transaction) -> int:
    restored = 0
    for it in txn.items:
        inv = state.find_inventory(inventory_name_for(it.name))
        if inv is not None and it.quantity > 0:
            inv.count += int(it.quantity)
            restored += 1
            logger.info("Restored %s %s to inventory", it.quantity, inv.name)
    return restored


def add_to_bin(state: MillState, kind: str, data: dict, now: Optional[datetime] = None) -> BinItem:
    if kind not in BIN_TYPES:
        raise ValidationError(f"unknown bin item type {kind}")
    deleted = resolve_now(now)
    item = BinItem(
        id=new_id(),
        type=kind,
        data=data,
        deleted_date=deleted.isoformat(),
        restore_deadline=(deleted + timedelta(days=bin_retention_days())).isoformat(),
    )
    state.bin.append(item)
    return item


def delete_transaction(
    state: MillState,
    txn_id: str,
    restore_inventory: bool = False,
    now: Optional[datetime] = None,
) -> int:
    """Move a transaction to the bin; return how many inventory lines were restored."""

    txn = state.find_transaction(txn_id)
    if txn is None:
        raise NotFoundError(f"transaction {txn_id} not found")
    restored = restore_inventory_for(state, txn) if restore_inventory else 0
    add_to_bin(state, "transaction", asdict(txn), now=now)
    state.transactions = [t for t in state.transactions if t.id != txn_id]
    return restored


def delete_inventory_item(state: MillState, name: str, now: Optional[datetime] = None) -> BinItem:
    inv = state.find_inventory(name)
    if inv is None:
        raise NotFoundError(f"inventory item {name} not found")
    state.inventory = [i for i in state.inventory if i.name != name]
    return add_to_bin(state, "inventory", asdict(inv), now=now)


def _find_bin_item(state: MillState, item_id: str) -> BinItem:
    for b in state.bin:
        if b.id == item_id:
            return b
    raise NotFoundError(f"bin item {item_id} not found")


def remove_from_bin(state: MillState, item_id: str) -> None:
    _find_bin_item(state, item_id)
    state.bin = [b for b in state.bin if b.id != item_id]


def restore_bin_item(state: MillState, item_id: str) -> BinItem:
    item = _find_bin_item(state, item_id)
    if item.type == "transaction":
        state.transactions.append(transaction_from_dict(item.data))
    elif item.type == "inventory":
        inv = inventory_item_from_dict(item.data)
        if state.find_inventory(inv.name) is None:
            state.inventory.append(inv)
    state.bin = [b for b in state.bin if b.id != item_id]
    return item


def cleanup_expired_bin_items(state: MillState, now: Optional[datetime] = None) -> int:
    ts = resolve_now(now)
    kept = []
    for b in state.bin:
        deadline = _parse_iso(b.restore_deadline)
        if deadline is not None and deadline > ts:
            kept.append(b)
    purged = len(state.bin) - len(kept)
    state.bin = kept
    if purged:
        logger.info("Purged %d expired bin item(s)", purged)
    return purged


def days_remaining(item: BinItem, now: Optional[datetime] = None) -> int:
    deadline = _parse_iso(item.restore_deadline)
    if deadline is None:
        return 0
    diff = (deadline - resolve_now(now)).total_seconds() / 86400.0
    return max(0, math.ceil(diff))


# ---------------------------------------------------------------------------
# Store: stock & inventory
# ---------------------------------------------------------------------------


def _stock_or_raise(state: MillState, name: str) -> StockItem:
    item = state.find_stock(name)
    if item is None:
        raise NotFoundError(f"stock item {name} not found")
    return item


def _inventory_or_raise(state: MillState, name: str) -> InventoryItem:
    item = state.find_inventory(name)
    if item is None:
        raise NotFoundError(f"inventory item {name} not found")
    return item


def update_stock(state: MillState, name: str, kg25_change: int, kg50_change: int) -> StockItem:
    item = _stock_or_raise(state, name)
    item.kg25 = max(0, item.kg25 + int(kg25_change))
    item.kg50 = max(0, item.kg50 + int(kg50_change))
    return item


def set_stock_counts(state: MillState, name: str, kg25: int, kg50: int) -> StockItem:
    item = _stock_or_raise(state, name)
    return update_stock(state, name, int(kg25) - item.kg25, int(kg50) - item.kg50)


def update_inventory(state: MillState, name: str, change: int) -> InventoryItem:
    item = _inventory_or_raise(state, name)
    item.count = max(0, item.count + int(change))
    return item


def add_stock_item(state: MillState, name: str, rate_per_kg: Optional[float] = None) -> StockItem:
    name = str(name or "").strip()
    if not name:
        raise ValidationError("stock name is required")
    if state.find_stock(name) is not None:
        raise ValidationError(f"stock item {name} already exists")
    item = StockItem(name=name)
    state.stock.append(item)
    if rate_per_kg is not None:
        state.stock_rates[name] = max(0.0, float(rate_per_kg))
    return item


def add_inventory_item(state: MillState, name: str) -> InventoryItem:
    name = str(name or "").strip()
    if not name:
        raise ValidationError("inventory item name is required")
    if state.find_inventory(name) is not None:
        raise ValidationError(f"inventory item {name} already exists")
    item = InventoryItem(name=name, count=0)
    state.inventory.append(item)
    return item


def add_stock_checkpoint(state: MillState, name: str, now: Optional[datetime] = None) -> StockCheckpoint:
    item = _stock_or_raise(state, name)
    ts = resolve_now(now)
    cp = StockCheckpoint(
        id=new_id(),
        stock_name=name,
        kg25_count=item.kg25,
        kg50_count=item.kg50,
        timestamp=time_str(ts),
        date=date_str(ts),
    )
    state.stock_checkpoints.insert(0, cp)
    return cp


def add_inventory_checkpoint(state: MillState, name: str, now: Optional[datetime] = None) -> InventoryCheckpoint:
    item = _inventory_or_raise(state, name)
    ts = resolve_now(now)
    cp = InventoryCheckpoint(
        id=new_id(),
        item_name=name,
        count=item.count,
        timestamp=time_str(ts),
        date=date_str(ts),
    )
    state.inventory_checkpoints.insert(0, cp)
    return cp


def stock_rate_for(state: MillState, name: str) -> float:
    return float(state.stock_rates.get(name, FALLBACK_STOCK_RATE))


def stock_value(item: StockItem, rate: float = FALLBACK_STOCK_RATE) -> float:
    return item.total_kg() * float(rate)


def record_stock_sale(
    state: MillState,
    customer_name: str,
    phone_number: str,
    village: str,
    stock_bought: str,
    kg25_bags: int = 0,
    kg50_bags: int = 0,
    custom_weight: float = 0.0,
    rate_per_kg: Optional[float] = None,
    paid_amount: float = 0.0,
    now: Optional[datetime] = None,
) -> SaleResult:
    customer_name = str(customer_name or "").strip()
    phone_number = str(phone_number or "").strip()
    if not customer_name or not phone_number or not stock_bought:
        raise ValidationError("please fill in all required fields")
    _stock_or_raise(state, stock_bought)
    rate = stock_rate_for(state, stock_bought) if rate_per_kg is None else float(rate_per_kg)
    if math.isnan(rate) or rate < 0:
        raise ValidationError("rate per kg must be a non-negative number")

    kg25 = max(0, int(kg25_bags or 0))
    kg50 = max(0, int(kg50_bags or 0))
    weight = kg25 * 25 + kg50 * 50 + max(0.0, float(custom_weight or 0.0))
    if weight <= 0:
        raise ValidationError("please specify quantity (bags or custom weight)")

    paid = max(0.0, float(paid_amount or 0.0))
    total = weight * rate
    due = max(0.0, total - paid)
    ts = resolve_now(now)

    sale = StockTransaction(
        id=new_id(),
        customer_name=customer_name,
        phone_number=phone_number,
        village=str(village or "").strip(),
        stock_bought=stock_bought,
        quantity=weight,
        rate=rate,
        total_amount=total,
        paid_amount=paid,
        due_amount=due,
        date=date_str(ts),
        time=time_str(ts),
    )
    update_stock(state, stock_bought, -kg25, -kg50)

    if due > 0:
        state.dues.insert(
            0,
            DueRecord(
                id=new_id(),
                customer_name=customer_name,
                phone_number=phone_number,
                type="rice",
                stock_type=stock_bought,
                amount=due,
                description=f"Stock sale - {weight:g}kg {stock_bought}",
                date=date_str(ts),
                sale_id=sale.id,
            ),
        )

    state.stock_transactions.insert(0, sale)

    from ricemill.dues import due_alert

    return SaleResult(record=sale, dues_alert=due_alert(state, customer_name, phone_number))


def search_stock_transactions(sales: Iterable[StockTransaction], search: str = "") -> List[StockTransaction]:
    term = str(search or "").lower()
    if not term:
        return list(sales)
    return [
        s
        for s in sales
        if term in s.customer_name.lower() or term in s.phone_number or term in s.stock_bought.lower()
    ]


@dataclass
class InventoryMismatch:
    name: str
    expected: int
    actual: int
    difference: int


def find_inventory_mismatches(state: MillState) -> List[InventoryMismatch]:
    """Compare each inventory line with its count before billing deductions.

    The expected count is the current count plus every billed quantity that
    consumes the line; a line with billed usage therefore shows as mismatched
    until it is restocked or fixed.
    """

    billed: Dict[str, int] = {}
    for t in state.transactions:
        for it in t.items:
            name = inventory_name_for(it.name)
            billed[name] = billed.get(name, 0) + int(it.quantity)

    out = []
    for inv in state.inventory:
        expected = inv.count + billed.get(inv.name, 0)
        if expected != inv.count:
            out.append(InventoryMismatch(name=inv.name, expected=expected, actual=inv.count, difference=inv.count - expected))
    return out


def fix_inventory_mismatch(state: MillState, name: str, count: int) -> InventoryItem:
    item = _inventory_or_raise(state, name)
    item.count = max(0, int(count))
    return item


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


def _worker_or_raise(state: MillState, worker_id: str) -> WorkerRecord:
    w = state.find_worker(worker_id)
    if w is None:
        raise NotFoundError(f"worker {worker_id} not found")
    return w


def parse_money(value: object, label: str) -> float:
    try:
        v = float(value or 0.0)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if math.isnan(v) or v < 0:
        raise ValidationError(f"{label} cannot be negative")
    return v


def add_worker(
    state: MillState,
    name: str,
    borrowed_amount: float = 0.0,
    salary: float = 0.0,
    now: Optional[datetime] = None,
) -> WorkerRecord:
    name = str(name or "").strip()
    if not name:
        raise ValidationError("please enter worker name")
    w = WorkerRecord(
        id=new_id(),
        name=name,
        borrowed_amount=parse_money(borrowed_amount, "borrowed amount"),
        salary=parse_money(salary, "salary"),
        date=date_str(resolve_now(now)),
    )
    w.recompute()
    state.workers.append(w)
    return w


def record_worker_payment(state: MillState, worker_id: str, amount: float) -> WorkerRecord:
    w = _worker_or_raise(state, worker_id)
    w.salary += parse_money(amount, "payment")
    w.recompute()
    return w


def mark_salary_paid(state: MillState, worker_id: str) -> WorkerRecord:
    w = _worker_or_raise(state, worker_id)
    w.salary = w.borrowed_amount
    w.total_due = 0.0
    return w


def update_worker(state: MillState, worker_id: str, borrowed_amount: float, salary: float) -> WorkerRecord:
    w = _worker_or_raise(state, worker_id)
    w.borrowed_amount = parse_money(borrowed_amount, "borrowed amount")
    w.salary = parse_money(salary, "salary")
    w.recompute()
    return w


def delete_worker(state: MillState, worker_id: str) -> None:
    _worker_or_raise(state, worker_id)
    state.workers = [w for w in state.workers if w.id != worker_id]


def worker_totals(workers: Iterable[WorkerRecord]) -> Tuple[float, float, float]:
    """Return (borrowed, paid, due) across workers."""

    borrowed = paid = due = 0.0
    for w in workers:
        borrowed += w.borrowed_amount
        paid += w.salary
        due += w.total_due
    return borrowed, paid, due


def worker_status(worker: WorkerRecord) -> str:
    if worker.total_due > 0:
        return "Due"
    if worker.total_due < 0:
        return "Advance"
    return "Paid"
