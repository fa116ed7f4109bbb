from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class QueueCustomer:
    id: str
    name: str
    phone_number: str
    load_brought: int  # bags
    arrival_time: str = ""
    date: str = ""
    driver_name: str = ""
    driver_phone: str = ""
    village: str = ""


@dataclass
class BillingItem:
    name: str
    rate: float
    quantity: int = 1
    total: float = 0.0

    def recompute(self) -> None:
        self.total = float(self.rate) * int(self.quantity)


@dataclass
class Transaction:
    id: str
    name: str
    village: str
    phone: str
    items: List[BillingItem] = field(default_factory=list)
    total_amount: float = 0.0
    paid_amount: float = 0.0
    due_amount: float = 0.0
    date: str = ""
    time: str = ""


@dataclass
class InventoryItem:
    name: str
    count: int = 0


@dataclass
class StockItem:
    name: str
    kg25: int = 0  # 25 kg bags
    kg50: int = 0  # 50 kg bags

    def total_kg(self) -> float:
        return float(self.kg25 * 25 + self.kg50 * 50)


@dataclass
class StockTransaction:
    id: str
    customer_name: str
    phone_number: str
    village: str
    stock_bought: str
    quantity: float  # kg
    rate: float  # per kg
    total_amount: float = 0.0
    paid_amount: float = 0.0
    due_amount: float = 0.0
    date: str = ""
    time: str = ""


@dataclass
class DueRecord:
    id: str
    customer_name: str
    amount: float
    type: str = "custom"  # bran|rice|custom
    stock_type: str = ""
    description: str = ""
    date: str = ""
    phone_number: str = ""
    sale_id: str = ""  # stock sale that created it


@dataclass
class WorkerRecord:
    id: str
    name: str
    borrowed_amount: float = 0.0
    salary: float = 0.0  # paid so far
    total_due: float = 0.0  # negative means advance
    date: str = ""

    def recompute(self) -> None:
        self.total_due = float(self.borrowed_amount) - float(self.salary)


@dataclass
class BinItem:
    id: str
    type: str  # transaction|inventory
    data: Dict[str, Any]
    deleted_date: str
    restore_deadline: str


@dataclass
class Rates:
    milling: float = 2.50
    milling_secondary: float = 0.50
    powder: float = 100.0
    big_bags: float = 15.0
    small_bags: float = 12.0
    bran_bags: float = 20.0
    unloading: float = 10.0
    loading: float = 15.0
    nukalu: float = 12.0
    extra: float = 1.0


@dataclass
class StockCheckpoint:
    id: str
    stock_name: str
    kg25_count: int
    kg50_count: int
    timestamp: str = ""
    date: str = ""


@dataclass
class InventoryCheckpoint:
    id: str
    item_name: str
    count: int
    timestamp: str = ""
    date: str = ""


@dataclass
class MillState:
    queue: List[QueueCustomer] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)  # newest first
    inventory: List[InventoryItem] = field(default_factory=list)
    stock: List[StockItem] = field(default_factory=list)
    stock_transactions: List[StockTransaction] = field(default_factory=list)  # newest first
    dues: List[DueRecord] = field(default_factory=list)
    workers: List[WorkerRecord] = field(default_factory=list)
    bin: List[BinItem] = field(default_factory=list)
    rates: Rates = field(default_factory=Rates)
    stock_rates: Dict[str, float] = field(default_factory=dict)
    stock_checkpoints: List[StockCheckpoint] = field(default_factory=list)
    inventory_checkpoints: List[InventoryCheckpoint] = field(default_factory=list)

    def find_transaction(self, txn_id: str) -> Transaction | None:
        for t in self.transactions:
            if t.id == txn_id:
                return t
        return None

    def find_inventory(self, name: str) -> InventoryItem | None:
        for it in self.inventory:
            if it.name == name:
                return it
        return None

    def find_stock(self, name: str) -> StockItem | None:
        for it in self.stock:
            if it.name == name:
                return it
        return None

    def find_worker(self, worker_id: str) -> WorkerRecord | None:
        for w in self.workers:
            if w.id == worker_id:
                return w
        return None
