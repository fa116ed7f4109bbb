from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ricemill.engine import date_str, format_phone_number, new_id, parse_money, resolve_now
from ricemill.errors import NotFoundError, ValidationError
from ricemill.models import DueRecord, MillState

logger = logging.getLogger("ricemill.dues")

DUE_TYPES = {"bran", "rice", "custom"}


def add_due(
    state: MillState,
    customer_name: str,
    amount: float,
    type: str = "custom",
    stock_type: str = "",
    description: str = "",
    phone_number: str = "",
    now: Optional[datetime] = None,
) -> DueRecord:
    customer_name = str(customer_name or "").strip()
    if not customer_name:
        raise ValidationError("please enter customer name")
    kind = str(type or "custom").strip().lower()
    if kind not in DUE_TYPES:
        raise ValidationError(f"due type must be one of {', '.join(sorted(DUE_TYPES))}")
    due = DueRecord(
        id=new_id(),
        customer_name=customer_name,
        amount=parse_money(amount, "amount"),
        type=kind,
        stock_type="" if kind == "custom" else str(stock_type or "").strip(),
        description=str(description or "").strip(),
        date=date_str(resolve_now(now)),
        phone_number=str(phone_number or "").strip(),
    )
    state.dues.append(due)
    return due


def delete_due(state: MillState, due_id: str) -> None:
    if not any(d.id == due_id for d in state.dues):
        raise NotFoundError(f"due record {due_id} not found")
    state.dues = [d for d in state.dues if d.id != due_id]


def search_dues(dues: Iterable[DueRecord], search: str = "") -> List[DueRecord]:
    term = str(search or "").lower()
    if not term:
        return list(dues)
    return [
        d
        for d in dues
        if term in d.customer_name.lower() or term in d.description.lower() or (d.stock_type and term in d.stock_type.lower())
    ]


def total_dues(dues: Iterable[DueRecord]) -> float:
    return sum(d.amount for d in dues)


@dataclass
class CustomerDueInfo:
    total_due: float
    transaction_due: float
    stock_due: float
    custom_due: float

    @property
    def has_any_due(self) -> bool:
        return self.total_due > 0


def _due_matches_phone(due: DueRecord, phone: str) -> bool:
    if due.phone_number:
        return due.phone_number == phone
    return bool(phone) and phone in due.customer_name


def _from_stock_sale(due: DueRecord) -> bool:
    return bool(due.sale_id)


def customer_due_info(state: MillState, phone: str) -> CustomerDueInfo:
    """Everything a customer owes across billing, stock sales and custom dues.

    Due records created by a stock sale carry the sale id and are already
    counted through the stock transaction, so only records without a sale
    behind them count as custom dues, whatever their type.
    """

    transaction_due = sum(t.due_amount for t in state.transactions if t.phone == phone and t.due_amount > 0)
    stock_due = sum(s.due_amount for s in state.stock_transactions if s.phone_number == phone and s.due_amount > 0)
    custom_due = sum(d.amount for d in state.dues if _due_matches_phone(d, phone) and not _from_stock_sale(d))
    total = transaction_due + stock_due + custom_due
    return CustomerDueInfo(total_due=total, transaction_due=transaction_due, stock_due=stock_due, custom_due=custom_due)


def format_due_display(info: CustomerDueInfo) -> str:
    if not info.has_any_due:
        return ""
    return f"Total Due: ₹{info.total_due:.2f}"


@dataclass
class DueCheck:
    total_due: float
    transaction_count: int
    last_transaction_date: str


def check_dues_by_phone(state: MillState, phone: str) -> Optional[DueCheck]:
    if not phone or len(phone) != 10:
        return None
    owing = [t for t in state.transactions if t.phone == phone and t.due_amount > 0]
    if not owing:
        return None
    latest = max(owing, key=lambda t: (t.date, t.time))
    return DueCheck(
        total_due=sum(t.due_amount for t in owing),
        transaction_count=len(owing),
        last_transaction_date=latest.date,
    )


def due_alert(state: MillState, customer_name: str, phone: str) -> Optional[dict]:
    """Alert payload shown after a sale when the customer still owes money."""

    check = check_dues_by_phone(state, phone)
    if check is None or check.total_due <= 0:
        return None
    return {
        "customer_name": customer_name,
        "phone_number": format_phone_number(phone),
        "due_amount": check.total_due,
        "transaction_count": check.transaction_count,
        "last_transaction_date": check.last_transaction_date,
    }


def clear_customer_dues(state: MillState, phone: str) -> float:
    """Settle everything owed under a phone number; return the amount cleared."""

    phone = str(phone or "").strip()
    if not phone:
        raise ValidationError("phone number is required")
    cleared = 0.0
    for t in state.transactions:
        if t.phone == phone and t.due_amount > 0:
            cleared += t.due_amount
            t.paid_amount = t.total_amount
            t.due_amount = 0.0
    for s in state.stock_transactions:
        if s.phone_number == phone and s.due_amount > 0:
            cleared += s.due_amount
            s.paid_amount = s.total_amount
            s.due_amount = 0.0

    kept = []
    for d in state.dues:
        if _due_matches_phone(d, phone):
            # stock-sale dues were already counted through the sale itself
            if not _from_stock_sale(d):
                cleared += d.amount
            continue
        kept.append(d)
    state.dues = kept
    logger.info("Cleared %.2f of dues for %s", cleared, phone)
    return cleared


def unique_villages(state: MillState) -> List[str]:
    return sorted({t.village for t in state.transactions if t.village})


def customers_by_village(state: MillState, village: str) -> List[Dict[str, str]]:
    v = str(village or "").lower()
    seen = set()
    out = []
    for t in state.transactions:
        if t.village.lower() != v or t.phone in seen:
            continue
        seen.add(t.phone)
        out.append({"name": t.name, "phone": t.phone})
    return out


def total_dues_amount(state: MillState) -> float:
    return sum(t.due_amount for t in state.transactions)


def customers_with_dues(state: MillState) -> List[dict]:
    grouped: Dict[str, dict] = {}
    for t in state.transactions:
        if t.due_amount <= 0:
            continue
        key = t.phone or t.name
        row = grouped.get(key)
        if row is None:
            grouped[key] = {
                "name": t.name,
                "phone": t.phone,
                "village": t.village,
                "total_due": t.due_amount,
                "transaction_count": 1,
                "last_transaction_date": t.date,
            }
        else:
            row["total_due"] += t.due_amount
            row["transaction_count"] += 1
            row["last_transaction_date"] = max(row["last_transaction_date"], t.date)
    return list(grouped.values())
